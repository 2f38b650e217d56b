"""Entities returned by content sources."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class MangaStatus(str, Enum):
    """Publication status of a series."""

    ONGOING = "ongoing"
    COMPLETED = "completed"
    HIATUS = "hiatus"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ContentRating(str, Enum):
    """Content rating categories."""

    SAFE = "safe"
    SUGGESTIVE = "suggestive"
    EROTICA = "erotica"
    PORNOGRAPHIC = "pornographic"


class Manga(BaseModel):
    """A series exposed by a source."""

    id: str = Field(..., description="Identifier within the source")
    title: str = Field(..., description="Primary title")
    source_id: str = Field(..., description="Source that provided this entry")
    alt_titles: list[str] = Field(default_factory=list)
    cover_url: str | None = None
    author: str | None = None
    artist: str | None = None
    genres: list[str] = Field(default_factory=list)
    description: str | None = None
    status: MangaStatus = MangaStatus.UNKNOWN
    url: str | None = None
    rating: ContentRating | None = None
    year: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Chapter(BaseModel):
    """A chapter within a series."""

    id: str
    title: str
    number: float | None = None
    volume: float | None = None
    date: str | None = Field(None, description="Publication date (ISO 8601)")
    url: str | None = None
    pages: int | None = None
    scanlator: str | None = None
    language: str | None = None


class Page(BaseModel):
    """A single page image within a chapter."""

    index: int = Field(..., ge=0, description="0-based page index")
    image_url: str
    headers: dict[str, str] = Field(default_factory=dict)
    width: int | None = None
    height: int | None = None


class SearchOptions(BaseModel):
    """Search and listing options passed to optional capabilities."""

    query: str | None = None
    page: int = Field(1, ge=1)
    offset: int | None = None
    limit: int | None = None
    included_genres: list[str] = Field(default_factory=list)
    excluded_genres: list[str] = Field(default_factory=list)
    status: MangaStatus | None = None
    sort: str | None = Field(None, description="relevance, latest, popular, rating, alphabetical")
    filters: dict[str, Any] = Field(default_factory=dict)
