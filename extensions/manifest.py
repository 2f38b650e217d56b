"""Source manifest schema.

Defines the remote manifest (sources.json) listing installable sources.
Wire names are camelCase; attributes are snake_case.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from plugins.errors import FormatError, NotFoundError

SHA256_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")
SHA512_PATTERN = re.compile(r"^[0-9a-fA-F]{128}$")


def version_tuple(version: str) -> tuple[int, ...]:
    """Parse the numeric part of a semantic version ("1.2.3-beta" -> (1, 2, 3))."""
    match = re.match(r"^\s*v?(\d+(?:\.\d+)*)", version or "")
    if not match:
        return (0,)
    parts = [int(p) for p in match.group(1).split(".")]
    while len(parts) < 3:
        parts.append(0)
    return tuple(parts)


def is_newer(candidate: str, current: str) -> bool:
    """Check whether `candidate` is a newer version than `current`."""
    return version_tuple(candidate) > version_tuple(current)


class ManifestModel(BaseModel):
    """Base model using camelCase wire names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class SourceType(str, Enum):
    """How a source obtains its content."""

    API = "api"
    SCRAPER = "scraper"
    HYBRID = "hybrid"


class NoticeType(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Downloads(ManifestModel):
    """Download URLs by channel and version."""

    stable: str = Field(..., description="URL of the stable build")
    latest: str | None = Field(None, description="URL of the latest build")
    versions: dict[str, str] = Field(default_factory=dict, description="version -> URL")


class Integrity(ManifestModel):
    """Declared digests of the published code."""

    sha256: str
    sha512: str | None = None

    @field_validator("sha256")
    @classmethod
    def validate_sha256(cls, v: str) -> str:
        if not SHA256_PATTERN.match(v):
            raise ValueError("sha256 must be a 64-character hex string")
        return v

    @field_validator("sha512")
    @classmethod
    def validate_sha512(cls, v: str | None) -> str | None:
        if v is not None and not SHA512_PATTERN.match(v):
            raise ValueError("sha512 must be a 128-character hex string")
        return v


class SourceMetadata(ManifestModel):
    languages: list[str] = Field(default_factory=list)
    nsfw: bool = False
    official: bool = False
    tags: list[str] = Field(default_factory=list)
    last_updated: str | None = None
    min_core_version: str = "1.0.0"
    max_core_version: str | None = None
    website_url: str | None = None
    support_url: str | None = None


class Legal(ManifestModel):
    disclaimer: str | None = None
    source_type: SourceType = SourceType.SCRAPER
    requires_auth: bool = False
    terms_of_service_url: str | None = None


class ChangelogEntry(ManifestModel):
    version: str
    date: str
    changes: list[str] = Field(default_factory=list)
    breaking: bool = False


class Statistics(ManifestModel):
    downloads: int = 0
    stars: int = 0
    rating: float = 0.0
    active_users: int = 0


class Capabilities(ManifestModel):
    """Capabilities a source advertises in the manifest."""

    supports_search: bool = False
    supports_trending: bool = False
    supports_latest: bool = False
    supports_filters: bool = False
    supports_popular: bool = False
    supports_auth: bool = False
    supports_download: bool = False
    supports_bookmarks: bool = False


class SourceEntry(ManifestModel):
    """A single installable source in the manifest."""

    id: str = Field(..., min_length=1, description="Unique source identifier")
    name: str = Field(..., min_length=1)
    version: str = Field(..., description="Semantic version (e.g., 1.0.0)")
    base_url: str
    description: str = ""
    icon: str | None = None
    author: str = ""
    repository: str | None = None
    downloads: Downloads
    integrity: Integrity
    metadata: SourceMetadata = Field(default_factory=SourceMetadata)
    legal: Legal = Field(default_factory=Legal)
    changelog: list[ChangelogEntry] = Field(default_factory=list)
    statistics: Statistics = Field(default_factory=Statistics)
    capabilities: Capabilities = Field(default_factory=Capabilities)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate semantic version format."""
        if not re.match(r"^\d+\.\d+\.\d+", v):
            raise ValueError("version must be semantic (e.g., 1.0.0)")
        return v

    def download_url(self, version: str | None = None, channel: str = "stable") -> str:
        """Pick the download URL for a version or channel.

        Args:
            version: Specific version from downloads.versions
            channel: "stable" or "latest" when no version is given

        Raises:
            NotFoundError: If the version is not published
        """
        if version is not None:
            if version in self.downloads.versions:
                return self.downloads.versions[version]
            if version == self.version:
                return self.downloads.stable
            available = ", ".join(sorted(self.downloads.versions)) or "none"
            raise NotFoundError(
                f"Version {version} not available (available: {available})",
                source_id=self.id,
            )
        if channel == "latest" and self.downloads.latest:
            return self.downloads.latest
        return self.downloads.stable

    def is_compatible_with(self, core_version: str) -> bool:
        """Check the running core version against min/max core versions."""
        core = version_tuple(core_version)
        if core < version_tuple(self.metadata.min_core_version):
            return False
        if self.metadata.max_core_version and core > version_tuple(self.metadata.max_core_version):
            return False
        return True


class ManifestMetadata(ManifestModel):
    last_updated: str | None = None
    total_sources: int = 0
    maintainer: str = ""
    url: str | None = None
    description: str = ""
    license: str = ""


class Notice(ManifestModel):
    type: NoticeType = NoticeType.INFO
    title: str
    message: str
    date: str | None = None
    dismissible: bool = True


class Manifest(ManifestModel):
    """The remote manifest, fetched and validated as a whole."""

    version: str
    metadata: ManifestMetadata
    sources: list[SourceEntry]
    categories: dict[str, list[str]] = Field(default_factory=dict)
    featured: list[str] = Field(default_factory=list)
    deprecated: list[str] = Field(default_factory=list)
    notices: list[Notice] = Field(default_factory=list)

    @classmethod
    def parse(cls, payload: Any) -> Manifest:
        """Structurally check and validate a decoded manifest payload.

        Raises:
            FormatError: If the payload is not a valid manifest
        """
        if not isinstance(payload, dict):
            raise FormatError("Invalid registry format: expected an object")
        if not isinstance(payload.get("sources"), list):
            raise FormatError("Invalid registry format: sources must be an array")
        if not payload.get("version") or not isinstance(payload.get("metadata"), dict):
            raise FormatError("Invalid registry format: missing version or metadata")

        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise FormatError(f"Invalid registry format: {e}") from e

    @classmethod
    def from_file(cls, path: Path | str) -> Manifest:
        """Load a manifest from a .json or .yaml/.yml file.

        Raises:
            FormatError: If the file cannot be decoded or validated
        """
        path = Path(path)
        text = path.read_text(encoding="utf-8")
        try:
            if path.suffix.lower() in (".yaml", ".yml"):
                payload = yaml.safe_load(text)
            else:
                payload = json.loads(text)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise FormatError(f"Cannot decode manifest {path}: {e}") from e
        return cls.parse(payload)

    def get(self, source_id: str) -> SourceEntry | None:
        for entry in self.sources:
            if entry.id == source_id:
                return entry
        return None
