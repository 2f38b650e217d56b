"""Local catalog of manifest entries.

Keeps an id -> SourceEntry map that can be seeded from a bundled manifest
file, synced from the remote registry, filtered and exported.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import TypeAdapter, ValidationError

from extensions.manifest import Manifest, SourceEntry
from plugins.errors import FormatError, SourceLoaderError

if TYPE_CHECKING:
    from extensions.client import RegistryClient

logger = logging.getLogger(__name__)

_ENTRY_LIST = TypeAdapter(list[SourceEntry])


@dataclass
class CatalogStats:
    """Summary counts for a catalog."""

    total_sources: int
    official_sources: int
    community_sources: int
    nsfw_sources: int
    sfw_sources: int
    language_distribution: dict[str, int] = field(default_factory=dict)
    tag_distribution: dict[str, int] = field(default_factory=dict)


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SourceCatalog:
    """Searchable catalog of available sources.

    Example:
        >>> catalog = SourceCatalog.from_file(Path("sources.json"), client=client)
        >>> await catalog.sync_with_remote()
        >>> english = catalog.get_sources_by_language("en")
    """

    def __init__(
        self,
        entries: list[SourceEntry] | None = None,
        client: RegistryClient | None = None,
    ):
        """Initialize the catalog.

        Args:
            entries: Initial entries; clear() restores these.
            client: Registry client used by sync_with_remote().
        """
        self._initial = list(entries or [])
        self.client = client
        self._sources: dict[str, SourceEntry] = {}
        self._load_initial()

    @classmethod
    def from_file(cls, path: Path | str, client: RegistryClient | None = None) -> SourceCatalog:
        """Seed a catalog from a bundled manifest file (.json/.yaml)."""
        manifest = Manifest.from_file(path)
        return cls(entries=manifest.sources, client=client)

    def _load_initial(self) -> None:
        for entry in self._initial:
            self._sources[entry.id] = entry

    async def sync_with_remote(self) -> bool:
        """Replace local entries with the remote manifest's sources.

        On failure the local entries are kept.

        Returns:
            True if the sync succeeded.
        """
        if self.client is None:
            raise ValueError("Remote registry not configured")

        try:
            manifest = await self.client.fetch_manifest()
        except SourceLoaderError as e:
            logger.error("Failed to sync with remote registry: %s", e)
            return False

        self._sources = {entry.id: entry for entry in manifest.sources}
        logger.info("Synced %d sources from remote registry", len(manifest.sources))
        return True

    def get_all_sources(self) -> list[SourceEntry]:
        return list(self._sources.values())

    def get_source(self, source_id: str) -> SourceEntry | None:
        return self._sources.get(source_id)

    def search_sources(self, query: str) -> list[SourceEntry]:
        """Search by name, id, description or tags. An empty query returns all."""
        needle = query.strip().lower()
        if not needle:
            return self.get_all_sources()
        return [
            entry
            for entry in self._sources.values()
            if needle in entry.name.lower()
            or needle in entry.id.lower()
            or needle in entry.description.lower()
            or any(needle in tag.lower() for tag in entry.metadata.tags)
        ]

    def get_sources_by_language(self, language: str) -> list[SourceEntry]:
        return self.get_sources_by_languages([language])

    def get_sources_by_languages(self, languages: list[str]) -> list[SourceEntry]:
        """Sources supporting any of the languages."""
        wanted = {lang.lower() for lang in languages}
        return [
            entry
            for entry in self._sources.values()
            if any(lang.lower() in wanted for lang in entry.metadata.languages)
        ]

    def get_official_sources(self) -> list[SourceEntry]:
        return [entry for entry in self._sources.values() if entry.metadata.official]

    def get_community_sources(self) -> list[SourceEntry]:
        return [entry for entry in self._sources.values() if not entry.metadata.official]

    def get_sources_by_tag(self, tag: str) -> list[SourceEntry]:
        return self.get_sources_by_tags([tag])

    def get_sources_by_tags(self, tags: list[str]) -> list[SourceEntry]:
        """Sources carrying every one of the tags."""
        wanted = {tag.lower() for tag in tags}
        return [
            entry
            for entry in self._sources.values()
            if wanted <= {t.lower() for t in entry.metadata.tags}
        ]

    def get_nsfw_sources(self) -> list[SourceEntry]:
        return [entry for entry in self._sources.values() if entry.metadata.nsfw]

    def get_sfw_sources(self) -> list[SourceEntry]:
        return [entry for entry in self._sources.values() if not entry.metadata.nsfw]

    def get_sources_by_rating(self) -> list[SourceEntry]:
        """Highest rated first."""
        return sorted(self._sources.values(), key=lambda e: e.statistics.rating, reverse=True)

    def get_sources_by_popularity(self) -> list[SourceEntry]:
        """Most downloaded first."""
        return sorted(self._sources.values(), key=lambda e: e.statistics.downloads, reverse=True)

    def get_recently_updated(self, days: int = 30, now: datetime | None = None) -> list[SourceEntry]:
        """Sources updated within the last `days` days, newest first."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        dated = [
            (updated, entry)
            for entry in self._sources.values()
            if (updated := _parse_date(entry.metadata.last_updated)) is not None and updated >= cutoff
        ]
        dated.sort(key=lambda pair: pair[0], reverse=True)
        return [entry for _, entry in dated]

    def register_source(self, entry: SourceEntry) -> None:
        self._sources[entry.id] = entry

    def unregister_source(self, source_id: str) -> bool:
        return self._sources.pop(source_id, None) is not None

    def get_statistics(self) -> CatalogStats:
        entries = self.get_all_sources()
        languages: Counter[str] = Counter()
        tags: Counter[str] = Counter()
        for entry in entries:
            languages.update(entry.metadata.languages)
            tags.update(entry.metadata.tags)

        return CatalogStats(
            total_sources=len(entries),
            official_sources=len(self.get_official_sources()),
            community_sources=len(self.get_community_sources()),
            nsfw_sources=len(self.get_nsfw_sources()),
            sfw_sources=len(self.get_sfw_sources()),
            language_distribution=dict(languages),
            tag_distribution=dict(tags),
        )

    def export_json(self) -> str:
        """Export all entries as a JSON array using wire field names."""
        return json.dumps([entry.to_wire() for entry in self._sources.values()], indent=2)

    def import_json(self, data: str) -> int:
        """Register entries from a JSON array.

        Returns:
            Number of entries imported.

        Raises:
            FormatError: If the JSON is malformed or an entry is invalid.
        """
        try:
            entries = _ENTRY_LIST.validate_json(data)
        except ValidationError as e:
            raise FormatError(f"Failed to import sources: {e}") from e

        for entry in entries:
            self.register_source(entry)
        return len(entries)

    def clear(self) -> None:
        """Drop all entries and reload the initial ones."""
        self._sources.clear()
        self._load_initial()

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._sources
