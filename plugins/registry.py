"""Plugin registry for loaded sources.

Holds live source instances keyed by id and answers capability queries.
The registry is an explicit object handed to the installer; nothing here is
process-global.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from typing import Any

from plugins.base import BaseSource
from plugins.errors import NotFoundError
from plugins.shape import has_capability

logger = logging.getLogger(__name__)


class PluginRegistry:
    """Registry for loaded source instances.

    A second registration under an existing id replaces the previous
    instance (last write wins).
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._sources: dict[str, BaseSource] = {}

    def register(self, source: BaseSource) -> None:
        """Register a loaded source.

        Args:
            source: Shape-validated source instance
        """
        previous = self._sources.get(source.id)
        if previous is not None and previous is not source:
            logger.warning(
                "Source '%s' already registered (version %s), replacing with version %s",
                source.id,
                previous.version,
                source.version,
            )

        self._sources[source.id] = source

        logger.info("Registered source: %s (%s v%s)", source.id, source.name, source.version)

    def unregister(self, source_id: str) -> bool:
        """Unregister a source by id.

        Args:
            source_id: Source id

        Returns:
            True if source was removed, False if not found
        """
        if self._sources.pop(source_id, None) is None:
            return False

        logger.info("Unregistered source: %s", source_id)
        return True

    def get(self, source_id: str) -> BaseSource | None:
        """Get a source by id.

        Args:
            source_id: Source id

        Returns:
            Source or None if not found
        """
        return self._sources.get(source_id)

    def require(self, source_id: str) -> BaseSource:
        """Get a source by id, failing if it is not loaded.

        Raises:
            NotFoundError: If the source is not registered
        """
        source = self._sources.get(source_id)
        if source is None:
            available = ", ".join(sorted(self._sources)) or "none"
            raise NotFoundError(
                f"Source '{source_id}' not found. Available sources: {available}",
                source_id=source_id,
            )
        return source

    def has(self, source_id: str) -> bool:
        return source_id in self._sources

    def list(self) -> list[BaseSource]:
        """List all registered sources."""
        return list(self._sources.values())

    def ids(self) -> list[str]:
        return list(self._sources)

    def clear(self) -> None:
        """Remove every registered source."""
        count = len(self._sources)
        self._sources.clear()
        logger.info("Cleared %d registered sources", count)

    def get_by_capability(self, capability: str) -> list[BaseSource]:
        """Get sources whose `capability` member is currently callable.

        Args:
            capability: Method name, e.g. "search" or "get_trending"

        Returns:
            Matching sources in registration order
        """
        return [source for source in self._sources.values() if has_capability(source, capability)]

    async def search_all(
        self,
        query: str,
        source_ids: list[str] | None = None,
        options: Any = None,
    ) -> dict[str, Any]:
        """Search across every registered source that supports search.

        Sources whose search raises are logged and left out of the result.

        Args:
            query: Search query
            source_ids: Restrict the search to these ids (None = all)
            options: Passed through to each source's search

        Returns:
            Mapping of source id to that source's results
        """
        targets = [
            source
            for source in self.get_by_capability("search")
            if source_ids is None or source.id in source_ids
        ]
        if not targets:
            return {}

        outcomes = await asyncio.gather(
            *(source.search(query, options) for source in targets),
            return_exceptions=True,
        )

        results: dict[str, Any] = {}
        for source, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Search failed for source %s: %s", source.id, outcome)
                continue
            results[source.id] = outcome
        return results

    def __len__(self) -> int:
        """Number of registered sources."""
        return len(self._sources)

    def __contains__(self, source_id: object) -> bool:
        """Check if source is registered."""
        return source_id in self._sources

    def __iter__(self) -> Iterator[BaseSource]:
        return iter(list(self._sources.values()))
