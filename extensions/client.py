"""Registry client for the remote source manifest.

Fetches sources.json from a primary URL with a single fallback hop and
keeps the parsed manifest in a TTL cache.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from extensions.download import add_cache_buster
from extensions.manifest import Manifest, Notice, SourceEntry
from plugins.errors import FormatError, NetworkError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_URL = "https://cdn.jsdelivr.net/gh/Alaric-senpai/The-joyboy-project@main/registry/sources.json"
DEFAULT_FALLBACK_URL = "https://raw.githubusercontent.com/Alaric-senpai/The-joyboy-project/main/registry/sources.json"
DEFAULT_CACHE_DURATION = 3 * 60 * 60
DEFAULT_TIMEOUT = 30.0


@dataclass
class CachedManifest:
    """A manifest plus its fetch and expiry times (clock seconds)."""

    manifest: Manifest
    fetched_at: float
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


@dataclass
class CacheInfo:
    is_cached: bool
    expires_in: float | None = None


class RegistryClient:
    """Client for the remote source manifest.

    Example:
        >>> client = RegistryClient()
        >>> manifest = await client.fetch_manifest()
        >>> entry = await client.get_source("mangadex")
    """

    def __init__(
        self,
        registry_url: str = DEFAULT_REGISTRY_URL,
        fallback_url: str | None = DEFAULT_FALLBACK_URL,
        cache_duration: float = DEFAULT_CACHE_DURATION,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the registry client.

        Args:
            registry_url: Primary manifest URL.
            fallback_url: URL tried once when the primary fails.
            cache_duration: Manifest cache lifetime in seconds.
            timeout: Per-request time limit in seconds.
            transport: Optional httpx transport (used by tests).
            clock: Monotonic time source for cache expiry.
        """
        self.registry_url = registry_url
        self.fallback_url = fallback_url
        self.cache_duration = cache_duration
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self._cache: CachedManifest | None = None
        self._lock = asyncio.Lock()

    async def fetch_manifest(self) -> Manifest:
        """Return the manifest, from cache while it is fresh.

        Raises:
            NetworkError: If both the primary and fallback URLs fail.
            FormatError: If the payload is not a valid manifest.
        """
        async with self._lock:
            if self._cache is not None and self._cache.is_fresh(self._clock()):
                logger.debug("Using cached registry manifest")
                return self._cache.manifest

            payload = await self._fetch_payload()
            manifest = Manifest.parse(payload)

            now = self._clock()
            self._cache = CachedManifest(
                manifest=manifest,
                fetched_at=now,
                expires_at=now + self.cache_duration,
            )
            logger.info("Loaded registry manifest v%s with %d sources", manifest.version, len(manifest.sources))
            return manifest

    async def refresh(self) -> Manifest:
        """Bypass the cache and fetch the manifest again."""
        self.clear_cache()
        return await self.fetch_manifest()

    def clear_cache(self) -> None:
        self._cache = None

    def cache_info(self) -> CacheInfo:
        """Describe the cache state."""
        if self._cache is None:
            return CacheInfo(is_cached=False)
        remaining = self._cache.expires_at - self._clock()
        if remaining <= 0:
            return CacheInfo(is_cached=False, expires_in=0.0)
        return CacheInfo(is_cached=True, expires_in=remaining)

    async def _fetch_payload(self) -> Any:
        urls = [("primary", self.registry_url)]
        if self.fallback_url:
            urls.append(("fallback", self.fallback_url))

        reasons: list[str] = []
        for label, url in urls:
            try:
                body = await self._get(url)
            except asyncio.TimeoutError:
                reason = f"{label} ({url}): timed out after {self.timeout}s"
            except httpx.HTTPStatusError as e:
                reason = f"{label} ({url}): HTTP {e.response.status_code}"
            except httpx.RequestError as e:
                reason = f"{label} ({url}): {type(e).__name__}: {e}"
            else:
                try:
                    return json.loads(body)
                except json.JSONDecodeError as e:
                    raise FormatError(f"Invalid registry format: response is not JSON ({e})") from e

            reasons.append(reason)
            if label == "primary" and len(urls) > 1:
                logger.warning("Primary registry failed, trying fallback: %s", reason)

        raise NetworkError(
            f"Failed to fetch registry from all sources: {'; '.join(reasons)}",
            reasons=reasons,
        )

    async def _get(self, url: str) -> bytes:
        request_url = add_cache_buster(url)
        return await asyncio.wait_for(self._request(request_url), timeout=self.timeout)

    async def _request(self, url: str) -> bytes:
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            response = await client.get(url, headers={"Accept": "application/json"})
            response.raise_for_status()
            return response.content

    # Queries

    async def get_sources(self) -> list[SourceEntry]:
        manifest = await self.fetch_manifest()
        return list(manifest.sources)

    async def get_source(self, source_id: str) -> SourceEntry | None:
        manifest = await self.fetch_manifest()
        return manifest.get(source_id)

    async def require_source(self, source_id: str) -> SourceEntry:
        """Resolve a manifest entry.

        Raises:
            NotFoundError: If the id is not in the manifest.
        """
        entry = await self.get_source(source_id)
        if entry is None:
            raise NotFoundError(f"Source '{source_id}' not found in registry", source_id=source_id)
        return entry

    async def get_sources_by_category(self, category: str) -> list[SourceEntry]:
        manifest = await self.fetch_manifest()
        ids = manifest.categories.get(category, [])
        return [entry for entry in manifest.sources if entry.id in ids]

    async def get_featured_sources(self) -> list[SourceEntry]:
        manifest = await self.fetch_manifest()
        return [entry for entry in manifest.sources if entry.id in manifest.featured]

    async def get_deprecated_sources(self) -> list[SourceEntry]:
        manifest = await self.fetch_manifest()
        return [entry for entry in manifest.sources if entry.id in manifest.deprecated]

    async def search_sources(self, query: str) -> list[SourceEntry]:
        """Case-insensitive search over name, description and tags."""
        manifest = await self.fetch_manifest()
        needle = query.strip().lower()
        return [
            entry
            for entry in manifest.sources
            if needle in entry.name.lower()
            or needle in entry.description.lower()
            or any(needle in tag.lower() for tag in entry.metadata.tags)
        ]

    async def get_metadata(self) -> dict[str, Any]:
        manifest = await self.fetch_manifest()
        return {"version": manifest.version, **manifest.metadata.model_dump()}

    async def get_notices(self) -> list[Notice]:
        manifest = await self.fetch_manifest()
        return list(manifest.notices)
