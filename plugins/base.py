"""Base class for content sources.

A source is a class that subclasses BaseSource and is marked as the module's
default export. Every source must provide these members:

    id, name, version, base_url       non-empty strings
    get_manga_details(manga_id)       async -> Manga
    get_chapters(manga_id)            async -> list[Chapter]
    get_chapter_pages(chapter_id)     async -> list[Page]

Optional capabilities are detected by probing the instance at runtime, so
BaseSource itself defines none of them:

    search(query, options=None)
    list_genres()
    get_trending(options=None)
    get_latest(options=None)
    get_popular(options=None)
    get_by_page(label, page_number)

Example source module:

    from plugins.base import BaseSource, default_export


    @default_export
    class ExampleSource(BaseSource):
        id = "example"
        name = "Example"
        version = "1.0.0"
        base_url = "https://example.com"

        async def get_manga_details(self, manga_id):
            data = await self.request(f"{self.base_url}/api/manga/{manga_id}")
            return Manga(id=manga_id, title=data["title"], source_id=self.id)
        ...
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx

from plugins.cache import CacheManager
from plugins.errors import ErrorType, SourceError
from plugins.http import DEFAULT_TIMEOUT, fetch

T = TypeVar("T", bound=type)

DEFAULT_EXPORT_FLAG = "__default_export__"


def default_export(cls: T) -> T:
    """Mark a class as the default export of its module."""
    setattr(cls, DEFAULT_EXPORT_FLAG, True)
    return cls


def is_default_export(obj: Any) -> bool:
    """Check whether a class was marked by default_export itself.

    Subclasses inherit the flag attribute, so only the class's own namespace
    is consulted.
    """
    return isinstance(obj, type) and vars(obj).get(DEFAULT_EXPORT_FLAG) is True


class BaseSource:
    """Base class every remotely loaded source must extend."""

    id: str
    name: str
    version: str
    base_url: str

    languages: tuple[str, ...] = ()
    is_nsfw: bool = False
    icon: str | None = None
    description: str | None = None

    def __init__(
        self,
        enable_cache: bool = False,
        cache_ttl: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the source.

        Args:
            enable_cache: Cache responses of request(..., cache=True).
            cache_ttl: Default lifetime of cached responses in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.logger = logging.getLogger(f"source.{getattr(self, 'id', type(self).__name__)}")
        self.cache_manager = CacheManager(default_ttl=cache_ttl) if enable_cache else None
        self._transport = transport

    async def request(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
        timeout: float = DEFAULT_TIMEOUT,
        cache: bool = False,
        cache_ttl: float | None = None,
    ) -> Any:
        """Make an HTTP request and decode the body.

        JSON responses are decoded; everything else is returned as text.

        Raises:
            SourceError: If the request fails.
        """
        cache_key = self._cache_key(method, url, params)
        if cache and self.cache_manager is not None:
            cached = self.cache_manager.get(cache_key)
            if cached is not None:
                return cached

        try:
            response = await fetch(
                url,
                method=method,
                headers=headers,
                params=params,
                json=json,
                timeout=timeout,
                transport=self._transport,
            )
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            error_type = {
                401: ErrorType.AUTH,
                403: ErrorType.AUTH,
                404: ErrorType.NOT_FOUND,
                429: ErrorType.RATE_LIMIT,
            }.get(status, ErrorType.NETWORK)
            raise self.create_error(
                error_type,
                f"Request failed with HTTP {status}",
                status_code=status,
                context={"url": url, "method": method},
            ) from e
        except httpx.TimeoutException as e:
            raise self.create_error(
                ErrorType.TIMEOUT,
                f"Request timed out after {timeout}s",
                context={"url": url, "method": method},
            ) from e
        except httpx.RequestError as e:
            raise self.create_error(
                ErrorType.NETWORK,
                f"Request failed: {e}",
                context={"url": url, "method": method},
            ) from e

        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                result = response.json()
            except ValueError as e:
                raise self.create_error(
                    ErrorType.PARSE,
                    f"Invalid JSON response: {e}",
                    context={"url": url},
                ) from e
        else:
            result = response.text

        if cache and self.cache_manager is not None:
            self.cache_manager.set(cache_key, result, cache_ttl)

        return result

    def create_error(
        self,
        error_type: ErrorType,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> SourceError:
        """Build a SourceError tagged with this source's id."""
        return SourceError(
            error_type,
            message,
            source_id=getattr(self, "id", type(self).__name__),
            status_code=status_code,
            context=context,
        )

    @staticmethod
    def _cache_key(method: str, url: str, params: dict[str, Any] | None) -> str:
        if not params:
            return f"{method}:{url}"
        query = "&".join(f"{k}={params[k]}" for k in sorted(params))
        return f"{method}:{url}?{query}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(id={getattr(self, 'id', None)!r}, "
            f"version={getattr(self, 'version', None)!r})"
        )
