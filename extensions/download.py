"""Download of published source code.

Browsable GitHub URLs are rewritten to their raw equivalents and every
request carries a cache-busting parameter.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from plugins.errors import NetworkError

logger = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_TIMEOUT = 30.0
CACHE_BUSTER_PARAM = "_t"

_GITHUB_BROWSE_URL = re.compile(
    r"^https?://(?:www\.)?github\.com/(?P<owner>[^/]+)/(?P<repo>[^/]+)/(?:blob|tree|raw)/(?P<rest>.+)$"
)
_HTML_MARKERS = ("<!doctype html", "<html")


def normalize_download_url(url: str) -> str:
    """Rewrite a browsable GitHub URL into its raw-content URL.

    Example:
        >>> normalize_download_url("https://github.com/o/r/blob/main/src/a.py")
        'https://raw.githubusercontent.com/o/r/main/src/a.py'
    """
    match = _GITHUB_BROWSE_URL.match(url.strip())
    if not match:
        return url.strip()
    rest = match.group("rest").split("?", 1)[0].split("#", 1)[0]
    return f"https://raw.githubusercontent.com/{match.group('owner')}/{match.group('repo')}/{rest}"


def add_cache_buster(url: str, timestamp_ms: int | None = None) -> str:
    """Append (or replace) the cache-busting `_t` query parameter."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != CACHE_BUSTER_PARAM]
    query.append((CACHE_BUSTER_PARAM, str(timestamp_ms)))
    return urlunsplit(parts._replace(query=urlencode(query)))


def looks_like_html(content: bytes) -> bool:
    """Check whether a payload is a rendered web page rather than code."""
    head = content[:512].decode("utf-8", errors="ignore").lstrip().lower()
    return head.startswith(_HTML_MARKERS)


@dataclass
class DownloadedCode:
    """Raw code bytes plus the URL they came from."""

    content: bytes
    origin_url: str

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")

    def __len__(self) -> int:
        return len(self.content)


class SourceDownloader:
    """Fetches source code with a time bound."""

    def __init__(
        self,
        timeout: float = DEFAULT_DOWNLOAD_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self._transport = transport

    async def download(self, url: str, source_id: str | None = None) -> DownloadedCode:
        """Download code from a URL.

        Raises:
            NetworkError: On timeout, transport failure, non-2xx status or an HTML body.
        """
        raw_url = normalize_download_url(url)
        if raw_url != url:
            logger.debug("Rewrote download URL %s -> %s", url, raw_url)
        request_url = add_cache_buster(raw_url)

        try:
            content = await asyncio.wait_for(self._get(request_url), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"Download timed out after {self.timeout}s: {raw_url}",
                source_id=source_id,
                reasons=["timeout"],
            ) from e
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"Failed to download source code: HTTP {e.response.status_code}",
                source_id=source_id,
                reasons=[f"HTTP {e.response.status_code}"],
                context={"url": raw_url},
            ) from e
        except httpx.RequestError as e:
            raise NetworkError(
                f"Failed to download source code: {e}",
                source_id=source_id,
                reasons=[str(e)],
                context={"url": raw_url},
            ) from e

        if looks_like_html(content):
            raise NetworkError(
                "Received an HTML page instead of source code. Check the download URL.",
                source_id=source_id,
                context={"url": raw_url},
            )

        logger.debug("Downloaded %d bytes from %s", len(content), raw_url)
        return DownloadedCode(content=content, origin_url=raw_url)

    async def _get(self, url: str) -> bytes:
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            response = await client.get(url, headers={"Accept": "text/plain, */*"})
            response.raise_for_status()
            return response.content
