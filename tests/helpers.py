"""Test factories and fakes shared across the suite."""

from __future__ import annotations

import hashlib
from collections import Counter
from typing import Any, Callable

import httpx

from extensions.download import normalize_download_url


REGISTRY_URL = "https://registry.test/sources.json"
FALLBACK_URL = "https://fallback.test/sources.json"
CODE_BASE_URL = "https://code.test/sources"


def make_source_code(
    source_id: str = "example",
    version: str = "1.0.0",
    *,
    with_search: bool = True,
) -> str:
    """Source module text as a publisher would ship it."""
    search = (
        "\n"
        "    async def search(self, query, options=None):\n"
        "        return [Manga(id=\"m1\", title=query, source_id=self.id)]\n"
        if with_search
        else ""
    )
    return (
        "from plugins.base import BaseSource, default_export\n"
        "from plugins.entities import Chapter, Manga, Page\n"
        "\n"
        "\n"
        "@default_export\n"
        f"class {source_id.title().replace('-', '')}Source(BaseSource):\n"
        f"    id = \"{source_id}\"\n"
        f"    name = \"{source_id.title()} Source\"\n"
        f"    version = \"{version}\"\n"
        "    base_url = \"https://example.com\"\n"
        "\n"
        "    async def get_manga_details(self, manga_id):\n"
        "        return Manga(id=manga_id, title=\"Example\", source_id=self.id)\n"
        "\n"
        "    async def get_chapters(self, manga_id):\n"
        "        return [Chapter(id=f\"{manga_id}-1\", title=\"Chapter 1\", number=1)]\n"
        "\n"
        "    async def get_chapter_pages(self, chapter_id):\n"
        "        return [Page(index=0, image_url=f\"{self.base_url}/{chapter_id}/1.jpg\")]\n"
        f"{search}"
    )


def sha256_hex(data: str | bytes) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def make_entry(
    source_id: str = "example",
    *,
    code: str | None = None,
    version: str = "1.0.0",
    sha256: str | None = None,
    stable_url: str | None = None,
    **overrides: Any,
) -> dict[str, Any]:
    """Manifest entry in wire (camelCase) form."""
    code = code if code is not None else make_source_code(source_id, version)
    entry: dict[str, Any] = {
        "id": source_id,
        "name": f"{source_id.title()} Source",
        "version": version,
        "baseUrl": "https://example.com",
        "description": f"Reads {source_id} content",
        "author": "Example Team",
        "repository": f"https://github.com/example/{source_id}",
        "downloads": {
            "stable": stable_url or f"{CODE_BASE_URL}/{source_id}.py",
            "latest": f"{CODE_BASE_URL}/{source_id}-latest.py",
            "versions": {version: stable_url or f"{CODE_BASE_URL}/{source_id}.py"},
        },
        "integrity": {"sha256": sha256 or sha256_hex(code)},
        "metadata": {
            "languages": ["en"],
            "nsfw": False,
            "official": True,
            "tags": ["manga", "api"],
            "lastUpdated": "2026-10-01T00:00:00Z",
            "minCoreVersion": "1.0.0",
        },
        "legal": {"sourceType": "api", "requiresAuth": False},
        "changelog": [{"version": version, "date": "2026-10-01", "changes": ["Initial release"]}],
        "statistics": {"downloads": 100, "stars": 5, "rating": 4.5, "activeUsers": 10},
        "capabilities": {"supportsSearch": True},
    }
    entry.update(overrides)
    return entry


def make_manifest(entries: list[dict[str, Any]] | None = None, **overrides: Any) -> dict[str, Any]:
    """Manifest payload in wire form."""
    entries = entries if entries is not None else [make_entry()]
    manifest: dict[str, Any] = {
        "version": "1.0.0",
        "metadata": {
            "lastUpdated": "2026-10-01T00:00:00Z",
            "totalSources": len(entries),
            "maintainer": "Example Team",
            "url": "https://registry.test",
            "description": "Test registry",
            "license": "MIT",
        },
        "sources": entries,
        "categories": {},
        "featured": [],
        "deprecated": [],
        "notices": [],
    }
    manifest.update(overrides)
    return manifest


class FakeServer:
    """Routes httpx requests to canned responses and counts calls.

    Routes are keyed by URL without its query string. A route is an
    httpx.Response, or a callable taking the request and returning (or
    raising) one.
    """

    def __init__(self) -> None:
        self.routes: dict[str, httpx.Response | Callable[[httpx.Request], Any]] = {}
        self.requests: list[httpx.Request] = []

    @staticmethod
    def key(url: str | httpx.URL) -> str:
        url = httpx.URL(url)
        return f"{url.scheme}://{url.host}{url.path}"

    def add(self, url: str, route: httpx.Response | Callable[[httpx.Request], Any]) -> None:
        self.routes[self.key(url)] = route

    def add_json(self, url: str, payload: Any, status: int = 200) -> None:
        self.add(url, lambda request: httpx.Response(status, json=payload))

    def add_text(self, url: str, text: str | bytes, status: int = 200) -> None:
        content = text.encode("utf-8") if isinstance(text, str) else text
        self.add(url, lambda request: httpx.Response(status, content=content, headers={"content-type": "text/plain"}))

    def add_error(self, url: str) -> None:
        def fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        self.add(url, fail)

    def count(self, url: str) -> int:
        return Counter(self.key(r.url) for r in self.requests)[self.key(url)]

    def handler(self, request: httpx.Request) -> Any:
        self.requests.append(request)
        route = self.routes.get(self.key(request.url))
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            return route(request)
        return route

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def publish(server: FakeServer, entries: list[tuple[dict[str, Any], str]], **manifest_overrides: Any) -> None:
    """Serve a manifest plus each entry's code at its stable URL."""
    server.add_json(REGISTRY_URL, make_manifest([entry for entry, _ in entries], **manifest_overrides))
    for entry, code in entries:
        server.add_text(normalize_download_url(entry["downloads"]["stable"]), code)
