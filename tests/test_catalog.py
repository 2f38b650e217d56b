"""Tests for the local source catalog."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from extensions.catalog import SourceCatalog
from extensions.client import RegistryClient
from extensions.manifest import SourceEntry
from plugins.errors import FormatError
from tests.helpers import REGISTRY_URL, FakeServer, make_entry, make_manifest


def entry(source_id: str, **metadata) -> SourceEntry:
    data = make_entry(source_id)
    data["metadata"].update(metadata)
    return SourceEntry.model_validate(data)


@pytest.fixture
def catalog() -> SourceCatalog:
    alpha = entry("alpha", languages=["en", "ja"], tags=["manga", "api"], lastUpdated="2026-10-15T00:00:00Z")
    beta = entry("beta", languages=["es"], official=False, tags=["manga"], nsfw=True, lastUpdated="2026-08-01")
    gamma = entry("gamma", languages=["EN"], tags=["comics", "scraper"], lastUpdated="not a date")
    alpha.statistics.rating, alpha.statistics.downloads = 3.0, 900
    beta.statistics.rating, beta.statistics.downloads = 4.9, 10
    gamma.statistics.rating, gamma.statistics.downloads = 4.0, 500
    return SourceCatalog([alpha, beta, gamma])


class TestQueries:
    def test_search(self, catalog: SourceCatalog) -> None:
        assert [e.id for e in catalog.search_sources("ALPHA")] == ["alpha"]
        assert [e.id for e in catalog.search_sources("scraper")] == ["gamma"]
        assert len(catalog.search_sources("  ")) == 3

    def test_languages_are_case_insensitive(self, catalog: SourceCatalog) -> None:
        assert [e.id for e in catalog.get_sources_by_language("en")] == ["alpha", "gamma"]
        assert [e.id for e in catalog.get_sources_by_languages(["ja", "es"])] == ["alpha", "beta"]

    def test_tags_require_all(self, catalog: SourceCatalog) -> None:
        assert [e.id for e in catalog.get_sources_by_tag("manga")] == ["alpha", "beta"]
        assert [e.id for e in catalog.get_sources_by_tags(["manga", "api"])] == ["alpha"]

    def test_official_and_nsfw(self, catalog: SourceCatalog) -> None:
        assert [e.id for e in catalog.get_official_sources()] == ["alpha", "gamma"]
        assert [e.id for e in catalog.get_community_sources()] == ["beta"]
        assert [e.id for e in catalog.get_nsfw_sources()] == ["beta"]
        assert [e.id for e in catalog.get_sfw_sources()] == ["alpha", "gamma"]

    def test_sorting(self, catalog: SourceCatalog) -> None:
        assert [e.id for e in catalog.get_sources_by_rating()] == ["beta", "gamma", "alpha"]
        assert [e.id for e in catalog.get_sources_by_popularity()] == ["alpha", "gamma", "beta"]

    def test_recently_updated_skips_undated(self, catalog: SourceCatalog) -> None:
        now = datetime(2026, 10, 19, tzinfo=timezone.utc)

        assert [e.id for e in catalog.get_recently_updated(days=30, now=now)] == ["alpha"]
        assert [e.id for e in catalog.get_recently_updated(days=120, now=now)] == ["alpha", "beta"]

    def test_statistics(self, catalog: SourceCatalog) -> None:
        stats = catalog.get_statistics()

        assert stats.total_sources == 3
        assert (stats.official_sources, stats.community_sources) == (2, 1)
        assert (stats.nsfw_sources, stats.sfw_sources) == (1, 2)
        assert stats.tag_distribution["manga"] == 2
        assert stats.language_distribution["en"] == 1


class TestMutation:
    def test_register_and_unregister(self, catalog: SourceCatalog) -> None:
        catalog.register_source(entry("delta"))

        assert "delta" in catalog
        assert catalog.unregister_source("delta") is True
        assert catalog.unregister_source("delta") is False

    def test_clear_restores_initial_entries(self, catalog: SourceCatalog) -> None:
        catalog.unregister_source("alpha")
        catalog.register_source(entry("delta"))

        catalog.clear()

        assert sorted(e.id for e in catalog.get_all_sources()) == ["alpha", "beta", "gamma"]

    def test_export_then_import(self, catalog: SourceCatalog) -> None:
        exported = catalog.export_json()
        other = SourceCatalog()

        assert other.import_json(exported) == 3
        assert len(other) == 3
        assert "baseUrl" in json.loads(exported)[0]

    @pytest.mark.parametrize("payload", ["{not json", '[{"id": "x"}]', '{"id": "x"}'])
    def test_import_rejects_bad_payload(self, payload: str) -> None:
        with pytest.raises(FormatError):
            SourceCatalog().import_json(payload)


class TestSync:
    async def test_sync_replaces_entries(self, catalog: SourceCatalog, client: RegistryClient, server: FakeServer) -> None:
        server.add_json(REGISTRY_URL, make_manifest([make_entry("remote")]))
        catalog.client = client

        assert await catalog.sync_with_remote() is True
        assert [e.id for e in catalog.get_all_sources()] == ["remote"]

    async def test_failed_sync_keeps_local_entries(
        self, catalog: SourceCatalog, client: RegistryClient, server: FakeServer
    ) -> None:
        server.add_error(REGISTRY_URL)
        server.add_error("https://fallback.test/sources.json")
        catalog.client = client

        assert await catalog.sync_with_remote() is False
        assert len(catalog) == 3

    async def test_sync_without_client(self, catalog: SourceCatalog) -> None:
        with pytest.raises(ValueError):
            await catalog.sync_with_remote()


def test_from_file(tmp_path: Path) -> None:
    path = tmp_path / "sources.json"
    path.write_text(json.dumps(make_manifest([make_entry("bundled")])), encoding="utf-8")

    catalog = SourceCatalog.from_file(path)

    assert catalog.get_source("bundled") is not None
