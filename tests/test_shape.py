"""Tests for instance shape checks and capability probing."""

import pytest

from plugins.base import BaseSource
from plugins.errors import InstanceShapeError
from plugins.shape import CapabilityDescriptor, assert_plugin_shape, describe_capabilities, has_capability


class CompleteSource(BaseSource):
    id = "complete"
    name = "Complete"
    version = "1.0.0"
    base_url = "https://complete.test"

    async def get_manga_details(self, manga_id):
        return None

    async def get_chapters(self, manga_id):
        return []

    async def get_chapter_pages(self, chapter_id):
        return []


class SearchableSource(CompleteSource):
    async def search(self, query, options=None):
        return []

    async def get_latest(self, options=None):
        return []


def test_complete_source_passes() -> None:
    assert_plugin_shape(CompleteSource())


@pytest.mark.parametrize("member", ["id", "name", "version", "base_url"])
def test_missing_or_blank_field(member: str) -> None:
    source = CompleteSource()
    setattr(source, member, "  ")

    with pytest.raises(InstanceShapeError) as exc_info:
        assert_plugin_shape(source)

    assert exc_info.value.member == member


def test_non_string_field() -> None:
    source = CompleteSource()
    source.version = 1

    with pytest.raises(InstanceShapeError, match="'version'"):
        assert_plugin_shape(source)


@pytest.mark.parametrize("method", ["get_manga_details", "get_chapters", "get_chapter_pages"])
def test_missing_required_method(method: str) -> None:
    source = CompleteSource()
    setattr(source, method, None)

    with pytest.raises(InstanceShapeError) as exc_info:
        assert_plugin_shape(source)

    assert exc_info.value.member == method
    assert exc_info.value.source_id == "complete"


def test_bare_base_source_fails_on_first_field() -> None:
    with pytest.raises(InstanceShapeError) as exc_info:
        assert_plugin_shape(BaseSource())

    assert exc_info.value.member == "id"
    assert exc_info.value.source_id is None


class TestCapabilities:
    def test_base_class_defines_no_optional_capability(self) -> None:
        assert describe_capabilities(CompleteSource()) == CapabilityDescriptor()

    def test_detects_declared_methods(self) -> None:
        descriptor = describe_capabilities(SearchableSource())

        assert descriptor.search
        assert descriptor.get_latest
        assert not descriptor.get_trending
        assert descriptor.supported() == ["search", "get_latest"]

    def test_capability_set_to_none_is_absent(self) -> None:
        source = SearchableSource()
        source.search = None

        assert not has_capability(source, "search")
        assert describe_capabilities(source).supported() == ["get_latest"]

    def test_capability_attached_at_runtime(self) -> None:
        source = CompleteSource()

        async def get_popular(options=None):
            return []

        source.get_popular = get_popular

        assert describe_capabilities(source).supported() == ["get_popular"]
