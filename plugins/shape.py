"""Runtime shape checks for instantiated sources.

Source code is unknown until load time, so conformance to the capability
contract is checked once on the live instance before it is registered.
"""

from dataclasses import dataclass
from typing import Any

from plugins.errors import InstanceShapeError

REQUIRED_FIELDS = ("id", "name", "version", "base_url")
REQUIRED_METHODS = ("get_manga_details", "get_chapters", "get_chapter_pages")
OPTIONAL_METHODS = (
    "search",
    "list_genres",
    "get_trending",
    "get_latest",
    "get_popular",
    "get_by_page",
)


@dataclass(frozen=True)
class CapabilityDescriptor:
    """Optional capabilities detected on a source instance."""

    search: bool = False
    list_genres: bool = False
    get_trending: bool = False
    get_latest: bool = False
    get_popular: bool = False
    get_by_page: bool = False

    def supported(self) -> list[str]:
        """Names of the optional capabilities that are present."""
        return [name for name in OPTIONAL_METHODS if getattr(self, name)]


def has_capability(instance: Any, name: str) -> bool:
    """Check whether `instance.name` is currently callable."""
    return callable(getattr(instance, name, None))


def assert_plugin_shape(instance: Any) -> None:
    """Validate that an instance satisfies the required source contract.

    Args:
        instance: Freshly constructed source object.

    Raises:
        InstanceShapeError: Naming the first missing or invalid member.
    """
    source_id = getattr(instance, "id", None)
    source_id = source_id if isinstance(source_id, str) and source_id else None

    for name in REQUIRED_FIELDS:
        value = getattr(instance, name, None)
        if not isinstance(value, str) or not value.strip():
            raise InstanceShapeError(
                f"Source is missing required field '{name}' (non-empty string)",
                member=name,
                source_id=source_id,
            )

    for name in REQUIRED_METHODS:
        if not has_capability(instance, name):
            raise InstanceShapeError(
                f"Source is missing required method '{name}'",
                member=name,
                source_id=source_id,
            )


def describe_capabilities(instance: Any) -> CapabilityDescriptor:
    """Probe an instance for optional capabilities."""
    return CapabilityDescriptor(**{name: has_capability(instance, name) for name in OPTIONAL_METHODS})
