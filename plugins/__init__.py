"""Plugin system for remotely distributed content sources.

Sources are Python modules published in a remote manifest. Each module
defines one BaseSource subclass marked as its default export:

    from plugins.base import BaseSource, default_export
    from plugins.entities import Chapter, Manga, Page


    @default_export
    class ExampleSource(BaseSource):
        id = "example"
        name = "Example"
        version = "1.0.0"
        base_url = "https://example.com"

        async def get_manga_details(self, manga_id): ...
        async def get_chapters(self, manga_id): ...
        async def get_chapter_pages(self, chapter_id): ...

The loader turns verified code into an instance, shape checks it, and the
registry keeps it for the rest of the process.
"""

from plugins.base import BaseSource, default_export
from plugins.errors import (
    FormatError,
    InstanceShapeError,
    IntegrityError,
    LoadError,
    NetworkError,
    NotFoundError,
    SecurityError,
    SourceLoaderError,
    StructuralError,
)
from plugins.loader import LoadAttempt, LoadState, RuntimeLoader
from plugins.registry import PluginRegistry
from plugins.runtime import RuntimeClass, detect_runtime
from plugins.shape import CapabilityDescriptor, assert_plugin_shape, describe_capabilities

__version__ = "1.0.0"
CORE_VERSION = __version__

__all__ = [
    "BaseSource",
    "CORE_VERSION",
    "CapabilityDescriptor",
    "FormatError",
    "InstanceShapeError",
    "IntegrityError",
    "LoadAttempt",
    "LoadError",
    "LoadState",
    "NetworkError",
    "NotFoundError",
    "PluginRegistry",
    "RuntimeClass",
    "RuntimeLoader",
    "SecurityError",
    "SourceLoaderError",
    "StructuralError",
    "assert_plugin_shape",
    "default_export",
    "describe_capabilities",
    "detect_runtime",
]
