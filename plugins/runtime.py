"""Runtime-class detection.

The host interpreter is probed once per process and mapped to an ordered
list of materialization strategies. Configuration may force a class.
"""

import logging
import os
import platform
import sys
import tempfile
from enum import Enum
from functools import lru_cache

logger = logging.getLogger(__name__)


class RuntimeClass(str, Enum):
    """Classes of host runtime, by code-loading ability."""

    STANDARD = "standard"
    EMBEDDED = "embedded"
    RESTRICTED = "restricted"


STRATEGY_ORDER: dict[RuntimeClass, tuple[str, ...]] = {
    RuntimeClass.STANDARD: ("synthetic-module", "inline-module", "sandboxed"),
    RuntimeClass.EMBEDDED: ("inline-module", "sandboxed"),
    RuntimeClass.RESTRICTED: ("sandboxed",),
}

SUPPORTED_IMPLEMENTATIONS = {"cpython", "pypy"}
EMBEDDED_PLATFORMS = {"emscripten", "wasi"}


def _has_writable_tempdir() -> bool:
    try:
        directory = tempfile.gettempdir()
    except OSError:
        return False
    return os.access(directory, os.W_OK)


@lru_cache(maxsize=1)
def detect_runtime() -> RuntimeClass:
    """Probe the running interpreter.

    Returns:
        STANDARD for CPython/PyPy with a writable temp dir, EMBEDDED for
        emscripten/wasi builds or hosts without one, RESTRICTED otherwise.
    """
    implementation = platform.python_implementation().lower()
    if implementation not in SUPPORTED_IMPLEMENTATIONS:
        runtime = RuntimeClass.RESTRICTED
    elif sys.platform in EMBEDDED_PLATFORMS or not _has_writable_tempdir():
        runtime = RuntimeClass.EMBEDDED
    else:
        runtime = RuntimeClass.STANDARD

    logger.debug("Detected runtime class: %s (%s on %s)", runtime.value, implementation, sys.platform)
    return runtime


def resolve_runtime(override: str | None = None) -> RuntimeClass:
    """Resolve the runtime class, honoring a configured override.

    Args:
        override: "auto", None, or one of the RuntimeClass values

    Raises:
        ValueError: If the override names no runtime class
    """
    if override is None or override.strip().lower() in ("", "auto"):
        return detect_runtime()
    try:
        return RuntimeClass(override.strip().lower())
    except ValueError:
        valid = ", ".join(["auto"] + [r.value for r in RuntimeClass])
        raise ValueError(f"Unknown runtime '{override}'. Expected one of: {valid}") from None


def strategy_names(runtime: RuntimeClass) -> tuple[str, ...]:
    """Ordered strategy names for a runtime class."""
    return STRATEGY_ORDER[runtime]
