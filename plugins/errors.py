"""Error types for remote source loading.

Every failure raised by the loading subsystem derives from SourceLoaderError
so callers can catch the whole family at once. Errors raised by a plugin
after it has been loaded are not translated into these types.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any


class SourceLoaderError(Exception):
    """Base class for all loader errors.

    Attributes:
        source_id: Source the error relates to, if known.
        context: Extra diagnostic details (always carries a timestamp).
    """

    def __init__(
        self,
        message: str,
        source_id: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.source_id = source_id
        self.context = {
            **(context or {}),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def __str__(self) -> str:
        message = super().__str__()
        if self.source_id:
            return f"[{self.source_id}] {message}"
        return message


class NetworkError(SourceLoaderError):
    """Raised when manifest or code retrieval fails."""

    def __init__(
        self,
        message: str,
        source_id: str | None = None,
        reasons: list[str] | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, source_id=source_id, context=context)
        self.reasons = list(reasons or [])


class FormatError(SourceLoaderError):
    """Raised when a manifest payload fails the schema check."""

    pass


class NotFoundError(SourceLoaderError):
    """Raised when a source id (or version) cannot be resolved."""

    pass


class IntegrityError(SourceLoaderError):
    """Raised when downloaded code does not match its declared digest."""

    pass


class StructuralError(SourceLoaderError):
    """Raised when code lacks the base-class subtype or default export."""

    pass


class SecurityError(SourceLoaderError):
    """Raised when code contains a denylisted pattern."""

    def __init__(
        self,
        message: str,
        pattern: str,
        source_id: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, source_id=source_id, context=context)
        self.pattern = pattern


class LoadError(SourceLoaderError):
    """Raised when code cannot be turned into a source instance."""

    def __init__(
        self,
        message: str,
        source_id: str | None = None,
        reasons: list[str] | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, source_id=source_id, context=context)
        self.reasons = list(reasons or [])


class InstanceShapeError(SourceLoaderError):
    """Raised when an instantiated source lacks a required member."""

    def __init__(
        self,
        message: str,
        member: str,
        source_id: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, source_id=source_id, context=context)
        self.member = member


def is_retryable(error: BaseException) -> bool:
    """Check whether an error is worth retrying at a higher level."""
    return isinstance(error, NetworkError)


def format_error(error: BaseException) -> str:
    """Format an error for display."""
    if isinstance(error, SourceLoaderError):
        return f"{type(error).__name__}: {error}"
    return str(error)


class ErrorType(str, Enum):
    """Categories for errors raised by sources while serving requests."""

    NETWORK = "NETWORK_ERROR"
    PARSE = "PARSE_ERROR"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    AUTH = "AUTH_ERROR"
    TIMEOUT = "TIMEOUT_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"


class SourceError(Exception):
    """Raised by a loaded source while serving a request.

    These errors belong to the plugin; the loader never raises or translates
    them.
    """

    def __init__(
        self,
        type: ErrorType,
        message: str,
        source_id: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.type = type
        self.source_id = source_id
        self.status_code = status_code
        self.context = {
            **(context or {}),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def __str__(self) -> str:
        return f"[{self.source_id}] {self.type.value}: {super().__str__()}"
