"""Configuration and command line for remote sources."""

from plugins import __version__

__all__ = ["__version__"]
