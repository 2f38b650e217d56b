"""Configuration management for remote sources.

Loads configuration from:
1. Defaults
2. sources.toml (current or parent directories)
3. Environment variables (overrides, .env supported)
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

CONFIG_FILENAME = "sources.toml"


@dataclass
class RegistryConfig:
    """Remote manifest configuration."""

    url: str = "https://cdn.jsdelivr.net/gh/Alaric-senpai/The-joyboy-project@main/registry/sources.json"
    fallback_url: str = "https://raw.githubusercontent.com/Alaric-senpai/The-joyboy-project/main/registry/sources.json"
    cache_duration: float = 10800  # seconds (3 hours)
    timeout: float = 30


@dataclass
class LoaderConfig:
    """Code download and materialization configuration."""

    runtime: str = "auto"  # "auto" | "standard" | "embedded" | "restricted"
    load_timeout: float = 30
    download_timeout: float = 30
    code_cache_ttl: float = 86400  # seconds (24 hours)


@dataclass
class Config:
    """Main configuration container."""

    registry: RegistryConfig = field(default_factory=RegistryConfig)
    loader: LoaderConfig = field(default_factory=LoaderConfig)
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        registry_data = data.get("registry", {})
        loader_data = data.get("loader", {})

        return cls(
            registry=RegistryConfig(**registry_data),
            loader=LoaderConfig(**loader_data),
            log_level=str(data.get("log_level", "INFO")).upper(),
        )


def find_config_file() -> Path | None:
    """Find sources.toml in current or parent directories.

    Returns:
        Path to sources.toml or None if not found.
    """
    current = Path.cwd()

    for directory in [current, *current.parents]:
        config_path = directory / CONFIG_FILENAME
        if config_path.exists():
            return config_path

    return None


def load_config(config_path: Path | str | None = None) -> Config:
    """Load configuration from file and environment.

    Args:
        config_path: Optional explicit path to sources.toml

    Returns:
        Config object with merged settings.
    """
    config_data: dict[str, Any] = {}

    if config_path is None:
        config_path = find_config_file()

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path, "rb") as f:
                config_data = tomllib.load(f)

    env_overrides = {
        "registry": {
            "url": os.getenv("SOURCES_REGISTRY_URL"),
            "fallback_url": os.getenv("SOURCES_FALLBACK_URL"),
            "cache_duration": _float_or_none(os.getenv("SOURCES_CACHE_DURATION")),
            "timeout": _float_or_none(os.getenv("SOURCES_TIMEOUT")),
        },
        "loader": {
            "runtime": os.getenv("SOURCES_RUNTIME"),
            "load_timeout": _float_or_none(os.getenv("SOURCES_LOAD_TIMEOUT")),
        },
    }

    # Merge env overrides (only non-None values)
    for section, values in env_overrides.items():
        if section not in config_data:
            config_data[section] = {}
        for key, value in values.items():
            if value is not None:
                config_data[section][key] = value

    log_level = os.getenv("LOG_LEVEL")
    if log_level:
        config_data["log_level"] = log_level

    return Config.from_dict(config_data)


def _float_or_none(value: str | None) -> float | None:
    """Convert string to float, or return None."""
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


# Global config instance (lazy loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance.

    Returns:
        Config object (loaded once, cached).
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Path | str | None = None) -> Config:
    """Force reload of configuration.

    Returns:
        Fresh Config object.
    """
    global _config
    _config = load_config(config_path)
    return _config
