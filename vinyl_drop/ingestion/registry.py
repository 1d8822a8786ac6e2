"""
Source Registry Module
======================

Manages source configurations loaded from YAML files. Sources define
which communities/APIs are ingested and their associated settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class RateLimitConfig:
    """Rate limiting configuration for a source."""

    requests_per_second: float = 1.0
    burst_limit: int = 5

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RateLimitConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            requests_per_second=float(data.get("requests_per_second", 1.0)),
            burst_limit=int(data.get("burst_limit", 5)),
        )


@dataclass
class SourceConfig:
    """Configuration for a single ingestion source."""

    name: str
    adapter: str
    domain: str = ""
    enabled: bool = True
    description: str = ""
    limit: int = 100
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    custom_config: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], default_rate_limit: RateLimitConfig | None = None
    ) -> SourceConfig:
        """Create from dictionary."""
        rate_limit_data = data.get("rate_limit")
        if rate_limit_data:
            rate_limit = RateLimitConfig.from_dict(rate_limit_data)
        elif default_rate_limit:
            rate_limit = default_rate_limit
        else:
            rate_limit = RateLimitConfig()

        return cls(
            name=data["name"],
            adapter=data["adapter"],
            domain=data.get("domain", ""),
            enabled=data.get("enabled", True),
            description=data.get("description", ""),
            limit=int(data.get("limit", 100)),
            rate_limit=rate_limit,
            custom_config=data.get("custom_config") or {},
        )


@dataclass
class GlobalConfig:
    """Global configuration settings."""

    default_rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    user_agent: str = "VinylDrop/1.0"
    request_timeout: int = 30
    max_retries: int = 3

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GlobalConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            default_rate_limit=RateLimitConfig.from_dict(
                data.get("default_rate_limit")
            ),
            user_agent=data.get("user_agent", "VinylDrop/1.0"),
            request_timeout=int(data.get("request_timeout", 30)),
            max_retries=int(data.get("max_retries", 3)),
        )


class SourceRegistry:
    """
    Registry for managing ingestion source configurations.

    Loads source definitions from a YAML file and provides methods
    to query and manage them.
    """

    def __init__(self) -> None:
        self._sources: dict[str, SourceConfig] = {}
        self._global_config: GlobalConfig = GlobalConfig()
        self._config_path: Path | None = None

    @property
    def global_config(self) -> GlobalConfig:
        """Get global configuration."""
        return self._global_config

    @property
    def config_path(self) -> Path | None:
        """Path of the loaded configuration file, if any."""
        return self._config_path

    def load_config(self, config_path: Path | str) -> None:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the sources.yaml file
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        self._config_path = config_path
        self._global_config = GlobalConfig.from_dict(data.get("global"))

        self._sources.clear()
        for source_data in data.get("sources", []):
            source = SourceConfig.from_dict(
                source_data, self._global_config.default_rate_limit
            )
            self._sources[source.name] = source

    def add_source(self, source: SourceConfig) -> None:
        """Register a source configuration, replacing any with the same name."""
        self._sources[source.name] = source

    def get_source(self, name: str) -> SourceConfig | None:
        """
        Get a source configuration by name.

        Args:
            name: Source name

        Returns:
            SourceConfig if found, None otherwise
        """
        return self._sources.get(name)

    def list_sources(self) -> list[SourceConfig]:
        """Get all registered sources."""
        return list(self._sources.values())

    def list_enabled_sources(self) -> list[SourceConfig]:
        """Get all enabled sources."""
        return [s for s in self._sources.values() if s.enabled]

    def list_sources_by_adapter(self, adapter: str) -> list[SourceConfig]:
        """Get all sources that use the given adapter type."""
        return [s for s in self._sources.values() if s.adapter == adapter]


# Global registry instance
_default_registry: SourceRegistry | None = None


def get_default_registry() -> SourceRegistry:
    """
    Get the default source registry instance.

    Loads configuration from the path specified in SOURCES_CONFIG_PATH
    environment variable, or falls back to config/sources.yaml.

    Returns:
        The global SourceRegistry instance
    """
    global _default_registry

    if _default_registry is None:
        _default_registry = SourceRegistry()

        config_path = os.environ.get("SOURCES_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            module_dir = Path(__file__).parent
            project_root = module_dir.parent.parent
            path = project_root / "config" / "sources.yaml"

        if path.exists():
            _default_registry.load_config(path)

    return _default_registry


def reset_default_registry() -> None:
    """Reset the default registry (useful for testing)."""
    global _default_registry
    _default_registry = None
