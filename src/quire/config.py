"""View configuration.

Loaded from a YAML file (``quire.yaml`` by default):

    paths: [resources/views]
    compiled: storage/views/compiled
    auto_reload: false
    extension: .sot.html
    fallback_extension: .html
    environment: production
    components:
      prefix: components
      aliases: {btn: button}
    cache:
      enabled: true
    shared: {app_name: Demo}

Relative paths are resolved against the directory holding the file.
``QUIRE_AUTO_RELOAD`` overrides ``auto_reload``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

log = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "quire.yaml"

AUTO_RELOAD_ENV = "QUIRE_AUTO_RELOAD"


class ComponentsConfig(BaseModel):
    """Component resolution settings."""

    prefix: str = Field(
        default="components", description="View prefix under which components live"
    )
    aliases: dict[str, str] = Field(
        default_factory=dict, description="Tag name -> component name"
    )


class CacheConfig(BaseModel):
    """Compiled artifact cache settings."""

    enabled: bool = Field(default=True, description="Write compiled artifacts to disk")


class ViewConfig(BaseModel):
    """Main view configuration."""

    paths: list[Path] = Field(
        default_factory=lambda: [Path("resources/views")],
        description="Template search paths, in priority order",
    )
    compiled: Path = Field(
        default=Path("storage/views/compiled"),
        description="Directory for compiled artifacts",
    )
    auto_reload: bool = Field(
        default=False, description="Recompile when a source is newer than its artifact"
    )
    extension: str = Field(default=".sot.html", description="Template file extension")
    fallback_extension: str | None = Field(
        default=".html", description="Extension tried when the main one is missing"
    )
    environment: str = Field(
        default="production", description="Environment name tested by @env"
    )
    components: ComponentsConfig = Field(default_factory=ComponentsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    shared: dict[str, Any] = Field(
        default_factory=dict, description="Data shared with every view"
    )

    @classmethod
    def load(cls, path: Path | str | None = None) -> "ViewConfig":
        """Load configuration from YAML.

        A missing file yields the defaults, relative to the current directory.
        """
        path = Path(path) if path is not None else Path(DEFAULT_CONFIG_FILE)

        data: dict[str, Any] = {}
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}
            log.debug(f"Loaded view config from {path}")
        else:
            log.debug(f"No view config at {path}, using defaults")

        config = cls(**data)
        config = config.resolve_paths(path.parent if path.exists() else Path.cwd())

        override = os.environ.get(AUTO_RELOAD_ENV)
        if override is not None:
            config.auto_reload = override.strip().lower() in ("1", "true", "yes", "on")
        return config

    def resolve_paths(self, base: Path) -> "ViewConfig":
        """Copy with relative paths anchored at ``base``."""
        return self.model_copy(
            update={
                "paths": [p if p.is_absolute() else base / p for p in self.paths],
                "compiled": self.compiled
                if self.compiled.is_absolute()
                else base / self.compiled,
            }
        )
