"""
Dynaconf-powered launch configuration with Pydantic validation.

The configuration service loads the layered YAML files of a config directory
(`config.yaml`, then an optional `secrets.yaml` merged on top), lets `DAI_ROS_PY_*`
environment variables override them and validates the result into a frozen
`LaunchSnapshot` the launcher wires the execution context from.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from dynaconf import Dynaconf
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .contracts import NodeOptions
from .errors import ConfigurationError
from .executor import ExecutorKind
from .plugins import DEFAULT_RESOURCE_TYPE


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    """Case-insensitive dictionary lookup helper."""
    value = raw.get(key) or raw.get(key.upper()) or raw.get(key.lower())
    if isinstance(value, dict):
        # Environment overrides may add upper-cased nested keys; later keys win.
        return {str(name).lower(): item for name, item in value.items()}
    return {}


def _section_list(raw: dict[str, Any], key: str) -> list[dict[str, Any]]:
    value = raw.get(key) or raw.get(key.upper()) or raw.get(key.lower())
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    if isinstance(value, dict):
        return [value]
    return []


CONFIG_FILENAMES = ("config.yaml", "secrets.yaml")
ENVVAR_PREFIX = "DAI_ROS_PY"
DEFAULT_CONFIG_DIR = Path("config")


class ConfigError(ConfigurationError):
    """Raised when configuration files are missing or invalid."""


class ContextSettings(BaseModel):
    """Executor selection and the global argument vector."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    mode: ExecutorKind = Field(default=ExecutorKind.SINGLE_THREADED)
    args: list[str] = Field(default_factory=list)
    num_threads: int | None = Field(default=None, ge=1)


class ResourceIndexSettings(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    prefixes: list[Path] | None = Field(
        default=None, description="Install prefixes; AMENT_PREFIX_PATH when unset."
    )
    resource_type: str = Field(default=DEFAULT_RESOURCE_TYPE)

    @field_validator("prefixes", mode="before")
    @classmethod
    def _split_prefixes(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item for item in value.split(os.pathsep) if item]
        return value


class ComponentSettings(BaseModel):
    """One composable node to load at launch."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    package: str
    plugin: str
    options: NodeOptions = Field(default_factory=NodeOptions)

    @classmethod
    def from_cli(cls, spec: str) -> ComponentSettings:
        """Parse `PACKAGE:PLUGIN`; the plugin part may itself contain `::`."""
        package, sep, plugin = spec.partition(":")
        if not sep or not package or not plugin:
            raise ConfigError(f"Invalid component '{spec}', expected PACKAGE:PLUGIN")
        return cls(package=package, plugin=plugin)


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Path | None = Field(default=None, description="Rotating log file, disabled when unset.")
    max_mb: int = Field(default=5, ge=1)
    backup_count: int = Field(default=5, ge=0)

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class MetricsSettings(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    enabled: bool = Field(default=False)
    addr: str = Field(default="0.0.0.0")
    port: int = Field(default=9093, ge=0, le=65535)
    namespace: str = Field(default="dai_ros_py")


class LaunchSnapshot(BaseModel):
    """Validated view over the whole configuration directory."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    context: ContextSettings = Field(default_factory=ContextSettings)
    resource_index: ResourceIndexSettings = Field(default_factory=ResourceIndexSettings)
    components: list[ComponentSettings] = Field(default_factory=list)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)


class ConfigService:
    """
    Runtime facade for loading and validating launch configuration.
    """

    def __init__(
        self,
        *,
        config_dir: str | Path | None = None,
        settings: Dynaconf | None = None,
    ) -> None:
        self._config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        settings_files = [self._config_dir / name for name in CONFIG_FILENAMES]
        existing_files = [str(path) for path in settings_files if path.exists()]
        if settings is None and not existing_files:
            raise ConfigError(
                f"No configuration files found in {self._config_dir}. "
                "Expected at least config.yaml."
            )

        self._settings = settings or Dynaconf(
            envvar_prefix=ENVVAR_PREFIX,
            settings_files=existing_files,
            load_dotenv=False,
            environments=False,
            merge_enabled=True,
        )
        self._snapshot = self._build_snapshot()

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    @property
    def snapshot(self) -> LaunchSnapshot:
        """Latest validated configuration snapshot."""
        return self._snapshot

    def refresh(self) -> LaunchSnapshot:
        """Reload configuration files and rebuild the snapshot."""
        self._settings.reload()
        self._snapshot = self._build_snapshot()
        return self._snapshot

    def _build_snapshot(self) -> LaunchSnapshot:
        raw = self._settings.as_dict()
        data = {
            "context": _section(raw, "context"),
            "resource_index": _section(raw, "resource_index"),
            "components": _section_list(raw, "components"),
            "logging": _section(raw, "logging"),
            "metrics": _section(raw, "metrics"),
        }
        try:
            return LaunchSnapshot.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Configuration validation failed: {exc}") from exc


__all__ = [
    "CONFIG_FILENAMES",
    "ComponentSettings",
    "ConfigError",
    "ConfigService",
    "ContextSettings",
    "LaunchSnapshot",
    "LoggingSettings",
    "MetricsSettings",
    "ResourceIndexSettings",
]
