"""YAML-backed persistent config store for Xanthus.

Supports default path at ~/.xanthus/config.yaml and override via
XANTHUS_CONFIG environment variable. ``Settings`` turns the raw mapping into
typed orchestrator settings, with ``XANTHUS_<KEY>`` environment overrides.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_RELATIVE = Path(".xanthus/config.yaml")
ENV_OVERRIDE = "XANTHUS_CONFIG"
ENV_PREFIX = "XANTHUS_"

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


def _resolve_config_path() -> Path:
    """Resolve the config file path honoring the environment override."""
    env_path = os.getenv(ENV_OVERRIDE)
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / DEFAULT_CONFIG_RELATIVE


def load_config() -> dict[str, Any]:
    """Load configuration from disk; return empty dict if missing or empty."""
    path = _resolve_config_path()
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            return {}
        return data


def save_config(config: dict[str, Any]) -> Path:
    """Persist configuration to disk, creating parent directory as needed."""
    path = _resolve_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config, f, sort_keys=True)
    return path


@dataclass
class ConfigStore:
    """Small dict-like wrapper for Xanthus config with persistence helpers."""

    data: dict[str, Any] = field(default_factory=load_config)

    def get(self, key: str, default: Any | None = None) -> Any | None:
        """Return the value for key if present, else default."""
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a configuration key to the provided value."""
        self.data[key] = value

    def save(self) -> Path:
        """Persist current configuration to disk and return the file path."""
        return save_config(self.data)


def _state_dir() -> Path:
    return _resolve_config_path().parent


@dataclass
class Settings:  # pylint: disable=too-many-instance-attributes
    """Orchestrator settings resolved from config file and environment."""

    catalog_dir: Path = field(default_factory=lambda: _DATA_DIR / "applications")
    templates_dir: Path = field(default_factory=lambda: _DATA_DIR / "templates")
    charts_dir: Path = field(default_factory=lambda: _state_dir() / "charts")
    registry_path: Path = field(default_factory=lambda: _state_dir() / "registry.yaml")
    routes_path: Path = field(default_factory=lambda: _state_dir() / "routes.yaml")
    base_domain: str = ""
    timezone: str = "UTC"
    version_cache_ttl: float = 900.0
    resolve_attempts: int = 3
    apply_timeout: float = 600.0
    request_timeout: float = 30.0
    github_token: str | None = None
    kubeconfig: str | None = None
    vps: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_config(cls, store: ConfigStore | None = None) -> Settings:
        """Build settings from a config store, then apply env overrides.

        Raises:
            ValueError: If a value cannot be converted to the setting's type.
        """
        raw = dict((store or ConfigStore()).data)
        settings = cls()
        for f in fields(cls):
            env_value = os.getenv(f"{ENV_PREFIX}{f.name.upper()}")
            value = env_value if env_value is not None else raw.get(f.name)
            if value is None:
                continue
            setattr(settings, f.name, _coerce(f.name, getattr(settings, f.name), value))
        if settings.github_token is None:
            settings.github_token = os.getenv("GITHUB_TOKEN") or None
        return settings


def _coerce(name: str, current: Any, value: Any) -> Any:
    if name == "vps":
        if isinstance(value, str):
            value = yaml.safe_load(value) or []
        if not isinstance(value, list):
            msg = "vps must be a list of server entries"
            raise ValueError(msg)
        return value
    if isinstance(current, Path):
        return Path(str(value)).expanduser()
    if isinstance(current, bool):
        return str(value).lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return str(value)
