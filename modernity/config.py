"""Configuration loading for modernity (.modernity.yml)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import FatalError

CONFIG_FILENAME = ".modernity.yml"
DEFAULT_SAMPLE_SIZE = 20
DEFAULT_MACRO_DEPTH = 64


class ConfigError(FatalError):
    """Raised when the configuration file cannot be parsed."""

    exit_code = 9


@dataclass
class RegistryConfig:
    """Registry endpoint and politeness settings."""

    base_url: str = "https://crates.io/api/v1"
    user_agent: str = "modernity/0.1 (crate modernity measurements)"
    timeout: float = 30.0
    retries: int = 3
    backoff: float = 2.0


@dataclass
class SamplingConfig:
    """Defaults for version sampling."""

    count: int = DEFAULT_SAMPLE_SIZE
    range: Optional[str] = None


@dataclass
class ModernityConfig:
    """Represents the settings defined in .modernity.yml."""

    root: Path
    expansions_dir: Path
    results_dir: Path
    cache_dir: Path
    workers: Optional[int] = None
    macro_depth: int = DEFAULT_MACRO_DEPTH
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)

    @classmethod
    def defaults(cls, root: Path) -> "ModernityConfig":
        return cls(
            root=root,
            expansions_dir=root / "expansions",
            results_dir=root / "results",
            cache_dir=root / ".modernity",
        )

    def effective_workers(self) -> int:
        if self.workers is not None and self.workers > 0:
            return self.workers
        return max(1, min(os.cpu_count() or 1, 8))


def load_config(config_path: Path) -> ModernityConfig:
    """Load configuration from disk."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()
    config = ModernityConfig.defaults(root)

    if not config_file.exists():
        return config

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    for key in ("expansions_dir", "results_dir", "cache_dir"):
        value = _as_str(data.get(key))
        if value:
            setattr(config, key, _resolve_dir(root, value))

    workers = _as_int(data.get("workers"))
    if workers is not None:
        if workers < 1:
            raise ConfigError("workers must be a positive integer")
        config.workers = workers

    macro_depth = _as_int(data.get("macro_depth"))
    if macro_depth is not None:
        if macro_depth < 1:
            raise ConfigError("macro_depth must be a positive integer")
        config.macro_depth = macro_depth

    registry_data = _as_dict(data.get("registry"))
    if registry_data:
        registry = config.registry
        registry.base_url = (_as_str(registry_data.get("base_url")) or registry.base_url).rstrip("/")
        registry.user_agent = _as_str(registry_data.get("user_agent")) or registry.user_agent
        timeout = _as_float(registry_data.get("timeout"))
        if timeout is not None:
            registry.timeout = timeout
        retries = _as_int(registry_data.get("retries"))
        if retries is not None:
            registry.retries = max(1, retries)
        backoff = _as_float(registry_data.get("backoff"))
        if backoff is not None:
            registry.backoff = max(0.0, backoff)

    sampling_data = _as_dict(data.get("sampling"))
    if sampling_data:
        count = _as_int(sampling_data.get("count"))
        if count is not None:
            if count < 1:
                raise ConfigError("sampling.count must be a positive integer")
            config.sampling.count = count
        config.sampling.range = _as_str(sampling_data.get("range"))

    return config


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _resolve_dir(root: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else root / path


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None
