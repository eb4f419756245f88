"""Configuration helpers for the member field sync tools."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


PACKAGE_ROOT = Path(__file__).resolve().parents[1]

DEFAULT_CONFIG_LOCATIONS = (
    PACKAGE_ROOT / "config" / "config.yaml",
    PACKAGE_ROOT / "config" / "config.yml",
    PACKAGE_ROOT / "config" / "config.json",
    Path("./config/config.yaml"),
    Path("./config/config.yml"),
    Path("./config/config.json"),
    Path.home() / ".fieldsync" / "config.yaml",
)

DEFAULT_CONSENT_FIELD_ID = 282018660
DEFAULT_API_BASES = ("https://hexa.easyverein.com/api", "https://easyverein.com/api")
DEFAULT_API_VERSION = "v2.0"


def resolve_path(path_str: str | None, *, base: Path | None = None) -> Path:
    """Resolve a path string that may be relative to an optional base directory."""
    base_path = base or Path.cwd()
    if not path_str:
        return base_path
    path = Path(path_str)
    if not path.is_absolute():
        path = base_path / path
    return path


def load_config(path: str | os.PathLike[str] | None = None) -> Dict[str, Any]:
    """Load configuration from YAML.

    Parameters
    ----------
    path: Optional path to a configuration file. If not provided, default
        locations will be searched.
    """
    if path:
        candidate_paths = [Path(path)]
    else:
        candidate_paths = list(DEFAULT_CONFIG_LOCATIONS)

    for candidate in candidate_paths:
        if candidate.exists():
            with candidate.open("r", encoding="utf-8") as handle:
                try:
                    data = yaml.safe_load(handle) or {}
                except yaml.YAMLError as exc:
                    raise ConfigError(f"Unable to parse configuration file {candidate}") from exc
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration file {candidate} must contain a mapping")
            return data
    raise ConfigError(
        "No configuration file could be located. Provide --config or create "
        "config/config.yaml (see config/config.example.yaml)."
    )


def rate_limit_settings(config: Dict[str, Any], endpoint: str) -> tuple[int, int]:
    """Return ``(max_requests, window_seconds)`` configured for ``endpoint``."""
    limits = config.get("rate_limits", {}) or {}
    entry = limits.get(endpoint) or limits.get("default") or {}
    return int(entry.get("max_requests", 60)), int(entry.get("window_seconds", 60))
