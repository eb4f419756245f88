"""Logging configuration for the field sync tools.

The ``logging`` section of the configuration has three parts:

``console``
    ``enabled``, ``level`` and ``rich_format`` (render through rich).
``file``
    ``enabled``, ``level`` and ``path`` relative to the tool's base directory.
``loggers``
    Optional ``{logger name: level}`` overrides, e.g. ``fieldsync.options:
    DEBUG`` to trace option lookups. Third party loggers in
    :data:`DEFAULT_LOGGER_LEVELS` are quietened unless overridden here.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from rich.logging import RichHandler

from .config import resolve_path

DEFAULT_LOG_FILE = "logs/fieldsync.log"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Applied before the configured overrides.
DEFAULT_LOGGER_LEVELS: Dict[str, str] = {
    "urllib3": "WARNING",
}


def _console_handler(console_cfg: Mapping[str, Any]) -> logging.Handler:
    level = str(console_cfg.get("level", "INFO")).upper()
    if console_cfg.get("rich_format", False):
        handler: logging.Handler = RichHandler(level=level, rich_tracebacks=True, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        return handler
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def _file_handler(file_cfg: Mapping[str, Any], base_dir: Optional[Path]) -> logging.Handler:
    file_path = resolve_path(file_cfg.get("path", DEFAULT_LOG_FILE), base=base_dir)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(file_path, mode="a", encoding="utf-8")
    handler.setLevel(str(file_cfg.get("level", "DEBUG")).upper())
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def logger_levels(logging_config: Mapping[str, Any]) -> Dict[str, str]:
    """Return the per-logger levels to apply, overrides winning over defaults."""
    levels = dict(DEFAULT_LOGGER_LEVELS)
    for name, level in (logging_config.get("loggers") or {}).items():
        levels[str(name)] = str(level).upper()
    return levels


def configure_logging(config: Dict[str, Any], *, base_dir: Path | None = None) -> None:
    """Configure logging sinks based on YAML configuration."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG)

    logging_config = config.get("logging", {}) or {}
    console_cfg = logging_config.get("console", {}) or {}
    file_cfg = logging_config.get("file", {}) or {}

    if console_cfg.get("enabled", True):
        root.addHandler(_console_handler(console_cfg))
    if file_cfg.get("enabled", True):
        root.addHandler(_file_handler(file_cfg, base_dir))

    for name, level in logger_levels(logging_config).items():
        logging.getLogger(name).setLevel(level)
