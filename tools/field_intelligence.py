#!/usr/bin/env python3
"""Print statistics and suggestions for the stored field configuration."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from dateutil import parser as date_parser

BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = BASE_DIR / "config" / "config.yaml"
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from fieldsync.config import load_config  # type: ignore  # pylint: disable=import-error
from fieldsync.errors import FieldSyncError, user_message  # type: ignore  # pylint: disable=import-error
from fieldsync.intelligence import FieldIntelligenceAnalyzer  # type: ignore  # pylint: disable=import-error
from fieldsync.logging_setup import configure_logging  # type: ignore  # pylint: disable=import-error
from fieldsync.workflow import create_config_store  # type: ignore  # pylint: disable=import-error

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Analyse the stored field configuration and print the report as JSON."
    )
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to configuration YAML file (defaults to config/config.yaml).",
    )
    parser.add_argument(
        "--as-of",
        help="Timestamp to stamp the report with (ISO 8601, defaults to now).",
    )
    return parser


def _parse_as_of(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = date_parser.isoparse(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def run(config_path: str | None, *, as_of: str | None = None) -> int:
    config = load_config(config_path)
    configure_logging(config, base_dir=BASE_DIR)
    store = create_config_store(config, base_dir=BASE_DIR)

    try:
        catalogue = store.load()
    except FieldSyncError as exc:
        LOGGER.error("Field configuration could not be loaded: %s", exc)
        print(user_message(exc), file=sys.stderr)
        return 1

    if not catalogue:
        print("No fields found. Run tools/scan_fields.py first.", file=sys.stderr)
        return 1

    timestamp = _parse_as_of(as_of)
    analyzer = FieldIntelligenceAnalyzer(clock=(lambda: timestamp) if timestamp else None)
    report = analyzer.analyze(catalogue)
    print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    return 0


def main(argv: Iterable[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    raise SystemExit(run(args.config, as_of=args.as_of))


if __name__ == "__main__":
    main()
