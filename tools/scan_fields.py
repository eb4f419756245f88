#!/usr/bin/env python3
"""Scan members and store the merged field configuration."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Iterable

BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = BASE_DIR / "config" / "config.yaml"
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from fieldsync.config import load_config  # type: ignore  # pylint: disable=import-error
from fieldsync.errors import ConfigParseError, FieldSyncError, user_message  # type: ignore  # pylint: disable=import-error
from fieldsync.logging_setup import configure_logging  # type: ignore  # pylint: disable=import-error
from fieldsync.workflow import create_pipeline  # type: ignore  # pylint: disable=import-error

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Fetch member custom fields, merge them with the stored field configuration and save it."
    )
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to configuration YAML file (defaults to config/config.yaml).",
    )
    parser.add_argument("--offset", type=int, default=0, help="Index of the first member to scan.")
    parser.add_argument(
        "--limit",
        type=int,
        help="Number of members to scan (defaults to sync.batch_size).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the merged catalogue instead of saving it.",
    )
    return parser


def run(config_path: str | None, *, offset: int = 0, limit: int | None = None, dry_run: bool = False) -> int:
    config = load_config(config_path)
    configure_logging(config, base_dir=BASE_DIR)
    pipeline = create_pipeline(config, base_dir=BASE_DIR)

    try:
        if dry_run:
            result = pipeline.run(offset=offset, limit=limit)
        else:
            result = pipeline.scan_and_save(offset=offset, limit=limit)
    except FieldSyncError as exc:
        LOGGER.error("Field scan failed: %s", exc)
        print(user_message(exc), file=sys.stderr)
        return 1

    if dry_run:
        payload = {field_id: entry.to_dict() for field_id, entry in result.labelled.items()}
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    LOGGER.info(
        "Scanned %s members (%s with consent); catalogue holds %s fields",
        result.stats.members_checked,
        result.stats.members_with_consent,
        len(result.catalogue),
    )
    for error in result.stats.errors:
        LOGGER.warning("Scan issue: %s", error)
    if result.config_error:
        print(user_message(ConfigParseError(result.config_error)), file=sys.stderr)
        return 0 if dry_run else 1
    return 0


def main(argv: Iterable[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    raise SystemExit(run(args.config, offset=args.offset, limit=args.limit, dry_run=args.dry_run))


if __name__ == "__main__":
    main()
