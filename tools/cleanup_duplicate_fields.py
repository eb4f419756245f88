#!/usr/bin/env python3
"""Remove raw custom field entries that duplicate an extracted field."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable

BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = BASE_DIR / "config" / "config.yaml"
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from fieldsync.config import load_config  # type: ignore  # pylint: disable=import-error
from fieldsync.errors import FieldSyncError, user_message  # type: ignore  # pylint: disable=import-error
from fieldsync.logging_setup import configure_logging  # type: ignore  # pylint: disable=import-error
from fieldsync.workflow import create_config_store  # type: ignore  # pylint: disable=import-error

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Drop cfraw.*/contactcfraw.* entries whose cf.*/contactcf.* twin exists."
    )
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to configuration YAML file (defaults to config/config.yaml).",
    )
    return parser


def run(config_path: str | None) -> int:
    config = load_config(config_path)
    configure_logging(config, base_dir=BASE_DIR)
    store = create_config_store(config, base_dir=BASE_DIR)

    try:
        report = store.cleanup_raw_duplicates()
    except FieldSyncError as exc:
        LOGGER.error("Cleanup failed: %s", exc)
        print(user_message(exc), file=sys.stderr)
        return 1

    for item in report["migrated"]:
        print(f"migrated {item['from']} -> {item['to']} ({', '.join(item['keys']) or 'no settings'})")
    for item in report["kept"]:
        print(f"kept settings of {item['twin']}, dropped {item['raw']}")
    print(f"{len(report['removed'])} duplicate entries removed")
    return 0


def main(argv: Iterable[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    raise SystemExit(run(args.config))


if __name__ == "__main__":
    main()
