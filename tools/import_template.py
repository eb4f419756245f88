#!/usr/bin/env python3
"""Import the bootstrap field template or export the configuration as template."""
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
    parser = argparse.ArgumentParser(description="Initialise the field configuration from the template.")
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to configuration YAML file (defaults to config/config.yaml).",
    )
    parser.add_argument(
        "--export",
        action="store_true",
        help="Write the current configuration as the template instead of importing it.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing template when exporting.",
    )
    return parser


def run(config_path: str | None, *, export: bool = False, force: bool = False) -> int:
    config = load_config(config_path)
    configure_logging(config, base_dir=BASE_DIR)
    store = create_config_store(config, base_dir=BASE_DIR)

    try:
        if export:
            done = store.export_template(force=force)
        else:
            done = store.import_template()
    except FieldSyncError as exc:
        LOGGER.error("Template operation failed: %s", exc)
        print(user_message(exc), file=sys.stderr)
        return 1

    if not done:
        print("Nothing was written; see the log for details.", file=sys.stderr)
        return 1
    return 0


def main(argv: Iterable[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    raise SystemExit(run(args.config, export=args.export, force=args.force))


if __name__ == "__main__":
    main()
