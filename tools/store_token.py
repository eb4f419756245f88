#!/usr/bin/env python3
"""Encrypt the membership API token and store it for the other tools."""
from __future__ import annotations

import argparse
import getpass
import logging
import sys
from pathlib import Path
from typing import Iterable

BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = BASE_DIR / "config" / "config.yaml"
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from fieldsync.config import load_config  # type: ignore  # pylint: disable=import-error
from fieldsync.logging_setup import configure_logging  # type: ignore  # pylint: disable=import-error
from fieldsync.workflow import create_store, create_token_store  # type: ignore  # pylint: disable=import-error

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Store the API token encrypted in the local key-value store.")
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to configuration YAML file (defaults to config/config.yaml).",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--clear", action="store_true", help="Remove the stored token.")
    group.add_argument("--check", action="store_true", help="Verify that a usable token is stored.")
    return parser


def run(config_path: str | None, *, clear: bool = False, check: bool = False, token: str | None = None) -> int:
    config = load_config(config_path)
    configure_logging(config, base_dir=BASE_DIR)
    token_store = create_token_store(config, create_store(config, base_dir=BASE_DIR))

    if clear:
        token_store.clear()
        LOGGER.info("Stored API token removed")
        return 0
    if check:
        if token_store.load():
            print("A usable API token is stored.")
            return 0
        print("No usable API token is stored.", file=sys.stderr)
        return 1

    token = token if token is not None else getpass.getpass("API token: ")
    token = token.strip()
    if not token:
        print("No token given.", file=sys.stderr)
        return 1
    token_store.save(token)
    return 0


def main(argv: Iterable[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    raise SystemExit(run(args.config, clear=args.clear, check=args.check))


if __name__ == "__main__":
    main()
