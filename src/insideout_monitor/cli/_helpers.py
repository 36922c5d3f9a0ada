"""Shared utilities for CLI entrypoints."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from insideout_monitor.config.loader import Config, ConfigError, default_config, load_config, load_shared_key

DEFAULT_CONFIG_PATH = "config/server.yaml"
LOCAL_CONFIG_PATH = "config/local.yaml"


def add_common_args(parser: argparse.ArgumentParser, *, require_config: bool = False) -> None:
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        required=require_config,
        help=(
            "Path to YAML/JSON config file (default: "
            f"{LOCAL_CONFIG_PATH} if present, else {DEFAULT_CONFIG_PATH}, else built-in defaults)"
        ),
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging for troubleshooting",
    )


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")
    if verbose:
        return
    # Per-request connection chatter from the webhook client.
    for name in ("urllib3", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)


def load_cli_config(config_path: Optional[str]) -> Config:
    if config_path:
        resolved = Path(config_path)
    else:
        local = Path(LOCAL_CONFIG_PATH)
        default = Path(DEFAULT_CONFIG_PATH)
        if local.exists():
            resolved = local
        elif default.exists():
            resolved = default
        else:
            return default_config()
    try:
        return load_config(resolved)
    except ConfigError as exc:
        raise SystemExit(f"Config validation failed: {exc}") from exc


def load_cli_key(path: str | Path) -> bytes:
    try:
        return load_shared_key(path)
    except ConfigError as exc:
        raise SystemExit(f"Secret key unavailable: {exc}") from exc
