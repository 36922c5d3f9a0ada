"""Run the UDP ingest server with status checks and webhook alerting."""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from dataclasses import replace
from pathlib import Path
from typing import Sequence

from insideout_monitor.cli._helpers import add_common_args, configure_logging, load_cli_config, load_cli_key
from insideout_monitor.config.loader import Config
from insideout_monitor.errors import PersistenceUnavailable
from insideout_monitor.server.service import MonitorService

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="insideout-server",
        description="Receive encrypted heartbeats over UDP and raise status alerts.",
    )
    add_common_args(parser)
    parser.add_argument("--host", help="Bind address (overrides server.host)")
    parser.add_argument("--udp-port", type=int, help="UDP port (overrides server.udp_port)")
    parser.add_argument(
        "--max-age",
        type=int,
        help="Freshness window in seconds (overrides server.max_message_age_seconds)",
    )
    parser.add_argument("--key-file", help="Base64 secret key file (overrides server.secret_key_path)")
    parser.add_argument(
        "--database-url",
        help="SQLAlchemy URL or 'memory' (overrides storage.database_url)",
    )
    return parser


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    server = config.server
    if args.host:
        server = replace(server, host=args.host)
    if args.udp_port is not None:
        server = replace(server, udp_port=args.udp_port)
    if args.max_age is not None:
        server = replace(server, max_message_age_seconds=args.max_age)
    if args.key_file:
        server = replace(server, secret_key_path=Path(args.key_file))
    storage = config.storage
    if args.database_url:
        storage = replace(storage, database_url=args.database_url)
    return replace(config, server=server, storage=storage)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    config = apply_overrides(load_cli_config(args.config), args)
    LOGGER.info("Config loaded (version=%s, source=%s)", config.config_version, config.source or "defaults")
    key = load_cli_key(config.server.secret_key_path)

    try:
        service = MonitorService(config, key)
    except PersistenceUnavailable as exc:
        LOGGER.error("Status store unavailable: %s", exc)
        return 1

    stop = threading.Event()

    def _request_stop(signum, _frame) -> None:
        LOGGER.info("Received signal %s", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    try:
        service.start()
    except OSError as exc:
        LOGGER.error("Could not bind %s:%s: %s", config.server.host, config.server.udp_port, exc)
        service.stop()
        return 1

    try:
        while not stop.wait(1.0):
            pass
    finally:
        service.stop()
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
