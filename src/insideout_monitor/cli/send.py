"""Encrypt and send a single heartbeat datagram; handy for checking a server end to end."""

from __future__ import annotations

import argparse
import json
import logging
import socket
import time
from typing import Any, Dict, List, Optional, Sequence

from insideout_monitor.cli._helpers import configure_logging, load_cli_key
from insideout_monitor.ingest.codec import seal_packet

LOGGER = logging.getLogger(__name__)


def build_heartbeat(
    name: str,
    *,
    timestamp: Optional[int] = None,
    interfaces: Sequence[Dict[str, Any]] = (),
) -> Dict[str, Any]:
    return {
        "name": name,
        "timestamp": int(time.time()) if timestamp is None else int(timestamp),
        "network_interfaces": list(interfaces),
    }


def send_message(message: Dict[str, Any], key: bytes, host: str, port: int) -> int:
    packet = seal_packet(json.dumps(message).encode("utf-8"), key)
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        return sock.sendto(packet, (host, port))


def _parse_interface(value: str) -> Dict[str, Any]:
    name, sep, ip = value.partition("=")
    if not sep or not name or not ip:
        raise argparse.ArgumentTypeError(f"expected NAME=IP, got {value!r}")
    return {"name": name, "ip": ip}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="insideout-send",
        description="Send one encrypted heartbeat to an Inside-Out Monitor server.",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Server address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=4000, help="Server UDP port (default: 4000)")
    parser.add_argument("--key-file", default="secret.key", help="Base64 secret key file")
    parser.add_argument("--name", default=socket.gethostname(), help="Device name (default: hostname)")
    parser.add_argument(
        "--interface",
        action="append",
        default=[],
        type=_parse_interface,
        metavar="NAME=IP",
        help="Network interface to report; repeatable",
    )
    parser.add_argument(
        "--skew",
        type=int,
        default=0,
        help="Seconds added to the timestamp, e.g. -600 to exercise the freshness check",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    key = load_cli_key(args.key_file)
    interfaces: List[Dict[str, Any]] = args.interface
    message = build_heartbeat(args.name, timestamp=int(time.time()) + args.skew, interfaces=interfaces)
    try:
        sent = send_message(message, key, args.host, args.port)
    except OSError as exc:
        LOGGER.error("Send to %s:%s failed: %s", args.host, args.port, exc)
        return 1
    LOGGER.info("Heartbeat for %s sent to %s:%s (%d bytes)", args.name, args.host, args.port, sent)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
