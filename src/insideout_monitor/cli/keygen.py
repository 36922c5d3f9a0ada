"""Generate a fresh base64 pre-shared key for servers and clients."""

from __future__ import annotations

import argparse
import base64
import logging
import os
from pathlib import Path
from typing import Sequence

import nacl.secret
import nacl.utils

from insideout_monitor.cli._helpers import configure_logging

LOGGER = logging.getLogger(__name__)


def generate_key() -> str:
    return base64.b64encode(nacl.utils.random(nacl.secret.SecretBox.KEY_SIZE)).decode("ascii")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="insideout-keygen",
        description="Write a new 32-byte secret key (base64) shared by the server and its clients.",
    )
    parser.add_argument("--output", default="secret.key", help="Destination file (default: secret.key)")
    parser.add_argument("--force", action="store_true", help="Overwrite an existing key file")
    parser.add_argument("--stdout", action="store_true", help="Print the key instead of writing a file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    encoded = generate_key()
    if args.stdout:
        print(encoded)
        return 0

    output = Path(args.output)
    if output.exists() and not args.force:
        LOGGER.error("%s already exists; pass --force to replace it (clients must be updated too)", output)
        return 1
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(encoded + "\n", encoding="utf-8")
    os.chmod(output, 0o600)
    LOGGER.info("Secret key written to %s", output)
    LOGGER.info("Copy this file to every client; it must never be committed")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
