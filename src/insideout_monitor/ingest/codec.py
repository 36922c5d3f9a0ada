"""Datagram framing and authenticated decryption (nonce || secretbox ciphertext)."""

from __future__ import annotations

from typing import Optional, Tuple

import nacl.exceptions
import nacl.secret
import nacl.utils

from insideout_monitor.errors import DecryptionFailed, IngestError, TransportTooShort

NONCE_SIZE = nacl.secret.SecretBox.NONCE_SIZE
KEY_SIZE = nacl.secret.SecretBox.KEY_SIZE


def seal_packet(plaintext: bytes, key: bytes, nonce: Optional[bytes] = None) -> bytes:
    """Encrypt ``plaintext`` and frame it as ``nonce || ciphertext``."""

    box = nacl.secret.SecretBox(key)
    if nonce is None:
        nonce = nacl.utils.random(NONCE_SIZE)
    encrypted = box.encrypt(plaintext, nonce)
    return bytes(encrypted)


def decrypt_packet(packet: bytes, key: bytes) -> bytes:
    """Split and authenticate a datagram, raising a typed ingest error on failure."""

    if len(packet) < NONCE_SIZE:
        raise TransportTooShort(f"packet is {len(packet)} bytes, need at least {NONCE_SIZE}")
    nonce = bytes(packet[:NONCE_SIZE])
    ciphertext = bytes(packet[NONCE_SIZE:])
    try:
        box = nacl.secret.SecretBox(key)
        return box.decrypt(ciphertext, nonce)
    except nacl.exceptions.CryptoError as exc:
        raise DecryptionFailed("invalid key or corrupted packet", detail=str(exc)) from exc


def open_packet(packet: bytes, key: bytes) -> Tuple[bytes, bool]:
    """Return ``(plaintext, True)`` for an authentic packet, ``(b"", False)`` otherwise."""

    try:
        return decrypt_packet(packet, key), True
    except IngestError:
        return b"", False


__all__ = ["KEY_SIZE", "NONCE_SIZE", "decrypt_packet", "open_packet", "seal_packet"]
