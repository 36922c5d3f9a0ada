from __future__ import annotations

import pytest

from insideout_monitor.errors import DecryptionFailed, TransportTooShort
from insideout_monitor.ingest.codec import NONCE_SIZE, decrypt_packet, open_packet, seal_packet


def test_seal_then_open_returns_plaintext(zero_key: bytes) -> None:
    packet = seal_packet(b'{"name":"laptop"}', zero_key)

    plaintext, ok = open_packet(packet, zero_key)

    assert ok
    assert plaintext == b'{"name":"laptop"}'


def test_packet_is_nonce_then_ciphertext(zero_key: bytes) -> None:
    nonce = bytes(range(NONCE_SIZE))
    packet = seal_packet(b"hello", zero_key, nonce=nonce)

    assert packet[:NONCE_SIZE] == nonce
    # Poly1305 tag adds 16 bytes.
    assert len(packet) == NONCE_SIZE + len(b"hello") + 16


def test_fresh_nonce_per_packet(zero_key: bytes) -> None:
    first = seal_packet(b"same", zero_key)
    second = seal_packet(b"same", zero_key)

    assert first[:NONCE_SIZE] != second[:NONCE_SIZE]


@pytest.mark.parametrize("length", [0, 1, NONCE_SIZE - 1])
def test_short_packets_are_rejected(zero_key: bytes, length: int) -> None:
    with pytest.raises(TransportTooShort):
        decrypt_packet(b"\x00" * length, zero_key)
    assert open_packet(b"\x00" * length, zero_key) == (b"", False)


def test_nonce_only_packet_fails_authentication(zero_key: bytes) -> None:
    with pytest.raises(DecryptionFailed):
        decrypt_packet(b"\x00" * NONCE_SIZE, zero_key)


def test_bit_flip_anywhere_fails(zero_key: bytes) -> None:
    packet = bytearray(seal_packet(b'{"timestamp": 1}', zero_key))
    for index in (0, NONCE_SIZE - 1, NONCE_SIZE, len(packet) - 1):
        tampered = bytearray(packet)
        tampered[index] ^= 0x01
        plaintext, ok = open_packet(bytes(tampered), zero_key)
        assert not ok, f"flip at byte {index} was accepted"
        assert plaintext == b""


def test_wrong_key_fails(zero_key: bytes) -> None:
    packet = seal_packet(b"secret", zero_key)
    other_key = b"\x01" * 32

    with pytest.raises(DecryptionFailed) as exc:
        decrypt_packet(packet, other_key)
    assert exc.value.reason == "DecryptionFailed"
