"""Datagram decryption, payload validation and sample extraction."""

from insideout_monitor.ingest.codec import decrypt_packet, open_packet, seal_packet
from insideout_monitor.ingest.pipeline import IngestOutcome, IngestPipeline
from insideout_monitor.ingest.samples import samples_from_message
from insideout_monitor.ingest.validator import RoutedMessage, route

__all__ = [
    "IngestOutcome",
    "IngestPipeline",
    "RoutedMessage",
    "decrypt_packet",
    "open_packet",
    "route",
    "samples_from_message",
    "seal_packet",
]
