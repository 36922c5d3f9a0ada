"""Error taxonomy shared by the ingest path, the status store, and alert delivery."""

from __future__ import annotations

from typing import Optional


class MonitorError(Exception):
    """Base class for runtime errors raised inside the monitor core."""


class IngestError(MonitorError):
    """A packet was rejected; terminal for that packet only."""

    reason = "IngestError"

    def __init__(self, message: str, *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.detail = detail


class TransportTooShort(IngestError):
    reason = "TransportTooShort"


class DecryptionFailed(IngestError):
    reason = "DecryptionFailed"


class ValidationError(IngestError):
    reason = "ValidationError"


class MalformedPayload(ValidationError):
    reason = "MalformedPayload"


class Stale(ValidationError):
    reason = "Stale"


class MissingFields(ValidationError):
    reason = "MissingFields"


class PersistenceUnavailable(MonitorError):
    """Raised when the status store cannot be read or written."""


class DeliveryFailed(MonitorError):
    """Raised by sink transports; converted into a failed DeliveryResult by callers."""


__all__ = [
    "DecryptionFailed",
    "DeliveryFailed",
    "IngestError",
    "MalformedPayload",
    "MissingFields",
    "MonitorError",
    "PersistenceUnavailable",
    "Stale",
    "TransportTooShort",
    "ValidationError",
]
