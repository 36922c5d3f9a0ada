"""Per-datagram processing: decrypt, validate, extract samples, hand them to the engine."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Tuple

from insideout_monitor.errors import IngestError, PersistenceUnavailable
from insideout_monitor.ingest.codec import decrypt_packet
from insideout_monitor.ingest.samples import samples_from_message
from insideout_monitor.ingest.validator import MAX_MESSAGE_AGE_SECONDS, route
from insideout_monitor.state.types import MessageKind, Sample, SightingResult

LOGGER = logging.getLogger(__name__)

Address = Tuple[str, int]


class SampleSink(Protocol):
    def observe(self, sample: Sample) -> SightingResult:
        ...


@dataclass(frozen=True)
class IngestOutcome:
    accepted: bool
    kind: Optional[MessageKind] = None
    samples: int = 0
    new_entities: List[str] = field(default_factory=list)
    reason: Optional[str] = None


class IngestPipeline:
    """Stateless apart from the key; safe to call from many worker threads."""

    def __init__(
        self,
        key: bytes,
        engine: SampleSink,
        *,
        max_message_age_seconds: int = MAX_MESSAGE_AGE_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._key = bytes(key)
        self._engine = engine
        self._max_age = max_message_age_seconds
        self._clock = clock or time.time

    def handle_datagram(self, packet: bytes, addr: Optional[Address] = None) -> IngestOutcome:
        sender = _format_addr(addr)
        try:
            return self._process(packet, sender)
        except IngestError as exc:
            LOGGER.warning("Dropped packet from %s (%s): %s", sender, exc.reason, exc)
            return IngestOutcome(accepted=False, reason=exc.reason)
        except PersistenceUnavailable as exc:
            LOGGER.error("Could not store packet from %s: %s", sender, exc)
            return IngestOutcome(accepted=False, reason="persistence_unavailable")
        except Exception:  # pylint: disable=broad-exception-caught
            LOGGER.exception("Unexpected error handling packet from %s", sender)
            return IngestOutcome(accepted=False, reason="internal_error")

    def _process(self, packet: bytes, sender: str) -> IngestOutcome:
        plaintext = decrypt_packet(packet, self._key)
        now = int(self._clock())
        message = route(plaintext, now, max_age_seconds=self._max_age)
        samples = samples_from_message(message, now)
        created: List[str] = []
        for sample in samples:
            if self._engine.observe(sample).created:
                created.append(sample.entity_key)
        LOGGER.debug(
            "Accepted %s from %s (%d sample(s), age %ss)",
            message.kind.value,
            sender,
            len(samples),
            message.age,
        )
        return IngestOutcome(accepted=True, kind=message.kind, samples=len(samples), new_entities=created)


def _format_addr(addr: Optional[Address]) -> str:
    if not addr:
        return "unknown"
    return f"{addr[0]}:{addr[1]}"


__all__ = ["IngestOutcome", "IngestPipeline"]
