"""Routing decisions: which configured webhook sinks receive which alerts."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, List, Pattern, Protocol, Sequence

from insideout_monitor.config.loader import WebhookSink
from insideout_monitor.state.types import AlertEvent, DeliveryResult, EntityType


class AlertDeliverer(Protocol):
    def deliver(self, url: str, alert: AlertEvent, *, sink: WebhookSink | None = None) -> DeliveryResult:
        ...


def matches_pattern(entity_key: str, pattern: str) -> bool:
    """``*`` matches everything, ``*`` inside a pattern is a wildcard, otherwise exact.

    Both forms compare case-insensitively.
    """

    pattern = pattern.strip()
    if pattern == "*":
        return True
    if "*" in pattern:
        return _compile(pattern).fullmatch(entity_key) is not None
    return entity_key.casefold() == pattern.casefold()


def matches_any(entity_key: str, patterns: Iterable[str]) -> bool:
    return any(matches_pattern(entity_key, pattern) for pattern in patterns)


def sink_matches(sink: WebhookSink, alert: AlertEvent) -> bool:
    """Event filter, then ``entities``, then the filter for the alert's entity type.

    Devices are checked against ``devices`` and ping targets against
    ``ping_targets``; other entity types have no per-type filter.
    """

    if alert.event_type.value not in sink.events:
        return False
    if not matches_any(alert.entity_key, sink.entities):
        return False
    if alert.entity_type is EntityType.DEVICE:
        return matches_any(alert.entity_key, sink.devices)
    if alert.entity_type is EntityType.PING_TARGET:
        return matches_any(alert.entity_key, sink.ping_targets)
    return True


def matching_sinks(sinks: Sequence[WebhookSink], alert: AlertEvent) -> List[WebhookSink]:
    return [sink for sink in sinks if sink_matches(sink, alert)]


@lru_cache(maxsize=256)
def _compile(pattern: str) -> Pattern[str]:
    parts = [re.escape(part) for part in pattern.split("*")]
    return re.compile(".*".join(parts), re.IGNORECASE)


__all__ = ["AlertDeliverer", "matches_any", "matches_pattern", "matching_sinks", "sink_matches"]
