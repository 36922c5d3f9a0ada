"""Entity status persistence interface, per-entity locking, and an in-memory store."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Optional, Protocol, Tuple

from insideout_monitor.state.types import (
    AlertEvent,
    AlertEventType,
    DeliveryResult,
    EntityState,
    EntityStatus,
    EntityType,
    Sample,
    SightingResult,
)


class StatusStore(Protocol):
    def get_entity_state(self, key: str) -> Optional[EntityState]:
        ...

    def list_entity_states(self) -> List[EntityState]:
        ...

    def record_sighting(self, sample: Sample) -> SightingResult:
        ...

    def upsert_entity_state(
        self,
        key: str,
        status: EntityStatus,
        last_seen: int,
        last_status_change: int,
        *,
        entity_type: EntityType = EntityType.DEVICE,
    ) -> EntityState:
        ...

    def record_alert(self, event: AlertEvent, result: DeliveryResult, *, sent_at: Optional[int] = None) -> None:
        ...

    def get_last_alert_sent_at(self, key: str, event_type: AlertEventType) -> Optional[int]:
        ...


@dataclass(frozen=True)
class AlertRecord:
    entity_type: EntityType
    entity_key: str
    event_type: AlertEventType
    sink_kind: str
    sink_name: str
    sent_at: int
    success: bool
    error: Optional[str]


class EntityLocks:
    """Hands out one re-entrant lock per entity key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.lock_for(key)
        with lock:
            yield


def initial_state(sample: Sample) -> EntityState:
    status = sample.reported_status or EntityStatus.ONLINE
    return EntityState(
        entity_key=sample.entity_key,
        entity_type=sample.entity_type,
        status=status,
        last_seen=sample.last_seen,
        last_status_change=sample.last_seen,
        reported_status=sample.reported_status,
        metadata=dict(sample.metadata),
    )


class InMemoryStatusStore:
    """Thread-safe dict-backed store; compare-and-set on ``last_seen``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: Dict[str, EntityState] = {}
        self._alerts: List[AlertRecord] = []
        self._last_alert: Dict[Tuple[str, AlertEventType], int] = {}

    def get_entity_state(self, key: str) -> Optional[EntityState]:
        with self._lock:
            return self._states.get(key)

    def list_entity_states(self) -> List[EntityState]:
        with self._lock:
            return list(self._states.values())

    def record_sighting(self, sample: Sample) -> SightingResult:
        with self._lock:
            existing = self._states.get(sample.entity_key)
            if existing is None:
                state = initial_state(sample)
                self._states[sample.entity_key] = state
                return SightingResult(state=state, created=True, advanced=True)
            if existing.entity_type is not sample.entity_type:
                return SightingResult(state=existing, created=False, advanced=False, type_conflict=True)
            if sample.last_seen <= existing.last_seen:
                return SightingResult(state=existing, created=False, advanced=False)
            state = replace(
                existing,
                last_seen=sample.last_seen,
                reported_status=sample.reported_status,
                metadata={**existing.metadata, **sample.metadata},
            )
            self._states[sample.entity_key] = state
            return SightingResult(state=state, created=False, advanced=True)

    def upsert_entity_state(
        self,
        key: str,
        status: EntityStatus,
        last_seen: int,
        last_status_change: int,
        *,
        entity_type: EntityType = EntityType.DEVICE,
    ) -> EntityState:
        with self._lock:
            existing = self._states.get(key)
            if existing is None:
                state = EntityState(
                    entity_key=key,
                    entity_type=entity_type,
                    status=status,
                    last_seen=last_seen,
                    last_status_change=last_status_change,
                )
            else:
                state = replace(
                    existing,
                    status=status,
                    last_seen=max(existing.last_seen, last_seen),
                    last_status_change=last_status_change,
                )
            self._states[key] = state
            return state

    def record_alert(self, event: AlertEvent, result: DeliveryResult, *, sent_at: Optional[int] = None) -> None:
        timestamp = event.occurred_at if sent_at is None else sent_at
        record = AlertRecord(
            entity_type=event.entity_type,
            entity_key=event.entity_key,
            event_type=event.event_type,
            sink_kind=result.sink_kind,
            sink_name=result.sink_name,
            sent_at=timestamp,
            success=result.success,
            error=result.error,
        )
        with self._lock:
            self._alerts.append(record)
            pair = (event.entity_key, event.event_type)
            self._last_alert[pair] = max(timestamp, self._last_alert.get(pair, timestamp))

    def get_last_alert_sent_at(self, key: str, event_type: AlertEventType) -> Optional[int]:
        with self._lock:
            return self._last_alert.get((key, event_type))

    def alert_records(self) -> List[AlertRecord]:
        with self._lock:
            return list(self._alerts)


__all__ = [
    "AlertRecord",
    "EntityLocks",
    "InMemoryStatusStore",
    "StatusStore",
    "initial_state",
]
