"""Timer-driven status transition detection.

Offline entities are only noticed by the absence of packets, so this runs on a
periodic tick rather than on packet arrival.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from insideout_monitor.errors import PersistenceUnavailable
from insideout_monitor.state.store import EntityLocks, StatusStore
from insideout_monitor.state.types import EntityState, EntityStatus, TransitionEvent

LOGGER = logging.getLogger(__name__)


def classify(state: EntityState, now: int, online_threshold_seconds: int) -> EntityStatus:
    """Online iff seen within the threshold and no ping or monitoring result reported it down.

    A ``last_seen`` in the future gives a negative age and counts as online.
    """

    age = now - state.last_seen
    if age >= online_threshold_seconds:
        return EntityStatus.OFFLINE
    if state.reported_status is EntityStatus.OFFLINE:
        return EntityStatus.OFFLINE
    return EntityStatus.ONLINE


class TransitionDetector:
    """Compares every entity's freshness to the threshold and flips stored status."""

    def __init__(
        self,
        store: StatusStore,
        *,
        online_threshold_seconds: int,
        locks: Optional[EntityLocks] = None,
    ) -> None:
        self._store = store
        self._threshold = online_threshold_seconds
        self._locks = locks or EntityLocks()

    @property
    def locks(self) -> EntityLocks:
        return self._locks

    def sweep(self, now: int) -> List[TransitionEvent]:
        events: List[TransitionEvent] = []
        for snapshot in self._store.list_entity_states():
            try:
                event = self.evaluate(snapshot.entity_key, now)
            except PersistenceUnavailable as exc:
                LOGGER.error("Status check failed for %s: %s", snapshot.entity_key, exc)
                continue
            if event is not None:
                events.append(event)
        return events

    def evaluate(self, key: str, now: int) -> Optional[TransitionEvent]:
        with self._locks.hold(key):
            state = self._store.get_entity_state(key)
            if state is None:
                return None
            current = classify(state, now, self._threshold)
            if current is state.status:
                return None
            self._store.upsert_entity_state(
                key,
                current,
                state.last_seen,
                now,
                entity_type=state.entity_type,
            )
        LOGGER.info(
            "Status change %s %s: %s -> %s (last_seen=%s)",
            state.entity_type.value,
            key,
            state.status.value,
            current.value,
            state.last_seen,
        )
        return TransitionEvent(
            entity_key=key,
            entity_type=state.entity_type,
            previous=state.status,
            current=current,
            occurred_at=now,
            last_seen=state.last_seen,
        )


__all__ = ["TransitionDetector", "classify"]
