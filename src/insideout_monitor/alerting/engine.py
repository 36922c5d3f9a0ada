"""Glue between sightings, the periodic status sweep, debouncing and the dispatcher."""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Protocol

from insideout_monitor.alerting.debounce import AlertDebouncer
from insideout_monitor.config.loader import AlertBehavior
from insideout_monitor.errors import PersistenceUnavailable
from insideout_monitor.scheduling import PeriodicTask
from insideout_monitor.state.detector import TransitionDetector
from insideout_monitor.state.store import EntityLocks, StatusStore
from insideout_monitor.state.types import AlertEvent, Sample, SightingResult

LOGGER = logging.getLogger(__name__)


class AlertQueue(Protocol):
    def queue(self, alert: AlertEvent) -> None:
        ...


class AlertEngine:
    """Owns the detector and debouncer for one store.

    ``observe`` is called from datagram worker threads; ``tick`` from the
    periodic check thread. Both take the per-entity lock for the entity they
    touch, so ingest-side creation never interleaves with a sweep decision.
    """

    def __init__(
        self,
        store: StatusStore,
        queue: Optional[AlertQueue] = None,
        *,
        behavior: Optional[AlertBehavior] = None,
        clock: Optional[Callable[[], float]] = None,
        locks: Optional[EntityLocks] = None,
    ) -> None:
        self._store = store
        self._queue = queue
        self._behavior = behavior or AlertBehavior()
        self._clock = clock or time.time
        self._locks = locks or EntityLocks()
        self._detector = TransitionDetector(
            store,
            online_threshold_seconds=self._behavior.online_threshold_seconds,
            locks=self._locks,
        )
        self._debouncer = AlertDebouncer(
            store,
            grace_period_seconds=self._behavior.grace_period_seconds,
            cooldown_seconds=self._behavior.cooldown_seconds,
        )
        self._task: Optional[PeriodicTask] = None
        self._primed = False

    @property
    def debouncer(self) -> AlertDebouncer:
        return self._debouncer

    @property
    def detector(self) -> TransitionDetector:
        return self._detector

    def observe(self, sample: Sample) -> SightingResult:
        """Record one sighting; queues a ``new_entity`` alert on first contact."""
        alert: Optional[AlertEvent] = None
        with self._locks.hold(sample.entity_key):
            result = self._store.record_sighting(sample)
            if result.created:
                LOGGER.info("New %s discovered: %s", sample.entity_type.value, sample.entity_key)
                alert = self._debouncer.new_entity(result.state, self._now())
            else:
                self._debouncer.track(result.state)
        if result.type_conflict:
            LOGGER.warning(
                "Ignoring %s sample for %s; key is already tracked as %s",
                sample.entity_type.value,
                sample.entity_key,
                result.state.entity_type.value,
            )
        elif not result.advanced:
            LOGGER.debug("Out-of-order sample for %s ignored (last_seen=%s)", sample.entity_key, result.state.last_seen)
        if alert is not None:
            self._emit([alert])
        return result

    def tick(self, now: Optional[int] = None) -> List[AlertEvent]:
        """Run one status sweep and advance every non-stable entity."""
        now = self._now() if now is None else int(now)
        self._prime()
        transitions = self._detector.sweep(now)
        alerts = self._debouncer.process(transitions, now, lookup=self._store.get_entity_state)
        self._emit(alerts)
        return alerts

    def start(self) -> None:
        if self._task is not None and self._task.running:
            return
        self._prime()
        self._task = PeriodicTask(self._behavior.check_interval_seconds, self.tick, name="status-check")
        self._task.start()
        LOGGER.info(
            "Status checks every %ss (online threshold %ss, grace %ss, cooldown %ss)",
            self._behavior.check_interval_seconds,
            self._behavior.online_threshold_seconds,
            self._behavior.grace_period_seconds,
            self._behavior.cooldown_seconds,
        )

    def stop(self) -> None:
        if self._task is not None:
            self._task.stop()
            self._task = None

    def _prime(self) -> None:
        # Entities persisted by an earlier run start out stable at their stored status.
        if self._primed:
            return
        try:
            states = self._store.list_entity_states()
        except PersistenceUnavailable as exc:
            LOGGER.error("Could not load known entities: %s", exc)
            return
        for state in states:
            self._debouncer.track(state)
        self._primed = True

    def _emit(self, alerts: List[AlertEvent]) -> None:
        for alert in alerts:
            if self._queue is None:
                LOGGER.info("Alerting disabled; %s alert for %s not sent", alert.event_type.value, alert.entity_key)
                continue
            self._queue.queue(alert)

    def _now(self) -> int:
        return int(self._clock())


__all__ = ["AlertEngine", "AlertQueue"]
