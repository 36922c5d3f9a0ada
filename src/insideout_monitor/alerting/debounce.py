"""Per-entity alert debounce/cooldown state machine."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from insideout_monitor.errors import PersistenceUnavailable
from insideout_monitor.state.store import StatusStore
from insideout_monitor.state.types import (
    AlertEvent,
    AlertEventType,
    EntityState,
    EntityStatus,
    EntityType,
    TransitionEvent,
)

LOGGER = logging.getLogger(__name__)


class AlertPhase(str, Enum):
    STABLE = "stable"
    PENDING_GRACE = "changed-pending-grace"
    ELIGIBLE = "eligible"
    COOLING_DOWN = "cooling-down"


@dataclass(frozen=True)
class AlertState:
    phase: AlertPhase
    baseline: EntityStatus
    pending: Optional[EntityStatus] = None
    changed_at: Optional[int] = None
    last_alert_at: Optional[int] = None

    def __post_init__(self) -> None:
        if self.phase in (AlertPhase.PENDING_GRACE, AlertPhase.ELIGIBLE) and (
            self.pending is None or self.changed_at is None
        ):
            raise ValueError(f"{self.phase.value} state requires pending status and changed_at")

    @classmethod
    def stable(cls, baseline: EntityStatus) -> "AlertState":
        return cls(phase=AlertPhase.STABLE, baseline=baseline)


@dataclass(frozen=True)
class StatusChanged:
    status: EntityStatus


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class CooldownChecked:
    last_sent_at: Optional[int]


AlertInput = Union[StatusChanged, Tick, CooldownChecked]


@dataclass(frozen=True)
class RequestAlert:
    event_type: AlertEventType


@dataclass(frozen=True)
class QueueAlert:
    event_type: AlertEventType


@dataclass(frozen=True)
class FlapSuppressed:
    status: EntityStatus


@dataclass(frozen=True)
class CooldownBlocked:
    event_type: AlertEventType


Effect = Union[RequestAlert, QueueAlert, FlapSuppressed, CooldownBlocked]


def cooldown_elapsed(last_sent_at: Optional[int], now: int, cooldown_seconds: int) -> bool:
    return last_sent_at is None or now - last_sent_at >= cooldown_seconds


def transition(
    state: AlertState,
    event: AlertInput,
    now: int,
    *,
    grace_period_seconds: int,
    cooldown_seconds: int,
) -> Tuple[AlertState, List[Effect]]:
    """Pure transition function ``(state, event, now) -> (state', effects)``."""

    if isinstance(event, StatusChanged):
        return _on_status_changed(state, event.status, now)
    if isinstance(event, Tick):
        return _on_tick(state, now, grace_period_seconds, cooldown_seconds)
    if isinstance(event, CooldownChecked):
        return _on_cooldown_checked(state, event.last_sent_at, now, cooldown_seconds)
    raise TypeError(f"Unsupported alert input: {event!r}")


def _on_status_changed(state: AlertState, status: EntityStatus, now: int) -> Tuple[AlertState, List[Effect]]:
    if state.phase in (AlertPhase.PENDING_GRACE, AlertPhase.ELIGIBLE):
        if status is state.baseline:
            # Flipped back before the alert went out.
            return AlertState.stable(state.baseline), [FlapSuppressed(status)]
        if status is state.pending:
            return state, []
        return replace(state, phase=AlertPhase.PENDING_GRACE, pending=status, changed_at=now), []
    if status is state.baseline:
        return state, []
    return (
        AlertState(
            phase=AlertPhase.PENDING_GRACE,
            baseline=state.baseline,
            pending=status,
            changed_at=now,
            last_alert_at=state.last_alert_at,
        ),
        [],
    )


def _on_tick(
    state: AlertState,
    now: int,
    grace_period_seconds: int,
    cooldown_seconds: int,
) -> Tuple[AlertState, List[Effect]]:
    if state.phase is AlertPhase.PENDING_GRACE:
        pending, changed_at = _pending_change(state)
        if now - changed_at < grace_period_seconds:
            return state, []
        eligible = replace(state, phase=AlertPhase.ELIGIBLE)
        return eligible, [RequestAlert(AlertEventType.for_status(pending))]
    if state.phase is AlertPhase.ELIGIBLE:
        pending, _ = _pending_change(state)
        return state, [RequestAlert(AlertEventType.for_status(pending))]
    if state.phase is AlertPhase.COOLING_DOWN:
        if cooldown_elapsed(state.last_alert_at, now, cooldown_seconds):
            return replace(state, phase=AlertPhase.STABLE), []
    return state, []


def _on_cooldown_checked(
    state: AlertState,
    last_sent_at: Optional[int],
    now: int,
    cooldown_seconds: int,
) -> Tuple[AlertState, List[Effect]]:
    if state.phase is not AlertPhase.ELIGIBLE:
        return state, []
    pending, _ = _pending_change(state)
    event_type = AlertEventType.for_status(pending)
    if not cooldown_elapsed(last_sent_at, now, cooldown_seconds):
        return state, [CooldownBlocked(event_type)]
    cooled = AlertState(
        phase=AlertPhase.COOLING_DOWN,
        baseline=pending,
        last_alert_at=now,
    )
    return cooled, [QueueAlert(event_type)]


def _pending_change(state: AlertState) -> Tuple[EntityStatus, int]:
    if state.pending is None or state.changed_at is None:
        raise ValueError(f"{state.phase.value} state has no pending change")
    return state.pending, state.changed_at


class AlertDebouncer:
    """Holds one AlertState per entity and resolves cooldowns against the store.

    Alerts queued by this process are remembered locally as well, so the
    cooldown holds even before the dispatcher has recorded a delivery.
    """

    def __init__(
        self,
        store: StatusStore,
        *,
        grace_period_seconds: int,
        cooldown_seconds: int,
    ) -> None:
        self._store = store
        self._grace = grace_period_seconds
        self._cooldown = cooldown_seconds
        self._states: Dict[str, AlertState] = {}
        self._entity_types: Dict[str, EntityType] = {}
        self._queued_at: Dict[Tuple[str, AlertEventType], int] = {}
        self._lock = threading.RLock()

    def state_for(self, key: str) -> Optional[AlertState]:
        with self._lock:
            return self._states.get(key)

    def track(self, state: EntityState) -> None:
        """Start tracking an entity whose current status is its baseline."""
        with self._lock:
            self._states.setdefault(state.entity_key, AlertState.stable(state.status))
            self._entity_types[state.entity_key] = state.entity_type

    def new_entity(self, state: EntityState, now: int) -> Optional[AlertEvent]:
        """New entities skip the grace period but still honour the cooldown."""
        with self._lock:
            self._states[state.entity_key] = AlertState.stable(state.status)
            self._entity_types[state.entity_key] = state.entity_type
            if not self._cooldown_allows(state.entity_key, AlertEventType.NEW_ENTITY, now):
                LOGGER.info("Suppressing duplicate new_entity alert for %s", state.entity_key)
                return None
            self._queued_at[(state.entity_key, AlertEventType.NEW_ENTITY)] = now
        return AlertEvent(
            entity_type=state.entity_type,
            entity_key=state.entity_key,
            event_type=AlertEventType.NEW_ENTITY,
            occurred_at=now,
            context=_context_for(state),
        )

    def process(
        self,
        transitions: Sequence[TransitionEvent],
        now: int,
        *,
        lookup: Optional[Callable[[str], Optional[EntityState]]] = None,
    ) -> List[AlertEvent]:
        """Feed detected transitions, then tick every entity that is not stable."""
        alerts: List[AlertEvent] = []
        with self._lock:
            for change in transitions:
                self._entity_types[change.entity_key] = change.entity_type
                state = self._states.get(change.entity_key) or AlertState.stable(change.previous)
                self._states[change.entity_key] = self._apply(change.entity_key, state, StatusChanged(change.current), now)

            for key in list(self._states):
                state = self._states[key]
                if state.phase is AlertPhase.STABLE:
                    continue
                state, effects = self._step(state, Tick(), now)
                for effect in effects:
                    if not isinstance(effect, RequestAlert):
                        continue
                    state, alert = self._resolve_request(key, state, effect.event_type, now, lookup)
                    if alert is not None:
                        alerts.append(alert)
                self._states[key] = state
        return alerts

    def _resolve_request(
        self,
        key: str,
        state: AlertState,
        event_type: AlertEventType,
        now: int,
        lookup: Optional[Callable[[str], Optional[EntityState]]],
    ) -> Tuple[AlertState, Optional[AlertEvent]]:
        try:
            last_sent = self._last_sent_at(key, event_type)
        except PersistenceUnavailable as exc:
            LOGGER.warning("Cooldown lookup failed for %s/%s; suppressing alert: %s", key, event_type.value, exc)
            return state, None
        state, effects = self._step(state, CooldownChecked(last_sent), now)
        for effect in effects:
            if isinstance(effect, CooldownBlocked):
                LOGGER.debug("Cooldown active for %s/%s", key, effect.event_type.value)
            elif isinstance(effect, QueueAlert):
                self._queued_at[(key, effect.event_type)] = now
                entity = self._safe_lookup(key, lookup)
                return state, AlertEvent(
                    entity_type=self._entity_types.get(key, EntityType.DEVICE),
                    entity_key=key,
                    event_type=effect.event_type,
                    occurred_at=now,
                    context=_context_for(entity) if entity else {},
                )
        return state, None

    @staticmethod
    def _safe_lookup(
        key: str,
        lookup: Optional[Callable[[str], Optional[EntityState]]],
    ) -> Optional[EntityState]:
        if lookup is None:
            return None
        try:
            return lookup(key)
        except PersistenceUnavailable as exc:
            LOGGER.warning("Could not load context for %s alert: %s", key, exc)
            return None

    def _apply(self, key: str, state: AlertState, event: AlertInput, now: int) -> AlertState:
        state, effects = self._step(state, event, now)
        for effect in effects:
            if isinstance(effect, FlapSuppressed):
                LOGGER.info("Status of %s returned to %s within grace period; alert suppressed", key, effect.status.value)
        return state

    def _step(self, state: AlertState, event: AlertInput, now: int) -> Tuple[AlertState, List[Effect]]:
        return transition(
            state,
            event,
            now,
            grace_period_seconds=self._grace,
            cooldown_seconds=self._cooldown,
        )

    def _cooldown_allows(self, key: str, event_type: AlertEventType, now: int) -> bool:
        try:
            last_sent = self._last_sent_at(key, event_type)
        except PersistenceUnavailable as exc:
            LOGGER.warning("Cooldown lookup failed for %s/%s; suppressing alert: %s", key, event_type.value, exc)
            return False
        return cooldown_elapsed(last_sent, now, self._cooldown)

    def _last_sent_at(self, key: str, event_type: AlertEventType) -> Optional[int]:
        persisted = self._store.get_last_alert_sent_at(key, event_type)
        local = self._queued_at.get((key, event_type))
        candidates = [value for value in (persisted, local) if value is not None]
        return max(candidates) if candidates else None


def _context_for(state: EntityState) -> Dict[str, object]:
    context: Dict[str, object] = {
        "status": state.status.value,
        "last_seen": state.last_seen,
        "last_status_change": state.last_status_change,
    }
    for key in ("display_name", "monitor_name", "response_time_ms"):
        value = state.metadata.get(key)
        if value is not None:
            context[key] = value
    return context


__all__ = [
    "AlertDebouncer",
    "AlertInput",
    "AlertPhase",
    "AlertState",
    "CooldownBlocked",
    "CooldownChecked",
    "Effect",
    "FlapSuppressed",
    "QueueAlert",
    "RequestAlert",
    "StatusChanged",
    "Tick",
    "cooldown_elapsed",
    "transition",
]
