from __future__ import annotations

from typing import Optional

import pytest

from insideout_monitor.alerting.debounce import (
    AlertDebouncer,
    AlertPhase,
    AlertState,
    CooldownBlocked,
    CooldownChecked,
    FlapSuppressed,
    QueueAlert,
    RequestAlert,
    StatusChanged,
    Tick,
    transition,
)
from insideout_monitor.errors import PersistenceUnavailable
from insideout_monitor.state.store import InMemoryStatusStore
from insideout_monitor.state.types import (
    AlertEvent,
    AlertEventType,
    DeliveryResult,
    EntityState,
    EntityStatus,
    EntityType,
    TransitionEvent,
)

GRACE = 120
COOLDOWN = 3600
ONLINE = EntityStatus.ONLINE
OFFLINE = EntityStatus.OFFLINE


def _step(state: AlertState, event, now: int):
    return transition(state, event, now, grace_period_seconds=GRACE, cooldown_seconds=COOLDOWN)


def _flip(key: str, previous: EntityStatus, current: EntityStatus, at: int) -> TransitionEvent:
    return TransitionEvent(
        entity_key=key,
        entity_type=EntityType.DEVICE,
        previous=previous,
        current=current,
        occurred_at=at,
        last_seen=at - 300,
    )


def _entity(key: str, status: EntityStatus = ONLINE, at: int = 0) -> EntityState:
    return EntityState(
        entity_key=key,
        entity_type=EntityType.DEVICE,
        status=status,
        last_seen=at,
        last_status_change=at,
        metadata={"display_name": key},
    )


class _BrokenStore(InMemoryStatusStore):
    def get_last_alert_sent_at(self, key: str, event_type: AlertEventType) -> Optional[int]:
        raise PersistenceUnavailable("database is locked")


# Pure transition function


def test_change_enters_grace() -> None:
    state, effects = _step(AlertState.stable(ONLINE), StatusChanged(OFFLINE), 1000)

    assert state.phase is AlertPhase.PENDING_GRACE
    assert state.pending is OFFLINE
    assert state.changed_at == 1000
    assert effects == []


def test_same_status_while_stable_is_ignored() -> None:
    state = AlertState.stable(ONLINE)
    assert _step(state, StatusChanged(ONLINE), 1000) == (state, [])


def test_flap_back_within_grace_is_suppressed() -> None:
    pending, _ = _step(AlertState.stable(ONLINE), StatusChanged(OFFLINE), 1000)

    state, effects = _step(pending, StatusChanged(ONLINE), 1060)

    assert state == AlertState.stable(ONLINE)
    assert effects == [FlapSuppressed(ONLINE)]


def test_tick_before_grace_waits() -> None:
    pending, _ = _step(AlertState.stable(ONLINE), StatusChanged(OFFLINE), 1000)
    assert _step(pending, Tick(), 1000 + GRACE - 1) == (pending, [])


def test_tick_after_grace_requests_alert() -> None:
    pending, _ = _step(AlertState.stable(ONLINE), StatusChanged(OFFLINE), 1000)

    state, effects = _step(pending, Tick(), 1000 + GRACE)

    assert state.phase is AlertPhase.ELIGIBLE
    assert effects == [RequestAlert(AlertEventType.OFFLINE)]


def test_cooldown_clear_queues_and_cools_down() -> None:
    eligible = AlertState(AlertPhase.ELIGIBLE, ONLINE, OFFLINE, changed_at=1000)

    state, effects = _step(eligible, CooldownChecked(None), 1200)

    assert effects == [QueueAlert(AlertEventType.OFFLINE)]
    assert state.phase is AlertPhase.COOLING_DOWN
    assert state.baseline is OFFLINE
    assert state.last_alert_at == 1200


def test_cooldown_active_blocks_and_stays_eligible() -> None:
    eligible = AlertState(AlertPhase.ELIGIBLE, ONLINE, OFFLINE, changed_at=1000)

    state, effects = _step(eligible, CooldownChecked(1200 - COOLDOWN + 1), 1200)

    assert state is eligible
    assert effects == [CooldownBlocked(AlertEventType.OFFLINE)]


def test_cooldown_boundary_is_inclusive() -> None:
    eligible = AlertState(AlertPhase.ELIGIBLE, ONLINE, OFFLINE, changed_at=1000)
    _, effects = _step(eligible, CooldownChecked(1200 - COOLDOWN), 1200)
    assert effects == [QueueAlert(AlertEventType.OFFLINE)]


def test_cooling_down_returns_to_stable_after_cooldown() -> None:
    cooling = AlertState(AlertPhase.COOLING_DOWN, OFFLINE, last_alert_at=1000)

    assert _step(cooling, Tick(), 1000 + COOLDOWN - 1) == (cooling, [])
    state, _ = _step(cooling, Tick(), 1000 + COOLDOWN)
    assert state.phase is AlertPhase.STABLE
    assert state.baseline is OFFLINE


def test_change_while_cooling_down_enters_grace() -> None:
    cooling = AlertState(AlertPhase.COOLING_DOWN, OFFLINE, last_alert_at=1000)

    state, _ = _step(cooling, StatusChanged(ONLINE), 1100)

    assert state.phase is AlertPhase.PENDING_GRACE
    assert state.pending is ONLINE
    assert state.last_alert_at == 1000


def test_unknown_input_raises() -> None:
    with pytest.raises(TypeError):
        _step(AlertState.stable(ONLINE), object(), 0)


@pytest.mark.parametrize("phase", [AlertPhase.PENDING_GRACE, AlertPhase.ELIGIBLE])
def test_pending_phases_require_a_pending_change(phase: AlertPhase) -> None:
    with pytest.raises(ValueError):
        AlertState(phase, ONLINE)
    with pytest.raises(ValueError):
        AlertState(phase, ONLINE, OFFLINE)


# AlertDebouncer


def _debouncer(store: Optional[InMemoryStatusStore] = None) -> AlertDebouncer:
    return AlertDebouncer(store or InMemoryStatusStore(), grace_period_seconds=GRACE, cooldown_seconds=COOLDOWN)


def test_offline_alert_after_grace() -> None:
    debouncer = _debouncer()
    debouncer.track(_entity("laptop"))

    assert debouncer.process([_flip("laptop", ONLINE, OFFLINE, 1000)], 1000) == []
    assert debouncer.process([], 1000 + GRACE - 1) == []
    alerts = debouncer.process([], 1000 + GRACE)

    assert len(alerts) == 1
    assert alerts[0].event_type is AlertEventType.OFFLINE
    assert alerts[0].entity_key == "laptop"
    assert debouncer.state_for("laptop").phase is AlertPhase.COOLING_DOWN


def test_flap_produces_no_alert() -> None:
    debouncer = _debouncer()
    debouncer.track(_entity("laptop"))

    debouncer.process([_flip("laptop", ONLINE, OFFLINE, 1000)], 1000)
    debouncer.process([_flip("laptop", OFFLINE, ONLINE, 1060)], 1060)

    assert debouncer.process([], 1000 + GRACE * 2) == []
    assert debouncer.state_for("laptop").phase is AlertPhase.STABLE


def test_no_duplicate_alert_within_cooldown() -> None:
    debouncer = _debouncer()
    debouncer.track(_entity("laptop"))

    debouncer.process([_flip("laptop", ONLINE, OFFLINE, 1000)], 1000)
    first = debouncer.process([], 1200)
    debouncer.process([_flip("laptop", OFFLINE, ONLINE, 1300)], 1300)
    recovered = debouncer.process([], 1500)
    debouncer.process([_flip("laptop", ONLINE, OFFLINE, 1600)], 1600)
    second = debouncer.process([], 1800)

    assert [a.event_type for a in first] == [AlertEventType.OFFLINE]
    assert [a.event_type for a in recovered] == [AlertEventType.ONLINE]
    assert second == []
    assert debouncer.state_for("laptop").phase is AlertPhase.ELIGIBLE

    later = debouncer.process([], 1200 + COOLDOWN)
    assert [a.event_type for a in later] == [AlertEventType.OFFLINE]


def test_persisted_alert_history_blocks_after_restart() -> None:
    store = InMemoryStatusStore()
    store.record_alert(
        AlertEvent(EntityType.DEVICE, "laptop", AlertEventType.OFFLINE, occurred_at=900),
        DeliveryResult(success=True, sink_name="ops"),
        sent_at=900,
    )
    debouncer = _debouncer(store)
    debouncer.track(_entity("laptop"))

    debouncer.process([_flip("laptop", ONLINE, OFFLINE, 1000)], 1000)
    assert debouncer.process([], 1000 + GRACE) == []


def test_new_entity_skips_grace_but_honours_cooldown() -> None:
    debouncer = _debouncer()

    alert = debouncer.new_entity(_entity("printer", at=1000), 1000)
    repeat = debouncer.new_entity(_entity("printer", at=1010), 1010)

    assert alert is not None
    assert alert.event_type is AlertEventType.NEW_ENTITY
    assert alert.context["display_name"] == "printer"
    assert repeat is None
    assert debouncer.state_for("printer") == AlertState.stable(ONLINE)


def test_cooldown_lookup_failure_suppresses_alert(caplog: pytest.LogCaptureFixture) -> None:
    debouncer = _debouncer(_BrokenStore())
    debouncer.track(_entity("laptop"))

    debouncer.process([_flip("laptop", ONLINE, OFFLINE, 1000)], 1000)
    with caplog.at_level("WARNING"):
        alerts = debouncer.process([], 1000 + GRACE)

    assert alerts == []
    assert "suppressing alert" in caplog.text
    assert debouncer.new_entity(_entity("printer"), 1000) is None


def test_alert_context_comes_from_lookup() -> None:
    debouncer = _debouncer()
    debouncer.track(_entity("laptop"))
    debouncer.process([_flip("laptop", ONLINE, OFFLINE, 1000)], 1000)

    alerts = debouncer.process([], 1000 + GRACE, lookup=lambda key: _entity(key, OFFLINE, at=700))

    assert alerts[0].context["status"] == "offline"
    assert alerts[0].context["last_seen"] == 700
