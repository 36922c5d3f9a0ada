from __future__ import annotations

import threading
import time
from typing import Optional

import pytest

from insideout_monitor.alerting.dispatcher import BatchDispatcher
from insideout_monitor.config.loader import WebhookSink
from insideout_monitor.errors import PersistenceUnavailable
from insideout_monitor.state.store import InMemoryStatusStore
from insideout_monitor.state.types import AlertEvent, AlertEventType, DeliveryResult, EntityType

SINKS = (
    WebhookSink(name="ops", url="http://hooks/ops", kind="discord"),
    WebhookSink(name="db-team", url="http://hooks/db", kind="teams", entities=("db-*",)),
)


def _alert(key: str = "web-01", event: AlertEventType = AlertEventType.OFFLINE, at: int = 1000) -> AlertEvent:
    return AlertEvent(EntityType.DEVICE, key, event, occurred_at=at)


def _dispatcher(deliverer, scheduler, recorder=None, **kwargs) -> BatchDispatcher:
    return BatchDispatcher(
        SINKS,
        deliverer,
        recorder or InMemoryStatusStore(),
        batch_delay_seconds=30,
        scheduler=scheduler,
        clock=lambda: 2000.0,
        **kwargs,
    )


def test_single_timer_for_a_batch(deliverer, scheduler) -> None:
    dispatcher = _dispatcher(deliverer, scheduler)

    dispatcher.queue(_alert("web-01"))
    dispatcher.queue(_alert("web-02"))
    dispatcher.queue(_alert("db-01"))

    assert len(scheduler.timers) == 1
    assert scheduler.timers[0].delay == 30
    assert len(dispatcher.pending) == 3
    assert deliverer.calls == []
    dispatcher.close(flush=False)


def test_timer_fire_delivers_every_matching_sink(deliverer, scheduler) -> None:
    store = InMemoryStatusStore()
    dispatcher = _dispatcher(deliverer, scheduler, store)
    dispatcher.queue(_alert("web-01"))
    dispatcher.queue(_alert("db-01"))

    scheduler.fire_all()

    urls = sorted(url for url, _ in deliverer.calls)
    assert urls == ["http://hooks/db", "http://hooks/ops", "http://hooks/ops"]
    assert dispatcher.pending == []
    assert not dispatcher.timer_armed
    records = store.alert_records()
    assert len(records) == 3
    assert all(r.success and r.sent_at == 2000 for r in records)
    dispatcher.close()


def test_new_batch_arms_new_timer_after_flush(deliverer, scheduler) -> None:
    dispatcher = _dispatcher(deliverer, scheduler)
    dispatcher.queue(_alert())
    scheduler.fire_all()

    dispatcher.queue(_alert(at=1100))

    assert len(scheduler.active) == 1
    assert len(scheduler.timers) == 2
    dispatcher.close(flush=False)


def test_failing_sink_does_not_affect_others(deliverer, scheduler) -> None:
    deliverer.failing = {"http://hooks/ops"}
    store = InMemoryStatusStore()
    dispatcher = _dispatcher(deliverer, scheduler, store)
    dispatcher.queue(_alert("db-01"))

    attempts = dispatcher.flush()

    by_sink = {a.sink.name: a.result for a in attempts}
    assert not by_sink["ops"].success
    assert by_sink["ops"].error == "HTTP 500: boom"
    assert by_sink["db-team"].success
    assert {(r.sink_name, r.success) for r in store.alert_records()} == {("ops", False), ("db-team", True)}
    # Failed attempts still count towards the cooldown.
    assert store.get_last_alert_sent_at("db-01", AlertEventType.OFFLINE) == 2000
    dispatcher.close()


def test_no_matching_sink_records_nothing(deliverer, scheduler) -> None:
    store = InMemoryStatusStore()
    dispatcher = _dispatcher(deliverer, scheduler, store)
    dispatcher.queue(_alert("web-01", AlertEventType.NEW_ENTITY))

    assert dispatcher.flush() == []
    assert deliverer.calls == []
    assert store.alert_records() == []
    dispatcher.close()


def test_deliverer_exception_becomes_failed_result(scheduler) -> None:
    class Exploding:
        def deliver(self, url, alert, *, sink=None) -> DeliveryResult:
            raise ConnectionError("refused")

    store = InMemoryStatusStore()
    dispatcher = _dispatcher(Exploding(), scheduler, store)
    dispatcher.queue(_alert())

    attempts = dispatcher.flush()

    assert len(attempts) == 1
    assert not attempts[0].result.success
    assert "ConnectionError" in attempts[0].result.error
    dispatcher.close()


def test_slow_delivery_times_out(scheduler) -> None:
    release = threading.Event()

    class Slow:
        def deliver(self, url, alert, *, sink=None) -> DeliveryResult:
            release.wait(5)
            return DeliveryResult(success=True, sink_name=sink.name if sink else url)

    store = InMemoryStatusStore()
    dispatcher = _dispatcher(Slow(), scheduler, store, delivery_timeout_seconds=0.05)
    dispatcher.queue(_alert())

    attempts = dispatcher.flush()
    release.set()

    assert len(attempts) == 1
    assert not attempts[0].result.success
    assert "timed out" in attempts[0].result.error
    assert store.alert_records()[0].success is False
    dispatcher.close()


def test_hung_sink_stalls_a_batch_for_one_timeout_not_one_per_alert(scheduler) -> None:
    release = threading.Event()

    class Hung:
        def deliver(self, url, alert, *, sink=None) -> DeliveryResult:
            release.wait(5)
            return DeliveryResult(success=True, sink_name=sink.name if sink else url)

    dispatcher = _dispatcher(Hung(), scheduler, max_workers=10, delivery_timeout_seconds=0.2)
    for index in range(10):
        dispatcher.queue(_alert(f"web-{index:02d}"))

    started = time.monotonic()
    attempts = dispatcher.flush()
    elapsed = time.monotonic() - started
    release.set()

    assert len(attempts) == 10
    assert all("timed out" in attempt.result.error for attempt in attempts)
    assert elapsed < 1.0
    dispatcher.close()


def test_record_failure_is_logged(deliverer, scheduler, caplog: pytest.LogCaptureFixture) -> None:
    class BrokenRecorder:
        def record_alert(self, event, result, *, sent_at: Optional[int] = None) -> None:
            raise PersistenceUnavailable("disk full")

    dispatcher = _dispatcher(deliverer, scheduler, BrokenRecorder())
    dispatcher.queue(_alert())

    with caplog.at_level("ERROR"):
        attempts = dispatcher.flush()

    assert attempts[0].result.success
    assert "Could not record alert attempt" in caplog.text
    dispatcher.close()


def test_close_flushes_pending_and_cancels_timer(deliverer, scheduler) -> None:
    dispatcher = _dispatcher(deliverer, scheduler)
    dispatcher.queue(_alert())

    dispatcher.close()

    assert scheduler.timers[0].cancelled
    assert len(deliverer.calls) == 1
    dispatcher.queue(_alert(at=1200))
    assert dispatcher.pending == []


def test_close_without_flush_abandons(deliverer, scheduler, caplog: pytest.LogCaptureFixture) -> None:
    dispatcher = _dispatcher(deliverer, scheduler)
    dispatcher.queue(_alert())

    with caplog.at_level("WARNING"):
        dispatcher.close(flush=False)

    assert deliverer.calls == []
    assert "Abandoning 1 queued alert" in caplog.text
