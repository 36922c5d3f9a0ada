"""Batching alert dispatcher with concurrent, independently failing webhook fan-out."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from insideout_monitor.alerting.sinks import AlertDeliverer, matching_sinks
from insideout_monitor.config.loader import WebhookSink
from insideout_monitor.errors import PersistenceUnavailable
from insideout_monitor.scheduling import Scheduler, ThreadingScheduler, TimerHandle
from insideout_monitor.state.types import AlertEvent, DeliveryResult

LOGGER = logging.getLogger(__name__)


class AlertRecorder(Protocol):
    def record_alert(self, event: AlertEvent, result: DeliveryResult, *, sent_at: Optional[int] = None) -> None:
        ...


@dataclass(frozen=True)
class DeliveryAttempt:
    alert: AlertEvent
    sink: WebhookSink
    result: DeliveryResult
    sent_at: int


class BatchDispatcher:
    """Accumulates alerts for ``batch_delay_seconds`` and then fans them out.

    One single-shot timer at most is armed at any time; queueing while it is
    pending only appends. Each sink delivery is attempted once and recorded.
    """

    def __init__(
        self,
        sinks: Sequence[WebhookSink],
        deliverer: AlertDeliverer,
        recorder: AlertRecorder,
        *,
        batch_delay_seconds: float = 30.0,
        scheduler: Optional[Scheduler] = None,
        max_workers: int = 4,
        delivery_timeout_seconds: float = 5.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._sinks = list(sinks)
        self._deliverer = deliverer
        self._recorder = recorder
        self._delay = max(0.0, float(batch_delay_seconds))
        self._scheduler = scheduler or ThreadingScheduler()
        self._timeout = float(delivery_timeout_seconds)
        self._workers = max(1, max_workers)
        self._clock = clock or time.time
        self._executor = ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="alert-delivery")
        self._queue: List[AlertEvent] = []
        self._timer: Optional[TimerHandle] = None
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._closed = False

    @property
    def pending(self) -> List[AlertEvent]:
        with self._lock:
            return list(self._queue)

    @property
    def timer_armed(self) -> bool:
        with self._lock:
            return self._timer is not None

    def queue(self, alert: AlertEvent) -> None:
        with self._lock:
            if self._closed:
                LOGGER.warning("Dispatcher closed; dropping %s alert for %s", alert.event_type.value, alert.entity_key)
                return
            self._queue.append(alert)
            if self._timer is None:
                self._timer = self._scheduler.call_later(self._delay, self._on_timer)
        LOGGER.debug("Queued %s alert for %s", alert.event_type.value, alert.entity_key)

    def flush(self) -> List[DeliveryAttempt]:
        """Drain the queue and deliver everything now.

        Flushes are serialized, so a caller returns only after any flush the
        timer already started has finished recording its results.
        """
        with self._flush_lock:
            with self._lock:
                alerts, self._queue = self._queue, []
                timer, self._timer = self._timer, None
            if timer is not None:
                timer.cancel()
            if not alerts:
                return []
            LOGGER.info("Processing %d queued alert(s)", len(alerts))
            return self._deliver_batch(alerts)

    def close(self, *, flush: bool = True) -> None:
        """Stop the batch timer, flush best-effort, and join in-flight deliveries."""
        with self._lock:
            self._closed = True
            timer, self._timer = self._timer, None
            abandoned = [] if flush else list(self._queue)
            if not flush:
                self._queue = []
        if timer is not None:
            timer.cancel()
        if flush:
            self.flush()
        elif abandoned:
            LOGGER.warning("Abandoning %d queued alert(s) on shutdown", len(abandoned))
        self._executor.shutdown(wait=True)

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
        try:
            self.flush()
        except Exception:  # pylint: disable=broad-exception-caught
            LOGGER.exception("Alert batch flush failed")

    def _deliver_batch(self, alerts: Sequence[AlertEvent]) -> List[DeliveryAttempt]:
        """Submit every (alert, sink) delivery first, then collect them in order.

        The whole batch shares one deadline sized for the pool: each wave of
        ``max_workers`` deliveries gets ``delivery_timeout_seconds``. Anything
        unfinished by then is recorded as timed out.
        """

        sent_at = int(self._clock())
        submitted: List[Tuple[AlertEvent, WebhookSink, Future]] = []
        for alert in alerts:
            sinks = matching_sinks(self._sinks, alert)
            if not sinks:
                LOGGER.debug("No sink matches %s alert for %s", alert.event_type.value, alert.entity_key)
            for sink in sinks:
                submitted.append((alert, sink, self._submit(alert, sink)))
        if not submitted:
            return []

        waves = -(-len(submitted) // self._workers)
        deadline = time.monotonic() + self._timeout * waves
        attempts: List[DeliveryAttempt] = []
        for alert, sink, future in submitted:
            result = self._result_for(sink, future, max(0.0, deadline - time.monotonic()))
            attempt = DeliveryAttempt(alert=alert, sink=sink, result=result, sent_at=sent_at)
            self._record(attempt)
            attempts.append(attempt)
        return attempts

    def _submit(self, alert: AlertEvent, sink: WebhookSink) -> Future:
        try:
            return self._executor.submit(self._deliverer.deliver, sink.url, alert, sink=sink)
        except RuntimeError as exc:
            # Executor already shut down.
            return _failed_future(exc)

    def _result_for(self, sink: WebhookSink, future: Future, timeout: float) -> DeliveryResult:
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            return DeliveryResult(
                success=False,
                sink_name=sink.name,
                sink_kind=sink.kind,
                error=f"delivery timed out after {self._timeout:.1f}s",
            )
        except Exception as exc:  # pylint: disable=broad-exception-caught
            return DeliveryResult(
                success=False,
                sink_name=sink.name,
                sink_kind=sink.kind,
                error=f"{exc.__class__.__name__}: {exc}",
            )

    def _record(self, attempt: DeliveryAttempt) -> None:
        alert, result = attempt.alert, attempt.result
        if result.success:
            LOGGER.info("Alert sent: %s %s -> %s/%s", alert.event_type.value, alert.entity_key, result.sink_kind, result.sink_name)
        else:
            LOGGER.warning(
                "Alert failed: %s %s -> %s/%s - %s",
                alert.event_type.value,
                alert.entity_key,
                result.sink_kind,
                result.sink_name,
                result.error,
            )
        try:
            self._recorder.record_alert(alert, result, sent_at=attempt.sent_at)
        except PersistenceUnavailable as exc:
            LOGGER.error("Could not record alert attempt for %s: %s", alert.entity_key, exc)


def _failed_future(exc: BaseException) -> Future:
    future: Future = Future()
    future.set_exception(exc)
    return future


__all__ = ["AlertRecorder", "BatchDispatcher", "DeliveryAttempt"]
