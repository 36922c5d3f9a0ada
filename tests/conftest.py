from __future__ import annotations

from typing import Callable, List, Optional

import pytest

from insideout_monitor.config.loader import WebhookSink
from insideout_monitor.state.types import AlertEvent, DeliveryResult

ZERO_KEY = bytes(32)


class ManualTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Records timers instead of starting threads; tests fire them explicitly."""

    def __init__(self) -> None:
        self.timers: List[ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> List[ManualTimer]:
        return [timer for timer in self.timers if not timer.cancelled]

    def fire_all(self) -> None:
        for timer in self.active:
            timer.cancelled = True
            timer.callback()


class FakeClock:
    def __init__(self, start: float = 1_700_000_000) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingDeliverer:
    """AlertDeliverer that records calls and fails for URLs listed in ``failing``."""

    def __init__(self, failing: Optional[set] = None) -> None:
        self.failing = failing or set()
        self.calls: List[tuple] = []

    def deliver(self, url: str, alert: AlertEvent, *, sink: Optional[WebhookSink] = None) -> DeliveryResult:
        self.calls.append((url, alert))
        name = sink.name if sink else url
        kind = sink.kind if sink else "generic"
        if url in self.failing:
            return DeliveryResult(success=False, sink_name=name, sink_kind=kind, error="HTTP 500: boom")
        return DeliveryResult(success=True, sink_name=name, sink_kind=kind)


@pytest.fixture
def zero_key() -> bytes:
    return ZERO_KEY


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def deliverer() -> RecordingDeliverer:
    return RecordingDeliverer()
