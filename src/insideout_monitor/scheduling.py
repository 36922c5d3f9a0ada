"""Timer abstractions so batching and periodic checks can run without real clocks in tests."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Protocol

LOGGER = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class ThreadingScheduler:
    """Single-shot timers on daemon threads."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(max(0.0, float(delay)), callback)
        timer.daemon = True
        timer.start()
        return timer


class PeriodicTask:
    """Runs ``callback`` every ``interval`` seconds on a background thread until stopped."""

    def __init__(self, interval: float, callback: Callable[[], None], *, name: str = "periodic-task") -> None:
        if interval <= 0:
            raise ValueError("PeriodicTask interval must be positive")
        self._interval = float(interval)
        self._callback = callback
        self._name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._callback()
            except Exception:  # pylint: disable=broad-exception-caught
                LOGGER.exception("%s iteration failed", self._name)


__all__ = ["PeriodicTask", "Scheduler", "ThreadingScheduler", "TimerHandle"]
