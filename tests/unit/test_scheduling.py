from __future__ import annotations

import threading

import pytest

from insideout_monitor.scheduling import PeriodicTask, ThreadingScheduler


def test_threading_scheduler_fires_once() -> None:
    fired = threading.Event()
    ThreadingScheduler().call_later(0.01, fired.set)
    assert fired.wait(2.0)


def test_threading_scheduler_cancel() -> None:
    fired = threading.Event()
    handle = ThreadingScheduler().call_later(0.5, fired.set)
    handle.cancel()
    assert not fired.wait(0.7)


def test_periodic_task_survives_callback_errors() -> None:
    calls = []
    done = threading.Event()

    def callback() -> None:
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first tick fails")
        done.set()

    task = PeriodicTask(0.01, callback, name="test-task")
    task.start()
    try:
        assert done.wait(2.0)
    finally:
        task.stop()
    assert not task.running
    assert len(calls) >= 2


def test_periodic_task_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        PeriodicTask(0, lambda: None)
