"""Tests for the APScheduler-backed control-thread scheduler."""

import threading
import time

from wakeondemand.scheduler.runner import BackgroundTaskScheduler, ScheduledTask

from conftest import FakeScheduler


class TestScheduledTask:
    def test_cancel_is_idempotent(self) -> None:
        calls: list[int] = []
        task = ScheduledTask(lambda: calls.append(1))

        task.cancel()
        task.cancel()

        assert task.cancelled
        assert calls == [1]


class TestFakeScheduler:
    """The virtual clock used throughout the test-suite."""

    def test_runs_in_due_order(self) -> None:
        scheduler = FakeScheduler()
        order: list[str] = []
        scheduler.call_later(2, order.append, "late")
        scheduler.call_later(1, order.append, "early")
        scheduler.call_soon(order.append, "now")

        scheduler.advance(5)

        assert order == ["now", "early", "late"]
        assert scheduler.elapsed() == 5

    def test_cancelled_task_skipped(self) -> None:
        scheduler = FakeScheduler()
        order: list[str] = []
        scheduler.call_later(1, order.append, "x").cancel()

        scheduler.advance(2)

        assert order == []


class TestBackgroundTaskScheduler:
    """
    Integration tests with a real APScheduler background thread.
    """

    def test_call_later_fires(self) -> None:
        scheduler = BackgroundTaskScheduler()
        fired = threading.Event()
        scheduler.start()
        try:
            scheduler.call_later(0.2, fired.set)
            assert fired.wait(timeout=10), "task did not fire within 10 seconds"
        finally:
            scheduler.stop(wait=False)

    def test_cancel_prevents_run(self) -> None:
        scheduler = BackgroundTaskScheduler()
        fired = threading.Event()
        marker = threading.Event()
        scheduler.start()
        try:
            task = scheduler.call_later(0.5, fired.set)
            task.cancel()
            scheduler.call_later(1.0, marker.set)
            assert marker.wait(timeout=10)
            assert not fired.is_set()
        finally:
            scheduler.stop(wait=False)

    def test_cancel_after_run_is_harmless(self) -> None:
        scheduler = BackgroundTaskScheduler()
        fired = threading.Event()
        scheduler.start()
        try:
            task = scheduler.call_soon(fired.set)
            assert fired.wait(timeout=10)
            time.sleep(0.1)
            task.cancel()
        finally:
            scheduler.stop(wait=False)

    def test_tasks_share_one_control_thread(self) -> None:
        scheduler = BackgroundTaskScheduler()
        threads: set[int] = set()
        done = threading.Event()
        remaining = [5]

        def record() -> None:
            threads.add(threading.get_ident())
            remaining[0] -= 1
            if remaining[0] == 0:
                done.set()

        scheduler.start()
        try:
            for i in range(5):
                scheduler.call_later(0.05 * i, record)
            assert done.wait(timeout=10)
        finally:
            scheduler.stop(wait=False)

        assert len(threads) == 1

    def test_task_exception_is_contained(self) -> None:
        scheduler = BackgroundTaskScheduler()
        after = threading.Event()

        def boom() -> None:
            raise RuntimeError("boom")

        scheduler.start()
        try:
            scheduler.call_soon(boom)
            scheduler.call_later(0.2, after.set)
            assert after.wait(timeout=10)
        finally:
            scheduler.stop(wait=False)

    def test_tasks_queued_before_start_run_on_start(self) -> None:
        scheduler = BackgroundTaskScheduler()
        fired = threading.Event()
        scheduler.call_soon(fired.set)
        assert not scheduler.running
        scheduler.start()
        try:
            assert fired.wait(timeout=10)
        finally:
            scheduler.stop(wait=False)
