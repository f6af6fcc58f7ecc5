"""Shared fixtures: a manual scheduler with a virtual clock and a fake prober."""

import heapq
import itertools
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Union

import pytest

from wakeondemand.config.settings import Settings
from wakeondemand.core.machine import Machine
from wakeondemand.core.probe import ProbeAttempt
from wakeondemand.scheduler.runner import ScheduledTask, TaskScheduler

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeScheduler(TaskScheduler):
    """Runs scheduled calls only when the test advances the virtual clock."""

    def __init__(self, start: datetime = T0) -> None:
        self._now = start
        self._queue: list = []
        self._seq = itertools.count()

    def now(self) -> datetime:
        return self._now

    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any) -> ScheduledTask:
        task = ScheduledTask()
        due = self._now + timedelta(seconds=max(0.0, delay))
        heapq.heappush(self._queue, (due, next(self._seq), task, fn, args))
        return task

    def advance(self, seconds: float = 0) -> None:
        target = self._now + timedelta(seconds=seconds)
        while self._queue and self._queue[0][0] <= target:
            due, _, task, fn, args = heapq.heappop(self._queue)
            self._now = max(self._now, due)
            if not task.cancelled:
                fn(*args)
        self._now = target

    def elapsed(self) -> float:
        return (self._now - T0).total_seconds()

    @property
    def pending(self) -> int:
        return sum(1 for entry in self._queue if not entry[2].cancelled)


class FakeProber:
    """
    Stand-in for ``Prober`` that resolves on the fake clock.

    ``outcome`` is a bool or a ``(host, port) -> Optional[bool]`` callable;
    None leaves the probe hanging until its timeout.
    """

    def __init__(
        self,
        scheduler: FakeScheduler,
        outcome: Union[bool, Callable[[str, int], Optional[bool]]] = False,
        latency: Union[float, Callable[[str, int], float]] = 0.0,
    ) -> None:
        self.scheduler = scheduler
        self.outcome = outcome
        self.latency = latency
        self.calls: list[tuple[str, int, float]] = []
        self.attempts: list[ProbeAttempt] = []

    def submit(
        self, host: str, port: int, timeout: float, on_result: Callable[[bool], None]
    ) -> ProbeAttempt:
        self.calls.append((host, port, timeout))
        attempt = ProbeAttempt(
            host, port, timeout, on_result=lambda r: self.scheduler.call_soon(on_result, r)
        )
        value = self.outcome(host, port) if callable(self.outcome) else self.outcome
        latency = self.latency(host, port) if callable(self.latency) else self.latency
        if value is None:
            self.scheduler.call_later(timeout, attempt.cancel)
        else:
            self.scheduler.call_later(latency, attempt.resolve, value)
        self.attempts.append(attempt)
        return attempt

    def shutdown(self, wait: bool = True) -> None:
        pass


class InlineExecutor(Executor):
    """Runs submitted work synchronously in the caller."""

    def __init__(self) -> None:
        self.submitted: list[Callable[..., Any]] = []

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        self.submitted.append(fn)
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def machine() -> Machine:
    return Machine(
        id="nas-1",
        name="nas",
        mac_address="AA:BB:CC:DD:EE:FF",
        ipv4_address="192.168.1.50",
        mask="255.255.255.0",
        broadcast_address="192.168.1.255",
        ping_port=22,
    )


@pytest.fixture
def fleet() -> list[Machine]:
    return [
        Machine(id="a", name="alpha", mac_address="00:11:22:33:44:01", ipv4_address="192.168.1.11"),
        Machine(id="b", name="bravo", mac_address="00:11:22:33:44:02", ipv4_address="192.168.1.12"),
        Machine(
            id="c",
            name="charlie",
            mac_address="00:11:22:33:44:03",
            ipv4_address="192.168.1.13",
            ping_port=3389,
        ),
    ]
