"""Background reachability polling for the whole fleet."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import partial
from typing import Callable, Iterable, Optional

from wakeondemand.config.settings import CHECK_INTERVALS
from wakeondemand.core.machine import Machine
from wakeondemand.core.probe import STATUS_TIMEOUT, Prober
from wakeondemand.scheduler.runner import ScheduledTask, TaskScheduler

logger = logging.getLogger(__name__)

__all__ = ["CHECK_INTERVALS", "CheckPass", "FleetStatusPoller", "MachineStatus"]


@dataclass(frozen=True)
class MachineStatus:
    """Last known reachability of one machine."""

    reachable: bool = False
    last_checked_at: Optional[datetime] = None
    checking: bool = False


class CheckPass:
    """
    Join handle for one check-all pass.

    Per-machine results land in ``results`` as they arrive; ``wait()`` blocks
    until every machine has reported.
    """

    def __init__(self, machine_ids: Iterable[str]) -> None:
        self._remaining = set(machine_ids)
        self.results: dict[str, bool] = {}
        self._event = threading.Event()
        self._callbacks: list[Callable[["CheckPass"], None]] = []
        if not self._remaining:
            self._event.set()

    @property
    def done(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def add_done_callback(self, callback: Callable[["CheckPass"], None]) -> None:
        """Run ``callback`` once the pass completes (immediately if it already has)."""
        if self.done:
            callback(self)
        else:
            self._callbacks.append(callback)

    def _record(self, machine_id: str, reachable: bool) -> None:
        if machine_id not in self._remaining:
            return
        self._remaining.discard(machine_id)
        self.results[machine_id] = reachable
        if self._remaining:
            return
        self._event.set()
        for callback in self._callbacks:
            try:
                callback(self)
            except Exception as exc:
                logger.error("Check pass callback raised: %s", exc)
        self._callbacks.clear()


class FleetStatusPoller:
    """
    Periodically probes every known machine and keeps a status map by machine id.

    Scheduling uses a single-shot timer that re-arms itself after each pass.
    An interval change requested with ``set_pending_interval`` is applied only
    when the timer is next armed, so the current wait is never cut short.

    Entries are created on first check and never removed while the process
    runs. All state lives on the scheduler's control thread; the public
    methods post their work there.
    """

    def __init__(
        self,
        scheduler: TaskScheduler,
        prober: Prober,
        timeout: float = STATUS_TIMEOUT,
        interval: float = 120,
    ) -> None:
        self._scheduler = scheduler
        self._prober = prober
        self._timeout = timeout
        self._interval = float(interval)
        self._pending_interval: Optional[float] = None
        self._machines: list[Machine] = []
        self._statuses: dict[str, MachineStatus] = {}
        self._in_flight: dict[str, int] = {}
        self._timer: Optional[ScheduledTask] = None
        self._next_check_at: Optional[datetime] = None
        self._running = False
        self._listeners: list[Callable[[str, MachineStatus], None]] = []

    # ── Read-only views ──────────────────────────────────────────────────────

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def pending_interval(self) -> Optional[float]:
        return self._pending_interval

    @property
    def next_check_at(self) -> Optional[datetime]:
        """When the armed timer fires next; None when stopped."""
        return self._next_check_at

    @property
    def running(self) -> bool:
        return self._running

    def status_for(self, machine_id: str) -> MachineStatus:
        return self._statuses.get(machine_id, MachineStatus())

    def is_checking(self, machine_id: str) -> bool:
        return self.status_for(machine_id).checking

    def snapshot(self) -> dict[str, MachineStatus]:
        return dict(self._statuses)

    def add_listener(self, listener: Callable[[str, MachineStatus], None]) -> None:
        """Register a callback receiving ``(machine_id, MachineStatus)`` on every change."""
        self._listeners.append(listener)

    # ── Commands ─────────────────────────────────────────────────────────────

    def start(self, machines: Iterable[Machine], interval: Optional[float] = None) -> CheckPass:
        """
        Check every machine now, then again every ``interval`` seconds.

        Calling ``start`` while running restarts the schedule with the new
        machine list.

        Returns:
            Handle for the immediate pass
        """
        machines = list(machines)
        interval = self._validate(interval if interval is not None else self._interval)
        check_pass = CheckPass(m.id for m in machines)
        self._scheduler.call_soon(self._start, machines, interval, check_pass)
        return check_pass

    def reset(self, machines: Iterable[Machine], interval: Optional[float] = None) -> None:
        """
        Re-arm the timer with ``interval`` without running a pass now.

        Used right after a manual refresh so the fleet is not checked twice.
        """
        machines = list(machines)
        interval = self._validate(interval if interval is not None else self._interval)
        self._scheduler.call_soon(self._reset, machines, interval)

    def stop(self) -> None:
        """Cancel the pending timer. Probes already in flight still record their results."""
        self._scheduler.call_soon(self._stop)

    def set_pending_interval(self, interval: float) -> None:
        """Record a new interval to be applied at the next scheduled firing."""
        interval = self._validate(interval)
        self._scheduler.call_soon(self._set_pending, interval)

    def check_all(self, machines: Iterable[Machine]) -> CheckPass:
        """Check every machine concurrently, leaving the timer untouched."""
        machines = list(machines)
        check_pass = CheckPass(m.id for m in machines)
        self._scheduler.call_soon(self._run_pass, machines, check_pass)
        return check_pass

    def check_machine(
        self,
        machine: Machine,
        on_result: Optional[Callable[[bool], None]] = None,
    ) -> None:
        """Check a single machine; ``on_result`` runs on the control thread."""
        self._scheduler.call_soon(self._check, machine, on_result)

    def mark_reachable(self, machine_id: str, reachable: bool) -> None:
        """Set a machine's status directly. Control thread only."""
        current = self.status_for(machine_id)
        self._set_status(
            machine_id,
            MachineStatus(
                reachable=reachable,
                last_checked_at=self._scheduler.now(),
                checking=current.checking,
            ),
        )

    # ── Control-thread steps ─────────────────────────────────────────────────

    def _start(self, machines: list[Machine], interval: float, check_pass: CheckPass) -> None:
        self._cancel_timer()
        self._machines = machines
        self._interval = interval
        self._pending_interval = None
        self._running = True
        logger.info(
            "Fleet status polling started for %d machine(s) every %.0fs", len(machines), interval
        )
        self._run_pass(machines, check_pass)
        self._arm()

    def _reset(self, machines: list[Machine], interval: float) -> None:
        self._cancel_timer()
        self._machines = machines
        self._interval = interval
        self._pending_interval = None
        self._running = True
        logger.debug("Fleet status timer reset to %.0fs", interval)
        self._arm()

    def _stop(self) -> None:
        self._cancel_timer()
        self._running = False
        logger.info("Fleet status polling stopped")

    def _set_pending(self, interval: float) -> None:
        self._pending_interval = interval
        logger.debug("Fleet status interval %.0fs pending until next check", interval)

    def _arm(self) -> None:
        if self._pending_interval is not None:
            self._interval, self._pending_interval = self._pending_interval, None
        self._next_check_at = self._scheduler.now() + timedelta(seconds=self._interval)
        self._timer = self._scheduler.call_later(self._interval, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if not self._running:
            return
        self._run_pass(self._machines, CheckPass(m.id for m in self._machines))
        self._arm()

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer:
            timer.cancel()
        self._next_check_at = None

    def _run_pass(self, machines: list[Machine], check_pass: CheckPass) -> None:
        logger.debug("Checking status of %d machine(s)", len(machines))
        check_pass.add_done_callback(
            lambda p: logger.debug("All status checks completed (%d online)", sum(p.results.values()))
        )
        for machine in machines:
            self._check(machine, partial(check_pass._record, machine.id))

    def _check(self, machine: Machine, on_result: Optional[Callable[[bool], None]]) -> None:
        self._in_flight[machine.id] = self._in_flight.get(machine.id, 0) + 1
        current = self.status_for(machine.id)
        if not current.checking:
            self._set_status(
                machine.id,
                MachineStatus(current.reachable, current.last_checked_at, checking=True),
            )
        self._prober.submit(
            machine.ipv4_address,
            machine.ping_port,
            self._timeout,
            partial(self._on_result, machine, on_result),
        )

    def _on_result(
        self,
        machine: Machine,
        on_result: Optional[Callable[[bool], None]],
        reachable: bool,
    ) -> None:
        remaining = self._in_flight.get(machine.id, 1) - 1
        if remaining > 0:
            self._in_flight[machine.id] = remaining
        else:
            self._in_flight.pop(machine.id, None)
        self._set_status(
            machine.id,
            MachineStatus(
                reachable=reachable,
                last_checked_at=self._scheduler.now(),
                checking=remaining > 0,
            ),
        )
        logger.debug("%s is %s", machine.name, "online" if reachable else "offline")
        if on_result:
            try:
                on_result(reachable)
            except Exception as exc:
                logger.error("Status check callback raised: %s", exc)

    def _set_status(self, machine_id: str, status: MachineStatus) -> None:
        self._statuses[machine_id] = status
        for listener in list(self._listeners):
            try:
                listener(machine_id, status)
            except Exception as exc:
                logger.error("Fleet status listener raised: %s", exc)

    @staticmethod
    def _validate(interval: float) -> float:
        if interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {interval}")
        return float(interval)
