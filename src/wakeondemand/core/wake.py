"""Wake-and-verify orchestration."""

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Callable, Optional

from wakeondemand.config.settings import Settings
from wakeondemand.core import wol
from wakeondemand.core.machine import Machine
from wakeondemand.core.probe import ProbeAttempt, Prober
from wakeondemand.scheduler.runner import ScheduledTask, TaskScheduler

if TYPE_CHECKING:
    from wakeondemand.scheduler.poller import FleetStatusPoller

logger = logging.getLogger(__name__)


class WakeState(Enum):
    """States of a wake session."""

    IDLE = "idle"
    SENDING = "sending"
    WAITING = "waiting"
    SUCCESS = "success"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({WakeState.SUCCESS, WakeState.TIMED_OUT, WakeState.CANCELLED})


@dataclass(frozen=True)
class WakeProgress:
    """Immutable view of a wake session, handed to listeners."""

    machine_id: str
    machine_name: str
    state: WakeState
    attempts: int
    max_attempts: int
    reachable: bool
    status_message: str

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass
class WakeSession:
    """Live state of one wake request. Discarded once terminal, never persisted."""

    machine: Machine
    max_attempts: int = 30
    state: WakeState = WakeState.IDLE
    attempts: int = 0
    reachable: bool = False
    status_message: str = "Starting..."
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def can_cancel(self) -> bool:
        return not self.terminal and not self.reachable and self.attempts < self.max_attempts

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at and self.started_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def progress(self) -> WakeProgress:
        return WakeProgress(
            machine_id=self.machine.id,
            machine_name=self.machine.name,
            state=self.state,
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            reachable=self.reachable,
            status_message=self.status_message,
        )


class WakeOrchestrator:
    """
    Sends a magic packet, then probes the target until it answers.

    Timeline for the default settings: the packet goes out, 1 s later the
    session starts waiting, and every 2 s one probe is made against
    ``ipv4_address:ping_port``. The session succeeds on the first probe that
    connects and times out after 30 failed probes. Probes never overlap: the
    next one is scheduled only after the previous resolved. Each probe is
    given ``wake_timeout`` but no more than ``ping_interval``, which keeps a
    silent target within about 1 + 30 x 2 s.

    All session state is mutated on the scheduler's control thread. The
    orchestrator does not serialize wake requests per machine; starting a
    new wake abandons the previous session.

    Usage::

        orchestrator = WakeOrchestrator(scheduler, prober, settings)
        orchestrator.add_listener(render)
        session = orchestrator.wake(machine, on_complete=lambda ok: ...)
        ...
        orchestrator.cancel()
    """

    def __init__(
        self,
        scheduler: TaskScheduler,
        prober: Prober,
        settings: Settings,
        fleet: Optional["FleetStatusPoller"] = None,
        sender: Optional[Callable[..., None]] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        """
        Args:
            scheduler: Control-thread scheduler
            prober: Background TCP prober
            settings: Timing and port settings
            fleet: Optional fleet poller to update after a successful wake
            sender: Magic packet transmitter (defaults to ``wol.send``)
            executor: Where the transmitter runs; a private thread pool by default
        """
        self._scheduler = scheduler
        self._prober = prober
        self._settings = settings
        self._fleet = fleet
        self._sender = sender or wol.send
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="wol")
        self._listeners: list[Callable[[WakeProgress], None]] = []

        self._session: Optional[WakeSession] = None
        self._on_complete: Optional[Callable[[bool], None]] = None
        self._timer: Optional[ScheduledTask] = None
        self._probe: Optional[ProbeAttempt] = None
        self._tick_started: Optional[datetime] = None

    # ── Public API ───────────────────────────────────────────────────────────

    @property
    def current(self) -> Optional[WakeSession]:
        return self._session

    def add_listener(self, listener: Callable[[WakeProgress], None]) -> None:
        """Register a callback receiving a ``WakeProgress`` after every change."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[WakeProgress], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def wake(
        self,
        machine: Machine,
        on_complete: Optional[Callable[[bool], None]] = None,
    ) -> WakeSession:
        """
        Start waking ``machine``.

        The machine record is snapshotted here; later edits to the record do
        not affect this session or its follow-up status check.

        Args:
            machine: Target machine
            on_complete: Called with True on success, False on timeout.
                Not called when the session is cancelled or superseded.

        Returns:
            The new session (its fields update as the wake progresses)
        """
        session = WakeSession(machine=machine.snapshot(), max_attempts=self._settings.max_attempts)
        self._scheduler.call_soon(self._begin, session, on_complete)
        return session

    def cancel(self) -> bool:
        """
        Request cancellation of the current session.

        The request is carried out on the control thread. If the session
        finishes there first (its last attempt resolves, or it succeeds), the
        request is dropped and the session keeps its final state.

        Returns:
            True if the request was queued; False when there is no session or
            it can no longer be cancelled
        """
        session = self._session
        if session is None or not session.can_cancel:
            return False
        self._scheduler.call_soon(self._cancel, session)
        return True

    # ── Control-thread steps ─────────────────────────────────────────────────

    def _begin(self, session: WakeSession, on_complete: Optional[Callable[[bool], None]]) -> None:
        if session.terminal:
            return
        previous = self._session
        if previous is not None and not previous.terminal:
            logger.info("Abandoning wake of %s for a new request", previous.machine.name)
            self._halt()
            self._transition(previous, WakeState.CANCELLED, "Cancelled")

        self._session = session
        self._on_complete = on_complete
        session.started_at = self._scheduler.now()
        machine = session.machine
        logger.info(
            "=== Waking %s (MAC %s, IP %s, port %d) ===",
            machine.name,
            machine.mac_address,
            machine.ipv4_address,
            machine.ping_port,
        )
        self._transition(session, WakeState.SENDING, "Sending magic packet...")
        self._executor.submit(self._send, machine)
        self._timer = self._scheduler.call_later(
            self._settings.initial_delay, self._start_waiting, session
        )

    def _send(self, machine: Machine) -> None:
        try:
            self._sender(
                machine.mac_address,
                machine.broadcast_address,
                port=self._settings.wol_port,
                secondary=self._settings.secondary_broadcast,
            )
        except Exception as exc:
            logger.error("WOL sender raised for %s: %s", machine.name, exc)

    def _start_waiting(self, session: WakeSession) -> None:
        if not self._is_live(session):
            return
        self._transition(
            session,
            WakeState.WAITING,
            f"Waiting for machine to respond... (Attempt 1/{session.max_attempts})",
        )
        self._timer = self._scheduler.call_later(self._settings.ping_interval, self._tick, session)

    def _tick(self, session: WakeSession) -> None:
        if not self._is_live(session):
            return
        self._timer = None
        session.attempts += 1
        self._tick_started = self._scheduler.now()
        self._transition(
            session, None, f"Pinging... (Attempt {session.attempts}/{session.max_attempts})"
        )
        machine = session.machine
        self._probe = self._prober.submit(
            machine.ipv4_address,
            machine.ping_port,
            self._probe_timeout(),
            partial(self._on_probe, session, session.attempts),
        )

    def _on_probe(self, session: WakeSession, attempt: int, reachable: bool) -> None:
        if not self._is_live(session):
            logger.debug("Discarding probe result %s for finished session", reachable)
            return
        self._probe = None

        if reachable:
            session.reachable = True
            self._finish(session, WakeState.SUCCESS, "Success! Machine is now live")
            return

        if attempt >= session.max_attempts:
            self._finish(
                session,
                WakeState.TIMED_OUT,
                f"Timeout: machine did not respond after {session.max_attempts} attempts",
            )
            return

        self._transition(
            session, None, f"Waiting for response... (Attempt {attempt}/{session.max_attempts})"
        )
        delay = self._settings.ping_interval
        if self._tick_started is not None:
            elapsed = (self._scheduler.now() - self._tick_started).total_seconds()
            delay = max(0.0, delay - elapsed)
        self._timer = self._scheduler.call_later(delay, self._tick, session)

    def _finish(self, session: WakeSession, state: WakeState, message: str) -> None:
        self._timer = None
        session.finished_at = self._scheduler.now()
        self._transition(session, state, message)
        logger.info(
            "Wake of %s finished: %s after %d attempt(s)",
            session.machine.name,
            state.value,
            session.attempts,
        )

        if state is WakeState.SUCCESS and self._fleet is not None:
            self._fleet.mark_reachable(session.machine.id, True)
            self._scheduler.call_later(
                self._settings.verify_delay, self._fleet.check_machine, session.machine
            )

        callback, self._on_complete = self._on_complete, None
        if callback:
            try:
                callback(state is WakeState.SUCCESS)
            except Exception as exc:
                logger.error("on_complete callback raised: %s", exc)

    def _cancel(self, session: WakeSession) -> None:
        if session is not self._session or not session.can_cancel:
            logger.debug("Cancel of %s dropped: session already finishing", session.machine.name)
            return
        self._halt()
        self._on_complete = None
        session.finished_at = self._scheduler.now()
        self._transition(session, WakeState.CANCELLED, "Cancelled")
        logger.info("Wake of %s cancelled by user", session.machine.name)

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _probe_timeout(self) -> float:
        # attempts run back to back, so one attempt may not outlast the cadence
        return min(self._settings.wake_timeout, self._settings.ping_interval)

    def _is_live(self, session: WakeSession) -> bool:
        return session is self._session and not session.terminal

    def _halt(self) -> None:
        timer, self._timer = self._timer, None
        if timer:
            timer.cancel()
        attempt, self._probe = self._probe, None
        if attempt:
            attempt.cancel()

    def _transition(self, session: WakeSession, state: Optional[WakeState], message: str) -> None:
        if state is not None:
            session.state = state
        session.status_message = message
        logger.debug("[%s] %s", session.machine.name, message)
        progress = session.progress()
        for listener in list(self._listeners):
            try:
                listener(progress)
            except Exception as exc:
                logger.error("Wake listener raised: %s", exc)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
