"""TCP reachability probing."""

import logging
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from wakeondemand.scheduler.runner import ScheduledTask, TaskScheduler

logger = logging.getLogger(__name__)

STATUS_TIMEOUT = 2.0
WAKE_TIMEOUT = 5.0


class ProbeAttempt:
    """
    A single bare TCP connect to ``host:port``.

    Resolves exactly once: True when the connection is established, False on
    a connection error, on cancellation, or when the deadline passes. Any
    later transition on the same attempt is ignored.
    """

    def __init__(
        self,
        host: str,
        port: int,
        timeout: float,
        on_result: Optional[Callable[[bool], None]] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self.result: Optional[bool] = None
        self._on_result = on_result
        self._lock = threading.Lock()
        self._sock: Optional[socket.socket] = None

    @property
    def done(self) -> bool:
        return self.result is not None

    def run(self) -> None:
        """Perform the connect (blocking, meant for a worker thread)."""
        if self.done:
            return
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            self._sock = sock
            sock.settimeout(self.timeout)
            sock.connect((self.host, self.port))
        except OSError as exc:
            logger.debug("Probe %s:%d failed: %s", self.host, self.port, exc)
            self.resolve(False)
        else:
            logger.debug("Probe %s:%d connected", self.host, self.port)
            self.resolve(True)
        finally:
            self._close()

    def resolve(self, reachable: bool) -> bool:
        """Deliver the result once. Returns False if the attempt was already resolved."""
        with self._lock:
            if self.result is not None:
                return False
            self.result = reachable
        if self._on_result:
            self._on_result(reachable)
        return True

    def cancel(self) -> None:
        """Abandon the attempt; resolves False if still pending."""
        if self.resolve(False):
            logger.debug("Probe %s:%d abandoned", self.host, self.port)
        self._close()

    def _close(self) -> None:
        sock, self._sock = self._sock, None
        if sock is None:
            return
        try:
            sock.close()
        except OSError as exc:
            logger.debug("Closing probe socket raised: %s", exc)


def probe(host: str, port: int, timeout: float = STATUS_TIMEOUT) -> bool:
    """
    Check whether ``host`` accepts TCP connections on ``port`` (blocking).

    Args:
        host: Hostname or IPv4 address
        port: TCP port
        timeout: Seconds before the attempt counts as failed

    Returns:
        True if a connection was established within ``timeout``
    """
    attempt = ProbeAttempt(host, port, timeout)
    attempt.run()
    return bool(attempt.result)


class Prober:
    """
    Runs probes on background worker threads.

    Results are handed back through ``scheduler.call_soon`` so callbacks run
    on the scheduler's control thread. The deadline is armed on the same
    scheduler, which lets tests drive timeouts with a fake clock.

    A probe's deadline starts when a worker picks it up, not when it is
    submitted, so probes queued behind a busy pool keep their full timeout.
    """

    def __init__(self, scheduler: TaskScheduler, max_workers: int = 16) -> None:
        self._scheduler = scheduler
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="probe")

    def submit(
        self,
        host: str,
        port: int,
        timeout: float,
        on_result: Callable[[bool], None],
    ) -> ProbeAttempt:
        """
        Queue a probe and return its handle.

        Args:
            host: Hostname or IPv4 address
            port: TCP port
            timeout: Deadline in seconds, counted from the start of the connect
            on_result: Called once on the control thread with the outcome
        """
        deadline: list[ScheduledTask] = []

        def _arm() -> None:
            if not attempt.done:
                deadline.append(self._scheduler.call_later(timeout, attempt.cancel))

        def _finish(reachable: bool) -> None:
            for task in deadline:
                task.cancel()
            on_result(reachable)

        def _work() -> None:
            if attempt.done:
                return
            self._scheduler.call_soon(_arm)
            attempt.run()

        attempt = ProbeAttempt(
            host,
            port,
            timeout,
            on_result=lambda reachable: self._scheduler.call_soon(_finish, reachable),
        )
        self._executor.submit(_work)
        return attempt

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
