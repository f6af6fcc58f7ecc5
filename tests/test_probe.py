"""Tests for TCP reachability probing."""

import socket
import threading
import time
from typing import Iterator
from unittest.mock import MagicMock, patch

import pytest

from wakeondemand.core.machine import Machine
from wakeondemand.core.probe import ProbeAttempt, Prober, probe
from wakeondemand.scheduler.poller import FleetStatusPoller
from wakeondemand.scheduler.runner import BackgroundTaskScheduler

from conftest import FakeScheduler

_REAL_SOCKET = socket.socket


class _SlowNetworkSocket:
    """Hangs until its timeout for every host except localhost."""

    def __init__(self, *args: object) -> None:
        self._args = args
        self._timeout: float = 0.0
        self._real: socket.socket | None = None

    def settimeout(self, timeout: float) -> None:
        self._timeout = timeout

    def connect(self, address: tuple) -> None:
        if address[0] != "127.0.0.1":
            time.sleep(self._timeout)
            raise socket.timeout("timed out")
        self._real = _REAL_SOCKET(*self._args)
        self._real.settimeout(self._timeout)
        self._real.connect(address)

    def close(self) -> None:
        if self._real is not None:
            self._real.close()


@pytest.fixture
def listener() -> Iterator[int]:
    """A real TCP listener on localhost; yields its port."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(8)
    try:
        yield server.getsockname()[1]
    finally:
        server.close()


@pytest.fixture
def closed_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


class TestProbe:
    """Tests for the blocking probe function."""

    def test_reachable_when_port_listening(self, listener: int) -> None:
        assert probe("127.0.0.1", listener, timeout=2.0) is True

    def test_unreachable_when_port_closed(self, closed_port: int) -> None:
        assert probe("127.0.0.1", closed_port, timeout=2.0) is False

    @patch("wakeondemand.core.probe.socket.socket")
    def test_timeout_counts_as_unreachable(self, mock_socket: MagicMock) -> None:
        mock_socket.return_value.connect.side_effect = socket.timeout("timed out")

        assert probe("192.168.1.50", 22, timeout=0.5) is False
        mock_socket.return_value.settimeout.assert_called_once_with(0.5)
        mock_socket.return_value.close.assert_called_once()

    @patch("wakeondemand.core.probe.socket.socket", side_effect=OSError(24, "Too many open files"))
    def test_socket_creation_failure_is_unreachable(self, mock_socket: MagicMock) -> None:
        assert probe("192.168.1.50", 22) is False


class TestProbeAttempt:
    """Exactly-once resolution."""

    def test_first_resolution_wins(self) -> None:
        results: list[bool] = []
        attempt = ProbeAttempt("host", 22, 1.0, on_result=results.append)

        assert attempt.resolve(True) is True
        assert attempt.resolve(False) is False
        attempt.cancel()

        assert results == [True]
        assert attempt.result is True

    def test_cancel_resolves_false(self) -> None:
        results: list[bool] = []
        attempt = ProbeAttempt("host", 22, 1.0, on_result=results.append)

        attempt.cancel()
        attempt.cancel()

        assert results == [False]
        assert attempt.done

    def test_run_after_cancel_does_not_connect(self) -> None:
        attempt = ProbeAttempt("host", 22, 1.0)
        attempt.cancel()
        with patch("wakeondemand.core.probe.socket.socket") as mock_socket:
            attempt.run()
        mock_socket.assert_not_called()


class TestProber:
    """Tests for background probing marshalled through the scheduler."""

    def test_result_delivered_on_scheduler(self, listener: int) -> None:
        scheduler = FakeScheduler()
        prober = Prober(scheduler, max_workers=2)
        results: list[bool] = []

        prober.submit("127.0.0.1", listener, 2.0, results.append)
        prober.shutdown(wait=True)

        assert results == []  # not yet marshalled
        scheduler.advance(0)
        assert results == [True]
        assert scheduler.pending == 0  # deadline cancelled

    @patch("wakeondemand.core.probe.socket.socket")
    def test_deadline_resolves_false_once(self, mock_socket: MagicMock) -> None:
        started = threading.Event()
        release = threading.Event()

        def hang(addr: tuple) -> None:
            started.set()
            release.wait(5)

        mock_socket.return_value.connect.side_effect = hang

        scheduler = FakeScheduler()
        prober = Prober(scheduler, max_workers=1)
        results: list[bool] = []

        attempt = prober.submit("192.168.1.50", 22, 2.0, results.append)
        assert started.wait(5)
        scheduler.advance(1.9)
        assert results == []

        scheduler.advance(0.1)
        assert results == [False]

        # late connection success is ignored
        release.set()
        prober.shutdown(wait=True)
        scheduler.advance(0)
        assert results == [False]
        assert attempt.result is False

    @patch("wakeondemand.core.probe.socket.socket")
    def test_queued_probe_keeps_full_timeout(self, mock_socket: MagicMock) -> None:
        """A probe waiting for a free worker does not use up its deadline."""
        started = threading.Event()
        release = threading.Event()

        def hang(addr: tuple) -> None:
            started.set()
            release.wait(5)

        mock_socket.return_value.connect.side_effect = hang

        scheduler = FakeScheduler()
        prober = Prober(scheduler, max_workers=1)
        results: dict[str, bool] = {}

        first = prober.submit("192.168.1.50", 22, 2.0, lambda r: results.update(first=r))
        second = prober.submit("192.168.1.51", 22, 2.0, lambda r: results.update(second=r))
        assert started.wait(5)
        scheduler.advance(0)
        scheduler.advance(2.0)

        assert results == {"first": False}
        assert first.done
        assert not second.done

        release.set()
        prober.shutdown(wait=True)
        assert second.done


class TestFleetCheckWithBusyPool:
    """More machines than probe workers."""

    @patch("wakeondemand.core.probe.socket.socket", new=lambda *args: _SlowNetworkSocket(*args))
    def test_listening_host_reported_online(self, listener: int) -> None:
        scheduler = BackgroundTaskScheduler()
        prober = Prober(scheduler, max_workers=2)
        poller = FleetStatusPoller(scheduler, prober, timeout=0.5)
        fleet = [
            Machine(
                id=f"dark-{i}",
                name=f"dark-{i}",
                mac_address=f"00:11:22:33:44:{i:02X}",
                ipv4_address=f"192.0.2.{i + 1}",
            )
            for i in range(6)
        ]
        fleet.append(
            Machine(
                id="up",
                name="up",
                mac_address="00:11:22:33:44:FF",
                ipv4_address="127.0.0.1",
                ping_port=listener,
            )
        )

        scheduler.start()
        try:
            check_pass = poller.check_all(fleet)
            assert check_pass.wait(timeout=10)
        finally:
            scheduler.stop()
            prober.shutdown(wait=True)

        assert check_pass.results["up"] is True
        assert not any(check_pass.results[f"dark-{i}"] for i in range(6))
        assert poller.status_for("up").reachable is True
