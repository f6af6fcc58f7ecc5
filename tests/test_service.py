"""Tests for WakeOnDemand wiring."""

import socket
import threading
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml

from conftest import FakeScheduler
from wakeondemand.config.loader import ConfigError
from wakeondemand.config.settings import Settings
from wakeondemand.core.machine import Machine
from wakeondemand.core.wake import WakeState
from wakeondemand.service import WakeOnDemand

CONFIG = {
    "settings": {"check_interval": 60, "max_attempts": 5},
    "machines": [
        {
            "id": "nas-1",
            "name": "NAS",
            "mac_address": "AA:BB:CC:DD:EE:FF",
            "ipv4_address": "192.168.1.50",
        },
        {
            "id": "pc-1",
            "name": "desk",
            "mac_address": "00:11:22:33:44:55",
            "ipv4_address": "192.168.1.60",
            "ping_port": 3389,
        },
    ],
}


@pytest.fixture
def listener() -> Iterator[int]:
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.bind(("127.0.0.1", 0))
    srv.listen(8)
    yield srv.getsockname()[1]
    srv.close()


class TestFromConfig:
    def test_builds_components_from_settings(self) -> None:
        app = WakeOnDemand.from_config(CONFIG, scheduler=FakeScheduler())
        try:
            assert app.settings.max_attempts == 5
            assert app.poller.interval == 60
            assert [m.id for m in app.machines] == ["nas-1", "pc-1"]
        finally:
            app.stop()

    def test_invalid_config_raises(self) -> None:
        with pytest.raises(ConfigError, match="check_interval"):
            WakeOnDemand.from_config({"settings": {"check_interval": 7}})

    def test_from_config_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump(CONFIG))
        app = WakeOnDemand.from_config_file(path, scheduler=FakeScheduler())
        try:
            assert len(app.machines) == 2
        finally:
            app.stop()

    def test_empty_file_gives_empty_fleet(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("")
        app = WakeOnDemand.from_config_file(path, scheduler=FakeScheduler())
        try:
            assert app.machines == []
            assert app.settings == Settings()
        finally:
            app.stop()


class TestFind:
    @pytest.fixture
    def app(self) -> Iterator[WakeOnDemand]:
        app = WakeOnDemand.from_config(CONFIG, scheduler=FakeScheduler())
        yield app
        app.stop()

    def test_by_id(self, app: WakeOnDemand) -> None:
        machine = app.find("pc-1")
        assert machine is not None and machine.name == "desk"

    def test_by_name_case_insensitive(self, app: WakeOnDemand) -> None:
        machine = app.find("nas")
        assert machine is not None and machine.id == "nas-1"

    def test_unknown(self, app: WakeOnDemand) -> None:
        assert app.find("ghost") is None


class TestWakeNotifications:
    @patch("wakeondemand.service.send_wake_notification")
    @patch("wakeondemand.core.wol.send")
    def test_notifies_once_on_success(
        self, mock_send: MagicMock, mock_notify: MagicMock, listener: int
    ) -> None:
        settings = Settings(
            initial_delay=0,
            ping_interval=0.2,
            max_attempts=3,
            wake_timeout=0.5,
            verify_delay=60,
            notifications={"ntfy_topic": "wake"},
        )
        machine = Machine(
            id="local", name="local", mac_address="AA:BB:CC:DD:EE:FF",
            ipv4_address="127.0.0.1", ping_port=listener,
        )
        app = WakeOnDemand(settings, [machine])
        done = threading.Event()
        outcome: list[bool] = []

        def on_complete(ok: bool) -> None:
            outcome.append(ok)
            done.set()

        app.start()
        try:
            app.wake(machine, on_complete=on_complete)
            assert done.wait(timeout=10)
        finally:
            app.stop(wait=True)

        assert outcome == [True]
        mock_send.assert_called_once()
        mock_notify.assert_called_once()
        progress, notified_machine, notif_config = mock_notify.call_args[0]
        assert progress.state is WakeState.SUCCESS
        assert notified_machine.id == "local"
        assert notif_config == {"ntfy_topic": "wake"}

    @patch("wakeondemand.service.send_wake_notification")
    @patch("wakeondemand.core.wol.send")
    def test_cancelled_wake_is_not_reported(
        self, mock_send: MagicMock, mock_notify: MagicMock
    ) -> None:
        scheduler = FakeScheduler()
        app = WakeOnDemand(Settings(notifications={"ntfy_topic": "wake"}), [], scheduler=scheduler)
        try:
            app.orchestrator.wake(
                Machine(name="x", mac_address="AA:BB:CC:DD:EE:FF", ipv4_address="192.0.2.1")
            )
            scheduler.advance(0)
            app.orchestrator.cancel()
            scheduler.advance(0)
        finally:
            app.stop()
        mock_notify.assert_not_called()
