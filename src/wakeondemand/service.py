"""Wiring of the wake and status engine for one session."""

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Optional

from wakeondemand.config.loader import (
    ConfigError,
    load_config,
    machines_from_config,
    settings_from_config,
    validate_config,
)
from wakeondemand.config.settings import Settings
from wakeondemand.core.machine import Machine
from wakeondemand.core.probe import Prober
from wakeondemand.core.wake import (
    WakeOrchestrator,
    WakeProgress,
    WakeSession,
    WakeState,
)
from wakeondemand.notifications.notify import send_wake_notification
from wakeondemand.scheduler.poller import FleetStatusPoller
from wakeondemand.scheduler.runner import BackgroundTaskScheduler, TaskScheduler

logger = logging.getLogger(__name__)


class WakeOnDemand:
    """
    Owns the scheduler, prober, fleet poller and wake orchestrator.

    Constructed once at startup with explicit settings; components receive
    their collaborators from here rather than reaching for globals.

    Usage::

        app = WakeOnDemand.from_config_file(Path("config.yaml"))
        app.start()
        app.poller.start(app.machines, app.settings.check_interval)
        app.wake(app.find("nas"))
        ...
        app.stop()
    """

    def __init__(
        self,
        settings: Settings,
        machines: Optional[list[Machine]] = None,
        scheduler: Optional[TaskScheduler] = None,
    ) -> None:
        self.settings = settings
        self.machines: list[Machine] = list(machines or [])
        self.scheduler = scheduler or BackgroundTaskScheduler()
        self.prober = Prober(self.scheduler, max_workers=settings.probe_workers)
        self.poller = FleetStatusPoller(
            self.scheduler,
            self.prober,
            timeout=settings.status_timeout,
            interval=settings.check_interval,
        )
        self.orchestrator = WakeOrchestrator(
            self.scheduler, self.prober, settings, fleet=self.poller
        )
        self._notifier = ThreadPoolExecutor(max_workers=1, thread_name_prefix="notify")
        self.orchestrator.add_listener(self._notify_on_finish)

    @classmethod
    def from_config(cls, config: dict[str, Any], **kwargs: Any) -> "WakeOnDemand":
        errors = validate_config(config)
        if errors:
            raise ConfigError("; ".join(errors))
        return cls(settings_from_config(config), machines_from_config(config), **kwargs)

    @classmethod
    def from_config_file(cls, path: Path, **kwargs: Any) -> "WakeOnDemand":
        config = load_config(path) or {}
        return cls.from_config(config, **kwargs)

    def find(self, name_or_id: str) -> Optional[Machine]:
        """Look a machine up by id, then by case-insensitive name."""
        for machine in self.machines:
            if machine.id == name_or_id:
                return machine
        wanted = name_or_id.lower()
        return next((m for m in self.machines if m.name.lower() == wanted), None)

    def wake(
        self, machine: Machine, on_complete: Optional[Callable[[bool], None]] = None
    ) -> WakeSession:
        return self.orchestrator.wake(machine, on_complete=on_complete)

    def _notify_on_finish(self, progress: WakeProgress) -> None:
        if not progress.terminal or progress.state is WakeState.CANCELLED:
            return
        if not self.settings.notifications:
            return
        session = self.orchestrator.current
        if session is None or session.machine.id != progress.machine_id:
            return
        # runs on the control thread; keep network I/O off it
        self._notifier.submit(
            send_wake_notification, progress, session.machine, self.settings.notifications
        )

    def start(self) -> None:
        self.scheduler.start()

    def stop(self, wait: bool = False) -> None:
        self.scheduler.stop(wait=wait)
        self.orchestrator.shutdown(wait=wait)
        self.prober.shutdown(wait=wait)
        self._notifier.shutdown(wait=wait)
        logger.debug("WakeOnDemand stopped")
