"""Runtime settings shared by the wake and status engine."""

from dataclasses import dataclass, field
from typing import Any

# Fleet status poll intervals offered to the user, in seconds
CHECK_INTERVALS = (30, 60, 120, 300, 600, 1800)


@dataclass(frozen=True)
class Settings:
    """
    Tunables for sending, probing and polling.

    Built once at startup (see ``settings_from_config``) and passed to each
    component that needs it.
    """

    wol_port: int = 9
    secondary_broadcast: bool = True
    status_timeout: float = 2.0
    wake_timeout: float = 5.0
    max_attempts: int = 30
    ping_interval: float = 2.0
    initial_delay: float = 1.0
    # Delay before re-checking a machine through the fleet poller after a successful wake
    verify_delay: float = 8.0
    check_interval: int = 120
    probe_workers: int = 16
    notifications: dict[str, Any] = field(default_factory=dict)

    @property
    def worst_case_wake_seconds(self) -> float:
        return self.initial_delay + self.max_attempts * self.ping_interval
