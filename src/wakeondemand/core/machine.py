"""Machine records as handed to the wake and status engine."""

import uuid
from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class Machine:
    """A registered machine that can be woken and probed."""

    name: str
    mac_address: str
    ipv4_address: str
    mask: str = "255.255.255.0"
    broadcast_address: str = "255.255.255.255"
    description: str = ""
    # TCP port used for reachability checks (22 for SSH, 3389 for RDP, …)
    ping_port: int = 22
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def snapshot(self) -> "Machine":
        """Return a detached copy, used to pin a record for the lifetime of a wake session."""
        return replace(self)
