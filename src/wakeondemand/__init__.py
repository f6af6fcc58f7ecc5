"""WakeOnDemand: wake machines on the LAN and verify they came up."""

__version__ = "0.1.0"
