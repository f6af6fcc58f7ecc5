"""IPv4 address, subnet mask and broadcast helpers."""

import ipaddress
import logging
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_MASK = "255.255.255.0"

# Most specific prefix first
_PRIVATE_RANGES = [
    (ipaddress.IPv4Network("192.168.0.0/16"), "255.255.255.0"),
    (ipaddress.IPv4Network("172.16.0.0/12"), "255.255.0.0"),
    (ipaddress.IPv4Network("10.0.0.0/8"), "255.0.0.0"),
]


def is_valid_ipv4(value: str) -> bool:
    """Return True for a dotted-quad IPv4 address such as ``192.168.1.50``."""
    try:
        ipaddress.IPv4Address(value)
    except (ipaddress.AddressValueError, ValueError):
        return False
    return True


def is_valid_subnet_mask(value: str) -> bool:
    """Return True if ``value`` is a dotted-quad mask of contiguous 1-bits."""
    if not is_valid_ipv4(value):
        return False
    bits = int(ipaddress.IPv4Address(value))
    inverted = ~bits & 0xFFFFFFFF
    # contiguous ones followed by zeros <=> inverted + 1 is a power of two
    return (inverted + 1) & inverted == 0


def _octets(value: str) -> list[int]:
    return list(ipaddress.IPv4Address(value).packed)


def calculate_broadcast(ip: str, mask: str) -> Optional[str]:
    """
    Compute ``(ip AND mask) OR (NOT mask)`` bytewise.

    Returns:
        Broadcast address, or None if either input is not a valid IPv4 string
    """
    if not (is_valid_ipv4(ip) and is_valid_ipv4(mask)):
        return None
    parts = [(i & m) | (~m & 0xFF) for i, m in zip(_octets(ip), _octets(mask))]
    return ".".join(str(p) for p in parts)


def calculate_network(ip: str, mask: str) -> Optional[str]:
    """Compute the network address ``ip AND mask``, or None for invalid input."""
    if not (is_valid_ipv4(ip) and is_valid_ipv4(mask)):
        return None
    parts = [i & m for i, m in zip(_octets(ip), _octets(mask))]
    return ".".join(str(p) for p in parts)


def is_valid_broadcast(ip: str, mask: str, broadcast: str) -> bool:
    """
    Check that ``broadcast`` is the broadcast address of ``ip``/``mask``.

    For ``192.168.1.50``/``255.255.255.0`` only ``192.168.1.255`` passes.
    """
    if not (is_valid_ipv4(ip) and is_valid_subnet_mask(mask) and is_valid_ipv4(broadcast)):
        return False
    return calculate_broadcast(ip, mask) == broadcast


def suggest_network_settings(ip: str) -> Optional[tuple[str, str]]:
    """
    Guess a mask and broadcast for an address from its private range.

    10.x gets /8, 172.16-31.x gets /16, 192.168.x gets /24; anything else
    defaults to /24.

    Returns:
        ``(mask, broadcast)`` or None if ``ip`` is not a valid IPv4 address
    """
    if not is_valid_ipv4(ip):
        return None
    address = ipaddress.IPv4Address(ip)
    mask = DEFAULT_MASK
    for network, candidate in _PRIVATE_RANGES:
        if address in network:
            mask = candidate
            break
    broadcast = calculate_broadcast(ip, mask)
    logger.debug("Suggested mask %s / broadcast %s for %s", mask, broadcast, ip)
    return (mask, broadcast) if broadcast else None
