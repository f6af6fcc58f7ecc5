"""Wake-on-LAN functionality."""

import logging
import socket

from wakeonlan import send_magic_packet

from wakeondemand.core.network import is_valid_ipv4
from wakeondemand.core.packet import InvalidMacFormat, build_magic_packet, format_mac, parse_mac

logger = logging.getLogger(__name__)

UNIVERSAL_BROADCAST = "255.255.255.255"
DEFAULT_PORT = 9
SEND_TIMEOUT = 1.0


def send(
    mac_address: str,
    broadcast_address: str,
    port: int = DEFAULT_PORT,
    secondary: bool = True,
) -> None:
    """
    Send a Wake-on-LAN magic packet to wake a remote machine.

    Stages:
        1. UDP broadcast to ``broadcast_address:port``
        2. If that fails, once more to ``255.255.255.255:port``
        3. Regardless of 1-2, a redundant send through the ``wakeonlan``
           library to the universal broadcast address (``secondary=True``)

    WoL gives no delivery confirmation, so nothing is returned and no
    error reaches the caller: a malformed MAC is logged and the send is
    skipped, socket errors are logged per stage.

    Args:
        mac_address: MAC address of the target machine (e.g., "AA:BB:CC:DD:EE:FF")
        broadcast_address: Subnet broadcast address (e.g., "192.168.1.255")
        port: UDP port for the WOL packet (default: 9)
        secondary: Also send through the wakeonlan library
    """
    logger.info("Sending WOL magic packet to %s via %s:%d", mac_address, broadcast_address, port)
    try:
        mac_bytes = parse_mac(mac_address)
    except InvalidMacFormat as exc:
        logger.error("Not sending WOL packet: %s", exc)
        return

    packet = build_magic_packet(mac_bytes)
    logger.debug("Magic packet for %s is %d bytes", format_mac(mac_bytes), len(packet))

    if not _send_udp(packet, broadcast_address, port):
        logger.info("Primary send failed, falling back to %s:%d", UNIVERSAL_BROADCAST, port)
        _send_udp(packet, UNIVERSAL_BROADCAST, port)

    if secondary:
        _send_secondary(format_mac(mac_bytes), port)


def _send_udp(packet: bytes, host: str, port: int) -> bool:
    """Send one datagram on a broadcast-enabled socket; True only if every byte went out."""
    if not is_valid_ipv4(host):
        logger.warning("Invalid broadcast address '%s'", host)
        return False
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.settimeout(SEND_TIMEOUT)
            sent = sock.sendto(packet, (host, port))
    except OSError as exc:
        logger.warning("UDP send to %s:%d failed: %s", host, port, exc)
        return False
    if sent != len(packet):
        logger.warning("UDP send to %s:%d wrote %d of %d bytes", host, port, sent, len(packet))
        return False
    logger.debug("Sent %d bytes to %s:%d", sent, host, port)
    return True


def _send_secondary(mac: str, port: int) -> None:
    try:
        send_magic_packet(mac, ip_address=UNIVERSAL_BROADCAST, port=port)
        logger.debug("Secondary WOL packet sent to %s:%d", UNIVERSAL_BROADCAST, port)
    except OSError as exc:
        logger.warning("Secondary WOL send failed: %s", exc)
