"""MAC address parsing and Wake-on-LAN magic packet construction."""

import re

MAGIC_HEADER = b"\xff" * 6
MAC_REPEATS = 16
PACKET_SIZE = len(MAGIC_HEADER) + 6 * MAC_REPEATS  # 102

_SEPARATORS_RE = re.compile(r"[:\-. ]")
_HEX_RE = re.compile(r"^[0-9a-f]{12}$")


class InvalidMacFormat(ValueError):
    """Raised when a MAC address string cannot be turned into six bytes."""

    def __init__(self, mac: str, reason: str, detail: str) -> None:
        super().__init__(f"Invalid MAC address '{mac}': {detail}")
        self.mac = mac
        # "length" or "character"
        self.reason = reason


def normalize_mac(mac: str) -> str:
    """
    Strip separators and lower-case a MAC address.

    Accepts ``:``, ``-``, ``.`` and space as separators in any mixture, so
    ``AA:BB:CC:DD:EE:FF``, ``aa-bb-cc-dd-ee-ff`` and ``aabb.ccdd.eeff`` all
    normalize to ``aabbccddeeff``.

    Raises:
        InvalidMacFormat: If the result is not exactly 12 hex characters
    """
    cleaned = _SEPARATORS_RE.sub("", mac).lower()
    if len(cleaned) != 12:
        raise InvalidMacFormat(
            mac, "length", f"expected 12 hex characters, got {len(cleaned)}"
        )
    if not _HEX_RE.match(cleaned):
        raise InvalidMacFormat(mac, "character", "contains non-hexadecimal characters")
    return cleaned


def parse_mac(mac: str) -> bytes:
    """
    Parse a MAC address string into its 6 raw bytes.

    Args:
        mac: MAC address in any common notation

    Returns:
        6-byte ``bytes`` object

    Raises:
        InvalidMacFormat: If the address is malformed
    """
    return bytes.fromhex(normalize_mac(mac))


def format_mac(mac_bytes: bytes) -> str:
    """Render 6 raw bytes as ``AA:BB:CC:DD:EE:FF``."""
    return mac_bytes.hex(":").upper()


def build_magic_packet(mac_bytes: bytes) -> bytes:
    """
    Build the 102-byte magic packet for a parsed MAC address.

    Layout: six ``0xFF`` synchronization bytes followed by the MAC repeated
    16 times. No password suffix.
    """
    if len(mac_bytes) != 6:
        raise ValueError(f"MAC must be 6 bytes, got {len(mac_bytes)}")
    return MAGIC_HEADER + bytes(mac_bytes) * MAC_REPEATS
