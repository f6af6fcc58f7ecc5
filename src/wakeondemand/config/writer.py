"""Config write-back (YAML) and machine export (JSON)."""

import json
import os
from pathlib import Path
from typing import Any, Optional

import yaml

from wakeondemand.core.machine import Machine

# JSON export keys, in output order
_EXPORT_KEYS = (
    ("id", "id"),
    ("name", "name"),
    ("macAddress", "mac_address"),
    ("ipv4Address", "ipv4_address"),
    ("mask", "mask"),
    ("broadcastAddress", "broadcast_address"),
    ("description", "description"),
    ("pingPort", "ping_port"),
)


def machine_to_raw(machine: Machine) -> dict[str, Any]:
    """Turn a Machine into the mapping ``machine_from_raw`` reads back."""
    raw: dict[str, Any] = {
        "id": machine.id,
        "name": machine.name,
        "mac_address": machine.mac_address,
        "ipv4_address": machine.ipv4_address,
        "mask": machine.mask,
        "broadcast_address": machine.broadcast_address,
        "ping_port": machine.ping_port,
    }
    if machine.description:
        raw["description"] = machine.description
    return raw


def build_config_dict(
    machines: list[Machine],
    settings: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """
    Assemble a full config mapping.

    Args:
        machines: Fleet to store
        settings: Raw ``settings`` section to carry over unchanged (omitted when empty)

    Returns:
        Mapping ready for ``write_config``
    """
    config: dict[str, Any] = {"settings": settings} if settings else {}
    config["machines"] = [machine_to_raw(m) for m in machines]
    return config


def write_config(path: Path, config: dict[str, Any]) -> None:
    """
    Replace ``path`` with ``config`` serialized as YAML.

    The document is written to ``<path>.tmp`` next to the target and moved
    into place with ``os.replace``, so readers see either the old file or
    the new one.

    Raises:
        OSError: If the file cannot be written; the temp file is removed first
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    text = yaml.safe_dump(config, default_flow_style=False, allow_unicode=True, sort_keys=False)
    try:
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def export_machines(path: Path, machines: list[Machine]) -> None:
    """Write ``machines`` as a JSON array of camelCase records."""
    records = [{key: getattr(m, attr) for key, attr in _EXPORT_KEYS} for m in machines]
    path.write_text(json.dumps(records, indent=2) + "\n", encoding="utf-8")
