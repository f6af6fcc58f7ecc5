"""YAML configuration loader and validator."""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from wakeondemand.config.settings import CHECK_INTERVALS, Settings
from wakeondemand.core.machine import Machine
from wakeondemand.core.network import (
    is_valid_broadcast,
    is_valid_ipv4,
    is_valid_subnet_mask,
    suggest_network_settings,
)
from wakeondemand.core.packet import InvalidMacFormat, normalize_mac

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised for invalid or missing configuration."""


def load_config(path: Path) -> Optional[dict[str, Any]]:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the YAML config file

    Returns:
        Parsed configuration dictionary, or None if file is empty

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
    """
    with open(path) as f:
        result: Optional[dict[str, Any]] = yaml.safe_load(f)
        return result


def _valid_port(value: Any) -> bool:
    try:
        port = int(value)
    except (TypeError, ValueError):
        return False
    return 1 <= port <= 65535


def validate_machine(raw: dict[str, Any], prefix: str = "machine") -> list[str]:
    """Validate one raw machine mapping. Returns a list of error messages."""
    errors: list[str] = []
    for field in ("name", "mac_address", "ipv4_address"):
        if not raw.get(field):
            errors.append(f"{prefix}: missing required field '{field}'")

    mac = raw.get("mac_address")
    if mac:
        try:
            normalize_mac(str(mac))
        except InvalidMacFormat as exc:
            errors.append(f"{prefix}: {exc}")

    ip = raw.get("ipv4_address")
    if ip and not is_valid_ipv4(str(ip)):
        errors.append(f"{prefix}: invalid ipv4_address '{ip}'")

    mask = raw.get("mask")
    if mask and not is_valid_subnet_mask(str(mask)):
        errors.append(f"{prefix}: invalid mask '{mask}'")

    broadcast = raw.get("broadcast_address")
    if broadcast:
        if not is_valid_ipv4(str(broadcast)):
            errors.append(f"{prefix}: invalid broadcast_address '{broadcast}'")
        elif (
            mask
            and ip
            and is_valid_ipv4(str(ip))
            and is_valid_subnet_mask(str(mask))
            and not is_valid_broadcast(str(ip), str(mask), str(broadcast))
        ):
            errors.append(
                f"{prefix}: broadcast_address '{broadcast}' does not match {ip}/{mask}"
            )

    if "ping_port" in raw and not _valid_port(raw["ping_port"]):
        errors.append(f"{prefix}: ping_port must be between 1 and 65535")
    return errors


def validate_config(config: dict[str, Any]) -> list[str]:
    """
    Validate a loaded configuration dictionary.

    Returns:
        List of validation error messages (empty list = valid)
    """
    errors: list[str] = []

    if not isinstance(config, dict):
        return ["Config root must be a YAML mapping"]

    settings = config.get("settings") or {}
    if not isinstance(settings, dict):
        errors.append("'settings' must be a mapping")
        settings = {}
    if "check_interval" in settings and settings["check_interval"] not in CHECK_INTERVALS:
        allowed = ", ".join(str(i) for i in CHECK_INTERVALS)
        errors.append(f"settings: check_interval must be one of {allowed}")
    if "wol_port" in settings and not _valid_port(settings["wol_port"]):
        errors.append("settings: wol_port must be between 1 and 65535")
    if "max_attempts" in settings:
        try:
            if int(settings["max_attempts"]) < 1:
                errors.append("settings: max_attempts must be at least 1")
        except (TypeError, ValueError):
            errors.append("settings: max_attempts must be an integer")

    machines = config.get("machines", [])
    if machines is None:
        return errors
    if not isinstance(machines, list):
        errors.append("'machines' must be a list")
        return errors

    seen_ids: set[str] = set()
    for i, raw in enumerate(machines):
        prefix = f"machines[{i}]"
        if not isinstance(raw, dict):
            errors.append(f"{prefix}: must be a mapping")
            continue
        errors.extend(validate_machine(raw, prefix))
        machine_id = raw.get("id")
        if machine_id:
            if str(machine_id) in seen_ids:
                errors.append(f"{prefix}: duplicate id '{machine_id}'")
            seen_ids.add(str(machine_id))

    return errors


def settings_from_config(config: dict[str, Any]) -> Settings:
    """Build the runtime Settings from the ``settings`` section of a config dict."""
    raw = config.get("settings") or {}
    defaults = Settings()
    return Settings(
        wol_port=int(raw.get("wol_port", defaults.wol_port)),
        secondary_broadcast=bool(raw.get("secondary_broadcast", defaults.secondary_broadcast)),
        status_timeout=float(raw.get("status_timeout", defaults.status_timeout)),
        wake_timeout=float(raw.get("wake_timeout", defaults.wake_timeout)),
        max_attempts=int(raw.get("max_attempts", defaults.max_attempts)),
        ping_interval=float(raw.get("ping_interval", defaults.ping_interval)),
        initial_delay=float(raw.get("initial_delay", defaults.initial_delay)),
        verify_delay=float(raw.get("verify_delay", defaults.verify_delay)),
        check_interval=int(raw.get("check_interval", defaults.check_interval)),
        probe_workers=int(raw.get("probe_workers", defaults.probe_workers)),
        notifications=dict(raw.get("notifications") or {}),
    )


def machine_from_raw(raw: dict[str, Any]) -> Machine:
    """
    Construct a Machine from a raw config mapping.

    Missing mask/broadcast are filled in from the address's private range.
    """
    ip = str(raw["ipv4_address"])
    mask = raw.get("mask")
    broadcast = raw.get("broadcast_address")
    if not mask or not broadcast:
        suggested = suggest_network_settings(ip)
        if suggested:
            mask = mask or suggested[0]
            broadcast = broadcast or suggested[1]

    kwargs: dict[str, Any] = {}
    if raw.get("id"):
        kwargs["id"] = str(raw["id"])
    return Machine(
        name=str(raw["name"]),
        mac_address=str(raw["mac_address"]),
        ipv4_address=ip,
        mask=str(mask or "255.255.255.0"),
        broadcast_address=str(broadcast or "255.255.255.255"),
        description=str(raw.get("description", "")),
        ping_port=int(raw.get("ping_port", 22)),
        **kwargs,
    )


def machines_from_config(config: dict[str, Any]) -> list[Machine]:
    """
    Construct the machine list from a validated config dict.

    Args:
        config: Parsed and validated config dictionary

    Returns:
        List of Machine instances
    """
    return [machine_from_raw(raw) for raw in config.get("machines") or []]


def import_machines(path: Path) -> list[Machine]:
    """
    Read machines from a JSON export (array of camelCase records).

    Raises:
        ConfigError: If the file is not a JSON array of machine records
    """
    with open(path, encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"{path}: invalid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise ConfigError(f"{path}: expected a JSON array of machines")

    machines: list[Machine] = []
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            raise ConfigError(f"{path}: entry {i} is not an object")
        raw = {
            "id": item.get("id"),
            "name": item.get("name"),
            "mac_address": item.get("macAddress"),
            "ipv4_address": item.get("ipv4Address"),
            "mask": item.get("mask"),
            "broadcast_address": item.get("broadcastAddress"),
            "description": item.get("description", ""),
            "ping_port": item.get("pingPort", 22),
        }
        errors = validate_machine(raw, f"entry {i}")
        if errors:
            raise ConfigError("; ".join(errors))
        machines.append(machine_from_raw(raw))
    logger.info("Imported %d machine(s) from %s", len(machines), path)
    return machines
