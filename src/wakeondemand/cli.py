"""Command-line interface for WakeOnDemand (wakeondemand)."""

import logging
import sys
import threading
import time
from pathlib import Path
from typing import Optional

import click

from wakeondemand import __version__
from wakeondemand.config.settings import CHECK_INTERVALS

DEFAULT_CONFIG = Path.home() / ".config" / "wakeondemand" / "config.yaml"

EXIT_TIMED_OUT = 2
EXIT_CANCELLED = 130


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_cfg(config: str, must_exist: bool = True) -> tuple[dict, list]:
    from wakeondemand.config.loader import load_config, machines_from_config, validate_config

    path = Path(config)
    if not path.exists():
        if not must_exist:
            return {}, []
        click.echo(f"Config file not found: {path}", err=True)
        sys.exit(1)
    raw = load_config(path) or {}
    errors = validate_config(raw)
    if errors:
        click.echo("Config validation errors:", err=True)
        for e in errors:
            click.echo(f"  • {e}", err=True)
        sys.exit(1)
    return raw, machines_from_config(raw)


def _save_cfg(config: str, raw: dict, machines: list) -> None:
    from wakeondemand.config.writer import build_config_dict, write_config

    write_config(Path(config), build_config_dict(machines, settings=raw.get("settings")))


def _build_app(raw: dict, machines: list):  # type: ignore[no-untyped-def]
    from wakeondemand.config.loader import settings_from_config
    from wakeondemand.service import WakeOnDemand

    return WakeOnDemand(settings_from_config(raw), machines)


def _pick(machines: list, name: str):  # type: ignore[no-untyped-def]
    wanted = name.lower()
    match = next((m for m in machines if m.id == name or m.name.lower() == wanted), None)
    if match is None:
        click.echo(f"Machine '{name}' not found in config.", err=True)
        sys.exit(1)
    return match


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=__version__, prog_name="wakeondemand")
@click.option(
    "--config",
    "-c",
    default=str(DEFAULT_CONFIG),
    envvar="WAKEONDEMAND_CONFIG",
    show_default=True,
    help="Path to wakeondemand config.yaml",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config: str, verbose: bool) -> None:
    """WakeOnDemand: wake machines on the LAN and watch them come online."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# ── machines group ────────────────────────────────────────────────────────────


@main.group()
def machines() -> None:
    """Manage registered machines."""


@machines.command("list")
@click.pass_context
def machines_list(ctx: click.Context) -> None:
    """List all registered machines."""
    _, machine_objs = _load_cfg(ctx.obj["config"])
    if not machine_objs:
        click.echo("No machines configured.")
        return
    click.echo(f"{'NAME':<20} {'IP ADDRESS':<16} {'MAC ADDRESS':<19} {'PORT':<6} {'DESCRIPTION'}")
    click.echo("─" * 80)
    for m in machine_objs:
        click.echo(
            f"{m.name:<20} {m.ipv4_address:<16} {m.mac_address:<19} {m.ping_port:<6} {m.description}"
        )


@machines.command("add")
@click.argument("name")
@click.option("--mac", "mac_address", required=True, help="MAC address")
@click.option("--ip", "ipv4_address", required=True, help="IPv4 address")
@click.option("--mask", default=None, help="Subnet mask (guessed from the address if omitted)")
@click.option("--broadcast", default=None, help="Broadcast address (computed if omitted)")
@click.option("--port", "ping_port", default=22, show_default=True, help="TCP port to probe")
@click.option("--description", default="", help="Free-form description")
@click.pass_context
def machines_add(
    ctx: click.Context,
    name: str,
    mac_address: str,
    ipv4_address: str,
    mask: Optional[str],
    broadcast: Optional[str],
    ping_port: int,
    description: str,
) -> None:
    """Register a new machine."""
    from wakeondemand.config.loader import machine_from_raw, validate_machine
    from wakeondemand.core.network import calculate_broadcast

    raw, machine_objs = _load_cfg(ctx.obj["config"], must_exist=False)
    if any(m.name.lower() == name.lower() for m in machine_objs):
        click.echo(f"Machine '{name}' already exists.", err=True)
        sys.exit(1)

    if mask and not broadcast:
        broadcast = calculate_broadcast(ipv4_address, mask)
    entry = {
        "name": name,
        "mac_address": mac_address,
        "ipv4_address": ipv4_address,
        "mask": mask,
        "broadcast_address": broadcast,
        "ping_port": ping_port,
        "description": description,
    }
    errors = validate_machine(entry, name)
    if errors:
        for e in errors:
            click.echo(f"  • {e}", err=True)
        sys.exit(1)

    machine = machine_from_raw(entry)
    _save_cfg(ctx.obj["config"], raw, machine_objs + [machine])
    click.echo(f"Added {machine.name} ({machine.ipv4_address}, broadcast {machine.broadcast_address})")


@machines.command("remove")
@click.argument("name")
@click.pass_context
def machines_remove(ctx: click.Context, name: str) -> None:
    """Remove a machine by name or id."""
    raw, machine_objs = _load_cfg(ctx.obj["config"])
    match = _pick(machine_objs, name)
    _save_cfg(ctx.obj["config"], raw, [m for m in machine_objs if m.id != match.id])
    click.echo(f"Removed {match.name}")


@machines.command("export")
@click.argument("path", type=click.Path(dir_okay=False))
@click.pass_context
def machines_export(ctx: click.Context, path: str) -> None:
    """Export machines to a JSON file."""
    from wakeondemand.config.writer import export_machines

    _, machine_objs = _load_cfg(ctx.obj["config"])
    export_machines(Path(path), machine_objs)
    click.echo(f"Exported {len(machine_objs)} machine(s) to {path}")


@machines.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def machines_import(ctx: click.Context, path: str) -> None:
    """Replace the machine list with the contents of a JSON export."""
    from wakeondemand.config.loader import ConfigError, import_machines

    raw, _ = _load_cfg(ctx.obj["config"], must_exist=False)
    try:
        imported = import_machines(Path(path))
    except ConfigError as exc:
        click.echo(f"Import failed: {exc}", err=True)
        sys.exit(1)
    _save_cfg(ctx.obj["config"], raw, imported)
    click.echo(f"Imported {len(imported)} machine(s)")


# ── wake command ─────────────────────────────────────────────────────────────


@main.command()
@click.argument("name")
@click.option("--no-wait", is_flag=True, help="Only send the magic packet, do not verify")
@click.pass_context
def wake(ctx: click.Context, name: str, no_wait: bool) -> None:
    """Wake a machine and wait until it accepts connections (Ctrl-C cancels)."""
    raw, machine_objs = _load_cfg(ctx.obj["config"])
    match = _pick(machine_objs, name)

    if no_wait:
        from wakeondemand.config.loader import settings_from_config
        from wakeondemand.core.wol import send

        settings = settings_from_config(raw)
        send(
            match.mac_address,
            match.broadcast_address,
            port=settings.wol_port,
            secondary=settings.secondary_broadcast,
        )
        click.echo(f"WOL packet sent to {match.mac_address} ({match.broadcast_address})")
        return

    from wakeondemand.core.wake import WakeProgress, WakeState

    app = _build_app(raw, machine_objs)
    finished = threading.Event()

    def _render(progress: WakeProgress) -> None:
        click.echo(f"  {progress.status_message}")
        if progress.terminal:
            finished.set()

    app.orchestrator.add_listener(_render)
    app.start()
    click.echo(f"▶  Waking {match.name} ({match.ipv4_address}:{match.ping_port})")
    session = app.wake(match)
    try:
        while not finished.wait(timeout=0.5):
            pass
    except KeyboardInterrupt:
        if app.orchestrator.cancel():
            finished.wait(timeout=5)
    finally:
        app.stop()

    if session.state is WakeState.SUCCESS:
        click.echo(f"✓  {match.name} is online after {session.attempts} attempt(s)")
    elif session.state is WakeState.TIMED_OUT:
        click.echo(f"✗  {match.name} did not respond", err=True)
        sys.exit(EXIT_TIMED_OUT)
    else:
        click.echo(f"Wake of {match.name} cancelled", err=True)
        sys.exit(EXIT_CANCELLED)


# ── status command ────────────────────────────────────────────────────────────


def _status_line(machine, status) -> str:  # type: ignore[no-untyped-def]
    if status.checking:
        state = "Checking..."
    else:
        state = "Online" if status.reachable else "Offline"
    checked = status.last_checked_at.strftime("%H:%M:%S") if status.last_checked_at else "never"
    return f"{machine.name:<20} {machine.ipv4_address + ':' + str(machine.ping_port):<22} {state:<12} {checked}"


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Check every machine once and print the result."""
    raw, machine_objs = _load_cfg(ctx.obj["config"])
    if not machine_objs:
        click.echo("No machines configured.")
        return

    app = _build_app(raw, machine_objs)
    app.start()
    try:
        check_pass = app.poller.check_all(machine_objs)
        check_pass.wait(timeout=app.settings.status_timeout + 10)
    finally:
        app.stop()

    click.echo(f"{'NAME':<20} {'ADDRESS':<22} {'STATUS':<12} {'CHECKED'}")
    click.echo("─" * 64)
    for m in machine_objs:
        click.echo(_status_line(m, app.poller.status_for(m.id)))


# ── watch command ─────────────────────────────────────────────────────────────


@main.command()
@click.option(
    "--interval",
    "-i",
    type=click.Choice([str(i) for i in CHECK_INTERVALS]),
    default=None,
    help="Seconds between checks (defaults to settings.check_interval)",
)
@click.pass_context
def watch(ctx: click.Context, interval: Optional[str]) -> None:
    """Poll all machines in the background and print status changes (Ctrl-C stops)."""
    raw, machine_objs = _load_cfg(ctx.obj["config"])
    if not machine_objs:
        click.echo("No machines configured.")
        return

    app = _build_app(raw, machine_objs)
    by_id = {m.id: m for m in machine_objs}
    seconds = int(interval) if interval else app.settings.check_interval

    def _render(machine_id, status) -> None:  # type: ignore[no-untyped-def]
        machine = by_id.get(machine_id)
        if machine is not None and not status.checking:
            click.echo(_status_line(machine, status))

    app.poller.add_listener(_render)
    app.start()
    app.poller.start(machine_objs, seconds)
    click.echo(f"Watching {len(machine_objs)} machine(s) every {seconds}s, Ctrl-C to stop")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("Stopping")
    finally:
        app.poller.stop()
        app.stop()


# ── network helpers ───────────────────────────────────────────────────────────


@main.group()
def network() -> None:
    """IPv4 helpers."""


@network.command("calc")
@click.argument("ip")
@click.option("--mask", default=None, help="Subnet mask (guessed from the address if omitted)")
def network_calc(ip: str, mask: Optional[str]) -> None:
    """Show network and broadcast addresses for IP/MASK."""
    from wakeondemand.core.network import (
        calculate_broadcast,
        calculate_network,
        is_valid_ipv4,
        is_valid_subnet_mask,
        suggest_network_settings,
    )

    if not is_valid_ipv4(ip):
        click.echo(f"Invalid IPv4 address: {ip}", err=True)
        sys.exit(1)
    if mask is None:
        suggested = suggest_network_settings(ip)
        mask = suggested[0] if suggested else "255.255.255.0"
    elif not is_valid_subnet_mask(mask):
        click.echo(f"Invalid subnet mask: {mask}", err=True)
        sys.exit(1)

    click.echo(f"Address:   {ip}")
    click.echo(f"Mask:      {mask}")
    click.echo(f"Network:   {calculate_network(ip, mask)}")
    click.echo(f"Broadcast: {calculate_broadcast(ip, mask)}")


if __name__ == "__main__":
    main()
