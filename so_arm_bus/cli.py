import logging
import time

import click
from rich.console import Console
from rich.live import Live
from rich.table import Table
from tabulate import tabulate

from so_arm_bus.bus_controller import BusCloseError, BusError, ServoBusController
from so_arm_bus.config import BusSettings, ConfigError, load_config
from so_arm_bus.feetech.packet_codec import clamp_position, position_to_degrees
from so_arm_bus.feetech.port_handler import find_serial_ports
from so_arm_bus.feetech.servo_defs import SO_ARM_MOTOR_NAMES
from so_arm_bus.utils.logging import BusLoggerSetup, get_log_level, get_logger

log = get_logger(__name__)


def parse_ids(ids, known_ids):
    if ids.strip().lower() == "all":
        return list(known_ids)
    try:
        motor_ids = [int(i.strip()) for i in ids.split(",")]
    except ValueError:
        raise click.BadParameter("IDs must be comma-separated integers or 'all'")
    out_of_range = [i for i in motor_ids if not 1 <= i <= 252]
    if out_of_range:
        raise click.BadParameter(f"IDs must be between 1 and 252: {out_of_range}")
    return motor_ids


def format_position(position):
    if position is None:
        return "No response"
    return f"{position} ({position_to_degrees(position):.2f}°)"


def make_table(positions) -> Table:
    tbl = Table(title="Motor Positions", show_header=True, header_style="bold magenta")
    tbl.add_column("ID", justify="right", no_wrap=True)
    tbl.add_column("Joint", justify="left")
    tbl.add_column("Raw", justify="right")
    tbl.add_column("Degrees", justify="right")

    for motor_id, position in positions.items():
        name = SO_ARM_MOTOR_NAMES.get(motor_id, f"motor_{motor_id}")
        if position is None:
            tbl.add_row(str(motor_id), name, "[red]--[/]", "[red]No response[/]")
        else:
            tbl.add_row(str(motor_id), name, str(position), f"{position_to_degrees(position):6.1f}")
    return tbl


def _open_controller(ctx) -> ServoBusController:
    obj = ctx.obj
    controller = ServoBusController(
        device=obj["config"]["device"],
        baudrate=obj["config"]["baudrate"],
        settings=obj["settings"],
        stream_factory=obj.get("stream_factory"),
    )
    try:
        controller.connect()
    except BusError as e:
        raise click.ClickException(str(e))
    return controller


def _close_controller(controller):
    try:
        outcomes = controller.disconnect()
    except BusCloseError as e:
        click.echo(f"Warning: {e}", err=True)
        outcomes = e.outcomes
    failed = [aid for aid, ok in outcomes.items() if not ok]
    if failed:
        click.echo(f"Warning: torque disable failed for motors {failed}", err=True)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--device", type=str, default=None, help="Serial device (default from config)")
@click.option("--baudrate", type=int, default=None, help="Bus baudrate (default 1000000)")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="JSON configuration file")
@click.option("--log-dir", type=click.Path(file_okay=False), default=None,
              help="Also write a debug log file into this directory")
@click.pass_context
def cli(ctx, device, baudrate, config_path, log_dir):
    """SO-ARM servo bus command line interface."""
    ctx.ensure_object(dict)
    BusLoggerSetup.setup(
        log_dir=log_dir or "logs",
        console_level=get_log_level(logging.WARNING),
        log_to_file=log_dir is not None,
    )

    try:
        config = load_config(config_path)
        if device is not None:
            config["device"] = device
        if baudrate is not None:
            config["baudrate"] = baudrate
        ctx.obj["settings"] = BusSettings.from_config(config)
    except ConfigError as e:
        raise click.ClickException(str(e))
    ctx.obj["config"] = config


@cli.command()
@click.option("--all", "show_all", is_flag=True, help="Include unrecognised USB-serial adapters")
def ports(show_all):
    """List USB-serial adapters that may drive the servo bus."""
    found = find_serial_ports(known_only=not show_all)
    if not found:
        click.echo("No serial adapters found.")
        return
    rows = [[p["device"], p["chip"], p["description"]] for p in found]
    click.echo(tabulate(rows, headers=["Device", "Chip", "Description"], tablefmt="grid"))


@cli.command()
@click.option("--start-id", type=click.IntRange(1, 252), default=1, show_default=True)
@click.option("--end-id", type=click.IntRange(1, 252), default=252, show_default=True)
@click.option("--timeout", type=float, default=0.05, show_default=True,
              help="Per-id response deadline in seconds")
@click.pass_context
def scan(ctx, start_id, end_id, timeout):
    """Find servos that answer a position read."""
    if start_id > end_id:
        raise click.BadParameter("--start-id must not exceed --end-id")

    controller = _open_controller(ctx)
    try:
        found = controller.scan(range(start_id, end_id + 1), timeout=timeout)
    finally:
        _close_controller(controller)

    if not found:
        click.echo("No servos found on the bus!")
        return
    rows = [[aid, SO_ARM_MOTOR_NAMES.get(aid, "")] for aid in found]
    click.echo(f"Found {len(found)} servo(s):")
    click.echo(tabulate(rows, headers=["ID", "Joint"], tablefmt="grid",
                        numalign="right", stralign="right"))


@cli.command()
@click.option("--id", "motor_id", type=click.IntRange(1, 252), default=None, help="Read a single motor")
@click.pass_context
def read(ctx, motor_id):
    """Read present positions."""
    controller = _open_controller(ctx)
    try:
        if motor_id is None:
            positions = controller.read_all_positions()
        else:
            positions = {motor_id: controller.read_motor_position(motor_id)}
    finally:
        _close_controller(controller)

    rows = [
        [aid, SO_ARM_MOTOR_NAMES.get(aid, f"motor_{aid}"), format_position(pos)]
        for aid, pos in positions.items()
    ]
    click.echo(tabulate(rows, headers=["ID", "Joint", "Position"], tablefmt="grid",
                        numalign="right", stralign="left"))


@cli.command()
@click.argument("motor_id", type=click.IntRange(1, 252))
@click.argument("position", type=int)
@click.option("--hold", type=float, default=1.0, show_default=True,
              help="Seconds to keep the bus open before torque is released")
@click.pass_context
def move(ctx, motor_id, position, hold):
    """Send MOTOR_ID to POSITION (0-4095, clamped)."""
    controller = _open_controller(ctx)
    try:
        ok = controller.set_torque(motor_id, True) and controller.write_motor_position(motor_id, position)
        if ok and hold > 0:
            time.sleep(hold)
    finally:
        _close_controller(controller)

    if not ok:
        raise click.ClickException(f"failed to command motor {motor_id}")
    click.echo(f"Motor {motor_id} -> {clamp_position(position)}")


@cli.command()
@click.argument("action", type=click.Choice(["enable", "disable"]))
@click.argument("ids", default="all")
@click.option("--hold", type=float, default=0.0, show_default=True,
              help="Seconds to keep the bus open before torque is released")
@click.pass_context
def torque(ctx, action, ids, hold):
    """Enable or disable torque for IDS (comma-separated or 'all')."""
    motor_ids = parse_ids(ids, ctx.obj["settings"].motor_ids)
    enable = action == "enable"

    controller = _open_controller(ctx)
    try:
        results = {aid: controller.set_torque(aid, enable) for aid in motor_ids}
        if enable and hold > 0:
            time.sleep(hold)
    finally:
        _close_controller(controller)

    failed = [aid for aid, ok in results.items() if not ok]
    if failed:
        raise click.ClickException(f"torque {action} failed for: {failed}")
    click.echo(f"Torque {'enabled' if enable else 'disabled'} for: {motor_ids}")


@cli.command()
@click.option("--interval", type=float, default=0.0, show_default=True,
              help="Extra pause between sweeps in seconds")
@click.option("--count", type=int, default=0, help="Stop after this many sweeps (0 = until Ctrl-C)")
@click.pass_context
def watch(ctx, interval, count):
    """Continuously display motor positions."""
    console = Console()
    controller = _open_controller(ctx)
    sweeps = 0
    try:
        with Live(make_table({}), console=console, refresh_per_second=10) as live:
            while count <= 0 or sweeps < count:
                live.update(make_table(controller.read_all_positions()))
                sweeps += 1
                if interval > 0:
                    time.sleep(interval)
    except KeyboardInterrupt:
        pass
    finally:
        _close_controller(controller)
    log.info(f"watch stopped after {sweeps} sweeps")


if __name__ == "__main__":
    cli()
