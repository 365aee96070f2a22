# custom_components/testicool/pump_control/pumpctl.py
"""Testicool pump CLI entrypoint.

Extends the Typer ``app`` of ``device/pump_device.py`` with discovery,
command, monitor, session and offline decode commands.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, is_dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Tuple, Type

import typer
from typer import Context
from typing_extensions import Annotated
from rich import print
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from ..const import SCAN_TIMEOUT, SESSION_DURATION, SPEED_MAX
from ..exception import TransportError
from .device.pump_device import PumpDevice
from .device.pump_device import app as app
from .discovery import PumpScanner, list_serial_ports
from .framing import LineFramer
from .protocol import (
    Ack,
    Error,
    ParsedMessage,
    PumpNotice,
    SpeedNotice,
    Status,
    Temperature,
    decode_line,
    percent_to_speed,
)
from .state import DeviceState, DeviceStateStore
from . import storage

TargetArg = Annotated[str, typer.Argument(help="BLE address, known device name, serial port, or sim://")]

# ────────────────────────────────────────────────────────────────
# Global options (e.g., --debug) applied to the shared app
# ────────────────────────────────────────────────────────────────


@app.callback(invoke_without_command=True)
def _global_options(
    ctx: Context,
    debug: Annotated[
        bool,
        typer.Option("--debug/--no-debug", help="Enable verbose debug logging"),
    ] = False,
):
    """Testicool cooling pump control."""
    ctx.obj = ctx.obj or {}
    ctx.obj["debug"] = bool(debug)

    if debug:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(rich_tracebacks=True, show_time=False, show_level=True)],
        )
        logging.getLogger("bleak").setLevel(logging.DEBUG)
        logging.getLogger("testicool").setLevel(logging.DEBUG)


# ────────────────────────────────────────────────────────────────
# Helpers
# ────────────────────────────────────────────────────────────────


async def _connect(target: str) -> PumpDevice:
    resolved = storage.resolve_alias(target)
    if resolved != target:
        print(f"Using remembered device {target} → {resolved}")
    return await PumpDevice.connect_or_exit(resolved)


def _state_table(state: DeviceState) -> Table:
    table = Table("Field", "Value")
    table.add_row("Pump", "ON" if state.pump_on else "OFF")
    table.add_row("Speed", f"{state.speed} ({state.speed_percent}%)")
    table.add_row("Water", state.formatted_water_temp)
    table.add_row("Skin", state.formatted_skin_temp)
    table.add_row("Runtime", f"{state.formatted_runtime} ({state.runtime_progress:.0%} of cap)")
    table.add_row("Remaining", state.formatted_remaining)
    table.add_row("Control", state.control_source.value)
    table.add_row("Safety shutoff", "yes" if state.safety_shutoff else "no")
    table.add_row("Error", state.error or "-")
    table.add_row(
        "Last update",
        state.last_update.strftime("%H:%M:%S") if state.last_update else "-",
    )
    return table


def _describe(message: ParsedMessage) -> Tuple[str, str]:
    kind = type(message).__name__
    if is_dataclass(message):
        fields = ", ".join(f"{k}={v}" for k, v in asdict(message).items() if v is not None)
    else:
        fields = ""
    return kind, fields


def _run_command(
    target: str,
    method: str,
    confirm: Tuple[Type[Any], ...] = (),
    timeout_s: float = 3.0,
    **kwargs: Any,
) -> None:
    """Connect, call one device command, wait for the pump's reply, disconnect."""

    async def _async_func() -> None:
        dev = await _connect(target)
        try:
            waiter = (
                asyncio.ensure_future(dev.wait_for_message(confirm + (Error,), timeout=timeout_s))
                if confirm
                else None
            )
            try:
                ok = await getattr(dev, method)(**kwargs)
            except TransportError as ex:
                print(f"[red]Connection lost: {ex}[/red]")
                raise typer.Exit(1)
            if not ok:
                if waiter:
                    waiter.cancel()
                print(f"[red]{method} was not sent[/red] (see --debug for details)")
                raise typer.Exit(1)
            if waiter is not None:
                reply = await waiter
                if reply is None:
                    print("[yellow]No reply from pump within timeout[/yellow]")
                elif isinstance(reply, Error):
                    print(f"[red]{reply.message}[/red]")
                    raise typer.Exit(1)
                else:
                    kind, fields = _describe(reply)
                    print(f"Pump replied: {kind} {fields}")
        finally:
            await dev.disconnect()

    asyncio.run(_async_func())


# ────────────────────────────────────────────────────────────────
# pumpctl list-devices / list-ports
# ────────────────────────────────────────────────────────────────


@app.command(name="list-devices")
def list_devices(
    timeout: Annotated[float, typer.Option(help="Scan time in seconds")] = SCAN_TIMEOUT,
    show_all: Annotated[bool, typer.Option("--all", help="Show every BLE device, not only pumps")] = False,
) -> None:
    """Scan for pumps over BLE and remember them."""
    print("the search for Bluetooth devices is running")
    scanner = PumpScanner(show_all=show_all)
    devices = asyncio.run(scanner.scan(timeout))
    table = Table("Name", "Address", "RSSI", "Signal")
    for device in devices:
        table.add_row(device.name or "(unknown)", device.id, str(device.rssi), device.signal_quality)
    print("Discovered the following devices:")
    print(table)
    storage.remember_devices(devices)


@app.command(name="list-ports")
def list_ports() -> None:
    """List serial ports (paired SPP modules show up as rfcomm/COM ports)."""
    table = Table("Port", "Description", "HWID")
    for port in list_serial_ports():
        table.add_row(port["device"], port["description"], port["hwid"])
    print(table)


# ────────────────────────────────────────────────────────────────
# pumpctl status <target>
# ────────────────────────────────────────────────────────────────


@app.command(name="status")
def ctl_status(
    target: TargetArg,
    timeout_s: Annotated[float, typer.Option("--timeout", help="Seconds to wait for STATUS", min=0.5)] = 5.0,
) -> None:
    """Connect, wait for the first STATUS reply and print the device state."""

    async def run() -> Optional[DeviceState]:
        dev = await _connect(target)
        try:
            status = await dev.wait_for_message(Status, timeout=timeout_s)
            if status is None:
                return None
            # give the paired TEMP reply a moment to land
            await dev.wait_for_message(Temperature, timeout=min(timeout_s, 1.5))
            return dev.device_state
        finally:
            await dev.disconnect()

    state = asyncio.run(run())
    if state is None:
        print("[yellow]No STATUS received within timeout.[/yellow]")
        raise typer.Exit(1)
    print(_state_table(state))


# ────────────────────────────────────────────────────────────────
# pumpctl turn-on / turn-off / set-speed / send-raw <target>
# ────────────────────────────────────────────────────────────────


@app.command(name="turn-on")
def ctl_turn_on(target: TargetArg) -> None:
    """Turn the pump on."""
    print(f"Connect to device {target} and turn on")
    _run_command(target, "turn_pump_on", confirm=(PumpNotice,))


@app.command(name="turn-off")
def ctl_turn_off(target: TargetArg) -> None:
    """Turn the pump off."""
    print(f"Connect to device {target} and turn off")
    _run_command(target, "turn_pump_off", confirm=(PumpNotice,))


@app.command(name="set-speed")
def ctl_set_speed(
    target: TargetArg,
    speed: Annotated[int, typer.Argument(min=0, max=SPEED_MAX, help="PWM value 0..255")] = 180,
    percent: Annotated[
        Optional[int], typer.Option(min=0, max=100, help="Give the speed in percent instead")
    ] = None,
) -> None:
    """Set pump speed (the pump must be running)."""
    value = percent_to_speed(percent) if percent is not None else speed
    print(f"Connect to device {target} and set speed to {value}")
    _run_command(target, "set_pump_speed", confirm=(SpeedNotice, Ack), speed=value)


@app.command(name="send-raw")
def ctl_send_raw(
    target: TargetArg,
    text: Annotated[str, typer.Argument(help="One command line, sent verbatim")],
    listen: Annotated[float, typer.Option(help="Seconds to print replies", min=0.0)] = 2.0,
) -> None:
    """Send a raw command line and print whatever comes back."""

    async def run() -> None:
        dev = await _connect(target)
        dev.poller.stop()
        dev.add_message_listener(lambda m: print(" ← ", *_describe(m)))
        try:
            try:
                sent = await dev.send_raw(text)
            except ValueError as ex:
                print(f"[red]{ex}[/red]")
                raise typer.Exit(2)
            if not sent:
                raise typer.Exit(1)
            await asyncio.sleep(listen)
        finally:
            await dev.disconnect()

    asyncio.run(run())


# ────────────────────────────────────────────────────────────────
# pumpctl monitor <target>
# ────────────────────────────────────────────────────────────────


@app.command(name="monitor")
def ctl_monitor(
    target: TargetArg,
    duration: Annotated[float, typer.Option(help="Seconds to run; 0 runs until Ctrl-C", min=0.0)] = 0.0,
) -> None:
    """Poll the pump and print every decoded line."""

    async def run() -> None:
        dev = await _connect(target)

        def _on(message: ParsedMessage) -> None:
            kind, fields = _describe(message)
            print(f"[dim]{datetime.now():%H:%M:%S}[/dim] {kind} {fields}")

        dev.add_message_listener(_on)
        try:
            if duration:
                await asyncio.sleep(duration)
            else:
                while dev.is_connected:
                    await asyncio.sleep(1.0)
                print("[yellow]Connection lost[/yellow]")
        finally:
            await dev.disconnect()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print("stopped")


# ────────────────────────────────────────────────────────────────
# pumpctl session <target> --duration 1800 --speed 180 --export out.csv
# ────────────────────────────────────────────────────────────────


@app.command(name="session")
def ctl_session(
    target: TargetArg,
    duration: Annotated[int, typer.Option(help="Session length in seconds", min=1)] = SESSION_DURATION,
    speed: Annotated[int, typer.Option(min=0, max=SPEED_MAX)] = 180,
    export: Annotated[Optional[Path], typer.Option(help="Write the session CSV here")] = None,
) -> None:
    """Run one cooling session: pump on, timed countdown, pump off, summary."""

    async def run() -> PumpDevice:
        dev = await _connect(target)
        try:
            if not await dev.turn_pump_on():
                print("[red]Pump could not be started[/red]")
                raise typer.Exit(1)
            await dev.wait_for_message(PumpNotice, timeout=3.0)
            await dev.set_pump_speed(speed)
            dev.start_session(duration)
            print(f"Session running for {duration}s (Ctrl-C to stop early)")
            last_minute = -1
            while dev.session.active and dev.is_connected:
                await asyncio.sleep(0.5)
                minute = dev.session.elapsed // 60
                if minute != last_minute:
                    last_minute = minute
                    print(
                        f"  {dev.session.formatted_elapsed} elapsed, "
                        f"{dev.session.formatted_remaining} left, "
                        f"skin {dev.device_state.formatted_skin_temp}"
                    )
        finally:
            # an expired countdown already sent OFF
            expired = dev.session.remaining == 0
            dev.session.stop()
            if dev.is_connected and not expired:
                await dev.turn_pump_off()
            await dev.disconnect()
        return dev

    dev = asyncio.run(run())
    print(dev.session.summary())
    if export is not None:
        path = dev.session.export_csv_file(export)
        print(f"Session exported to {path}")


# ────────────────────────────────────────────────────────────────
# pumpctl decode [capture.txt]
# ────────────────────────────────────────────────────────────────


@app.command(name="decode")
def ctl_decode(
    source: Annotated[
        Optional[Path], typer.Argument(help="Captured pump output; stdin when omitted")
    ] = None,
    show_state: Annotated[bool, typer.Option("--state", help="Also print the reconciled state")] = False,
) -> None:
    """Decode captured pump output offline, line by line."""
    if source is None:
        raw = typer.get_text_stream("stdin").read()
    else:
        raw = source.read_text(encoding="utf-8", errors="replace")

    framer = LineFramer()
    store = DeviceStateStore()
    table = Table("Line", "Message", "Fields")
    lines = framer.feed(raw)
    if framer.pending:
        lines += framer.feed("\n")
    for line in lines:
        message = decode_line(line)
        if message is None:
            table.add_row(escape(line), "[red]dropped[/red]", "")
            continue
        store.apply(message)
        kind, fields = _describe(message)
        table.add_row(escape(line), kind, escape(fields))
    print(table)
    if show_state:
        print(_state_table(store.state))


if __name__ == "__main__":
    try:
        app()
    except asyncio.CancelledError:
        pass
