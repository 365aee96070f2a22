# custom_components/testicool/pump_control/device/pump_device.py
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Coroutine, List, Optional, Set, Tuple, Type, Union

import typer
from typing_extensions import Annotated
from bleak.backends.device import BLEDevice

from ...const import (
    SESSION_DURATION,
    SESSION_TICK_INTERVAL,
    STATUS_POLL_INTERVAL,
    TEMPERATURE_POLL_INTERVAL,
)
from ...exception import TransportError
from ..framing import LineFramer
from ..poller import StatusPoller
from ..protocol import (
    Ack,
    Command,
    Error,
    Hello,
    ParsedMessage,
    Unknown,
    clamp_speed,
    decode_line,
    encode,
)
from ..scheduler import Scheduler
from ..session import SessionRecorder
from ..state import DeviceState, DeviceStateStore
from .transport import Transport, make_transport

app = typer.Typer(help="Testicool pump control")

__all__ = ["ConnectionState", "PumpDevice", "app", "_handle_connect_errors"]

NOT_FOUND_MSG = "Pump Not Found, Unreachable or Failed to Connect, ensure the phone app is not connected"

Target = Union[str, BLEDevice]
TransportFactory = Callable[[Target], Transport]
ConnectionListener = Callable[["ConnectionState"], None]
MessageListener = Callable[[ParsedMessage], None]


def _handle_connect_errors(ex: Exception) -> None:
    msg = str(ex).lower()
    if (
        isinstance(ex, TransportError)
        or "not found" in msg
        or "unreachable" in msg
        or "failed to connect" in msg
    ):
        typer.echo(NOT_FOUND_MSG)
        typer.echo(f"  ({ex})")
        raise typer.Exit(1)
    raise ex


def _target_name(target: Target) -> str:
    if isinstance(target, BLEDevice):
        return target.name or target.address
    return str(target)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


# ─────────────────────────────────────────────────────────────
# PumpDevice: one connection session at a time
# ─────────────────────────────────────────────────────────────


class PumpDevice:
    """
    Connection session for one Testicool pump.

    Owns the transport and the line framer of the current connection,
    drives DISCONNECTED → CONNECTING → CONNECTED → DISCONNECTED, routes
    decoded lines into ``store`` and exposes the pump commands. Everything
    runs on the asyncio loop; timer callbacks only spawn send tasks.
    """

    def __init__(
        self,
        transport_factory: TransportFactory = make_transport,
        store: DeviceStateStore | None = None,
        status_interval: float = STATUS_POLL_INTERVAL,
        temperature_interval: float = TEMPERATURE_POLL_INTERVAL,
        session_tick: float = SESSION_TICK_INTERVAL,
    ) -> None:
        self._transport_factory = transport_factory
        self._logger = logging.getLogger("testicool")
        self.store = store or DeviceStateStore()
        self.scheduler = Scheduler()
        self.poller = StatusPoller(
            self.scheduler,
            self._poll_status,
            self._poll_temperature,
            status_interval=status_interval,
            temperature_interval=temperature_interval,
        )
        self.session = SessionRecorder(
            self.scheduler, on_expired=self._session_expired, tick_interval=session_tick
        )
        self.session.attach(self.store)

        self._state = ConnectionState.DISCONNECTED
        self._target: Optional[Target] = None
        self._transport: Transport | None = None
        self._framer: LineFramer | None = None
        self._connect_lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()
        self._background: Set[asyncio.Task] = set()
        self._connection_listeners: List[ConnectionListener] = []
        self._message_listeners: List[MessageListener] = []

    # -------- identity / logging

    def set_log_level(self, level: int | str) -> None:
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
            if not isinstance(level, int):
                level = logging.INFO
        self._logger.setLevel(level)

    @property
    def name(self) -> str:
        return _target_name(self._target) if self._target is not None else "(none)"

    @property
    def target(self) -> Optional[Target]:
        return self._target

    @property
    def transport(self) -> Transport | None:
        return self._transport

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def device_state(self) -> DeviceState:
        return self.store.state

    # -------- observers

    def add_connection_listener(self, cb: ConnectionListener) -> Callable[[], None]:
        if cb not in self._connection_listeners:
            self._connection_listeners.append(cb)
        return lambda: self._remove(self._connection_listeners, cb)

    def add_message_listener(self, cb: MessageListener) -> Callable[[], None]:
        if cb not in self._message_listeners:
            self._message_listeners.append(cb)
        return lambda: self._remove(self._message_listeners, cb)

    @staticmethod
    def _remove(listeners: list, cb: Any) -> None:
        try:
            listeners.remove(cb)
        except ValueError:
            pass

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._logger.debug("%s: %s → %s", self.name, self._state.value, state.value)
        self._state = state
        for cb in tuple(self._connection_listeners):
            try:
                cb(state)
            except Exception:
                self._logger.debug("%s: connection listener raised", self.name, exc_info=True)

    # -------- connect / disconnect

    async def connect(self, target: Target) -> bool:
        """Open a fresh session to ``target``; any current session is torn down first."""
        async with self._connect_lock:
            if self._state is not ConnectionState.DISCONNECTED:
                await self._execute_disconnect()

            self._target = target
            self._logger = logging.getLogger(self.name.replace(":", "-"))
            self._set_state(ConnectionState.CONNECTING)
            self.store.reset()
            self._framer = LineFramer()
            transport = self._transport_factory(target)
            self._transport = transport
            self._logger.debug("%s: Connecting", self.name)
            try:
                await transport.open(self)
            except Exception as ex:
                self._teardown()
                self._logger.warning("%s: Connection failed: %s", self.name, ex)
                if isinstance(ex, TransportError):
                    raise
                raise TransportError(f"{self.name}: {ex}") from ex
            return self.is_connected

    async def disconnect(self) -> None:
        self._logger.debug("%s: Disconnecting", self.name)
        async with self._connect_lock:
            await self._execute_disconnect()

    async def _execute_disconnect(self) -> None:
        transport = self._teardown()
        if transport is not None:
            await self._close_transport(transport)

    async def _close_transport(self, transport: Transport) -> None:
        try:
            await transport.close()
        except Exception:
            self._logger.debug("%s: transport close failed", self.name, exc_info=True)

    def _teardown(self) -> Transport | None:
        """Stop timers, drop the line buffer, reset state. Synchronous."""
        self.poller.stop()
        if self.session.running:
            self.session.pause()
        if self._framer is not None:
            self._framer.reset()
            self._framer = None
        for task in tuple(self._pending):
            task.cancel()
        self._pending.clear()
        transport, self._transport = self._transport, None
        self.store.reset()
        self._set_state(ConnectionState.DISCONNECTED)
        return transport

    def _link_lost(self) -> None:
        if self._state is ConnectionState.DISCONNECTED:
            return
        transport = self._teardown()
        if transport is not None:
            task = asyncio.ensure_future(self._close_transport(transport))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    # -------- transport events

    def on_open(self) -> None:
        if self._transport is None:
            return
        self._logger.info("%s: Connected", self.name)
        self._set_state(ConnectionState.CONNECTED)
        self.poller.start()
        if self.session.active:
            self.session.resume()

    def on_data(self, data: bytes) -> None:
        if self._framer is None:
            return
        for line in self._framer.feed(data):
            self.handle_line(line)

    def on_error(self, error: Exception) -> None:
        self._logger.warning("%s: Transport error: %s", self.name, error)
        self._link_lost()

    def on_closed(self) -> None:
        self._logger.info("%s: Connection closed by device", self.name)
        self._link_lost()

    def handle_line(self, line: str) -> Optional[ParsedMessage]:
        """Decode and reconcile one complete line, in arrival order."""
        self._logger.debug("%s: Received: %s", self.name, line)
        message = decode_line(line)
        if message is None:
            self._logger.debug("%s: Dropped malformed line: %s", self.name, line)
            return None
        if isinstance(message, Ack):
            self._logger.debug("%s: Command acknowledged", self.name)
        elif isinstance(message, Error):
            self._logger.warning("%s: Device error %s: %s", self.name, message.code, message.message)
        elif isinstance(message, Hello):
            self._logger.info("%s: Device ready: %s", self.name, message.raw)
        elif isinstance(message, Unknown):
            self._logger.debug("%s: Unknown response: %s", self.name, message.raw)

        self.store.apply(message)
        for cb in tuple(self._message_listeners):
            try:
                cb(message)
            except Exception:
                self._logger.debug("%s: message listener raised", self.name, exc_info=True)
        return message

    # -------- write helpers

    async def send(self, command: Command) -> bool:
        """Write one command line. Not connected → logged and dropped."""
        line = encode(command)
        transport = self._transport
        if self._state is not ConnectionState.CONNECTED or transport is None:
            self._logger.warning("%s: Cannot send %s - not connected", self.name, line.strip())
            return False
        try:
            await transport.write(line.encode("utf-8"))
        except TransportError as ex:
            self._logger.error("%s: Failed to send %s: %s", self.name, line.strip(), ex)
            if transport is self._transport:
                self._link_lost()
            raise
        self._logger.debug("%s: Sent: %s", self.name, line.strip())
        return True

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        if ex := task.exception():
            self._logger.debug("%s: background send failed: %s", self.name, ex)

    def _poll_status(self) -> None:
        if self.is_connected:
            self._spawn(self.request_status())

    def _poll_temperature(self) -> None:
        if self.is_connected:
            self._spawn(self.request_temperature())

    # -------- pump commands

    async def turn_pump_on(self) -> bool:
        if self.store.state.safety_shutoff:
            self._logger.warning("%s: Safety shutoff active; clear the error first", self.name)
            return False
        if not self.is_connected:
            self._logger.warning("%s: Cannot turn pump on - not connected", self.name)
            return False
        self.store.apply_optimistic(pump_on=True)
        return await self.send(Command.turn_on())

    async def turn_pump_off(self) -> bool:
        if not self.is_connected:
            self._logger.warning("%s: Cannot turn pump off - not connected", self.name)
            return False
        self.store.apply_optimistic(pump_on=False)
        return await self.send(Command.turn_off())

    async def set_pump_speed(self, speed: int) -> bool:
        speed = clamp_speed(speed)
        if not self.is_connected:
            self._logger.warning("%s: Cannot set speed - not connected", self.name)
            return False
        self.store.apply_optimistic(speed=speed)
        return await self.send(Command.set_speed(speed))

    async def request_status(self) -> bool:
        return await self.send(Command.request_status())

    async def request_temperature(self) -> bool:
        return await self.send(Command.request_temperature())

    async def send_raw(self, text: str) -> bool:
        return await self.send(Command.raw(text))

    def clear_error(self) -> None:
        self.store.clear_error()

    # -------- sessions

    def start_session(self, duration: int = SESSION_DURATION) -> bool:
        """Start the countdown; it only ticks while the link is up."""
        if not self.session.start_session(duration):
            return False
        if not self.is_connected:
            self.session.pause()
        return True

    def _session_expired(self) -> None:
        self._spawn(self.turn_pump_off())

    # -------- waiting helpers

    async def wait_for_message(
        self,
        kinds: Union[Type[Any], Tuple[Type[Any], ...]],
        timeout: float = 5.0,
    ) -> Optional[ParsedMessage]:
        """Return the next message of ``kinds`` or None when ``timeout`` elapses."""
        got: asyncio.Future = asyncio.get_running_loop().create_future()

        def _on(message: ParsedMessage) -> None:
            if isinstance(message, kinds) and not got.done():
                got.set_result(message)

        remove = self.add_message_listener(_on)
        try:
            return await asyncio.wait_for(got, timeout=timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            remove()

    @classmethod
    async def connect_or_exit(cls, target: Target, **kwargs: Any) -> "PumpDevice":
        dev = cls(**kwargs)
        try:
            await dev.connect(target)
        except Exception as ex:
            _handle_connect_errors(ex)
            raise
        return dev


# ─────────────────────────────────────────────────────────────
# Optional: tiny CLI test hook (kept minimal)
# ─────────────────────────────────────────────────────────────


@app.command("probe")
def cli_probe(
    target: Annotated[str, typer.Argument(help="BLE address, serial port, or sim://")],
    timeout_s: Annotated[float, typer.Option(help="Listen timeout seconds", min=0.5)] = 5.0,
) -> None:
    """Connect, wait for the first STATUS line and print it."""
    from ..protocol import Status

    async def run() -> None:
        dev = await PumpDevice.connect_or_exit(target)
        try:
            status = await dev.wait_for_message(Status, timeout=timeout_s)
            if status is None:
                typer.echo("No STATUS received within timeout.")
            else:
                typer.echo(repr(status))
        finally:
            await dev.disconnect()

    asyncio.run(run())
