# custom_components/testicool/pump_control/device/transport.py
"""Byte transports for the pump: BLE notify/write, classic SPP serial, simulator."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional, Protocol, Union

import serial
import serial_asyncio
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.backends.service import BleakGATTServiceCollection
from bleak.exc import BleakError
from bleak_retry_connector import (
    BLEAK_RETRY_EXCEPTIONS as BLEAK_EXCEPTIONS,
    BleakClientWithServiceCache,
    BleakNotFoundError,
    establish_connection,
)

from ...const import (
    BLE_WRITE_CHUNK,
    CONNECT_ATTEMPTS,
    HM10_CHAR_UUID,
    SIM_SCHEME,
    SPP_BAUD_RATE,
    SPP_READ_SIZE,
    UART_RX_CHAR_UUID,
    UART_TX_CHAR_UUID,
)
from ...exception import CharacteristicMissingError, TransportError

if TYPE_CHECKING:
    from ..simulator import PumpSimulator

__all__ = [
    "TransportListener",
    "Transport",
    "BleTransport",
    "SppTransport",
    "SimulatedTransport",
    "make_transport",
    "is_serial_target",
]


class TransportListener(Protocol):
    """Receiver of transport events; all calls arrive on the event loop."""

    def on_open(self) -> None: ...

    def on_data(self, data: bytes) -> None: ...

    def on_error(self, error: Exception) -> None: ...

    def on_closed(self) -> None: ...


class Transport(ABC):
    """One physical link. Opened once, closed once, never reused."""

    name: str = "transport"

    def __init__(self) -> None:
        self._listener: Optional[TransportListener] = None

    @abstractmethod
    async def open(self, listener: TransportListener) -> None:
        """Open the link; call ``listener.on_open()`` once it can carry data."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write raw bytes; raise ``TransportError`` on failure."""

    @abstractmethod
    async def close(self) -> None:
        """Release the link. Must not emit ``on_closed``."""


# ────────────────────────────────────────────────────────────────
# BLE (HM-10 / Nordic UART style serial bridge)
# ────────────────────────────────────────────────────────────────


def _mk_ble_device(addr_or_ble: Union[BLEDevice, str]) -> BLEDevice:
    if isinstance(addr_or_ble, BLEDevice):
        return addr_or_ble
    mac = str(addr_or_ble).upper()
    return BLEDevice(mac, None, 0)


class BleTransport(Transport):
    """Notifications in, write-without-response out."""

    _read_uuids = [HM10_CHAR_UUID, UART_TX_CHAR_UUID]
    _write_uuids = [HM10_CHAR_UUID, UART_RX_CHAR_UUID]

    def __init__(
        self,
        ble_device: Union[BLEDevice, str],
        advertisement_data: AdvertisementData | None = None,
    ) -> None:
        super().__init__()
        self._ble_device = _mk_ble_device(ble_device)
        self._advertisement_data = advertisement_data
        self._logger = logging.getLogger(self._ble_device.address.replace(":", "-"))
        self._client: BleakClientWithServiceCache | None = None
        self._read_char: BleakGATTCharacteristic | None = None
        self._write_char: BleakGATTCharacteristic | None = None
        self._operation_lock = asyncio.Lock()
        self._expected_disconnect = False

    @property
    def address(self) -> str:
        return self._ble_device.address

    @property
    def name(self) -> str:  # type: ignore[override]
        return self._ble_device.name or self._ble_device.address

    @property
    def rssi(self) -> int | None:
        if self._advertisement_data:
            return self._advertisement_data.rssi
        return None

    def _resolve_characteristics(self, services: BleakGATTServiceCollection) -> bool:
        self._read_char = None
        for uuid in self._read_uuids:
            if char := services.get_characteristic(uuid):
                self._read_char = char
                break
        self._write_char = None
        for uuid in self._write_uuids:
            if char := services.get_characteristic(uuid):
                self._write_char = char
                break
        return bool(self._read_char and self._write_char)

    async def open(self, listener: TransportListener) -> None:
        self._listener = listener
        self._expected_disconnect = False
        self._logger.debug("%s: Connecting; RSSI: %s", self.name, self.rssi)
        try:
            client = await establish_connection(
                BleakClientWithServiceCache,
                self._ble_device,
                self.name,
                self._disconnected,
                max_attempts=CONNECT_ATTEMPTS,
                use_services_cache=True,
                ble_device_callback=lambda: self._ble_device,
            )
        except BleakNotFoundError as ex:
            raise TransportError(f"{self.name}: device not found") from ex
        except BLEAK_EXCEPTIONS as ex:
            raise TransportError(f"{self.name}: failed to connect: {ex}") from ex

        if not self._resolve_characteristics(client.services):
            self._expected_disconnect = True
            await client.disconnect()
            raise CharacteristicMissingError("Failed to resolve serial characteristics")

        self._client = client
        try:
            assert self._read_char is not None  # nosec
            await client.start_notify(self._read_char, self._notification_handler)
        except BLEAK_EXCEPTIONS as ex:
            await self.close()
            raise TransportError(f"{self.name}: notify failed: {ex}") from ex

        self._logger.debug("%s: Connected; RSSI: %s", self.name, self.rssi)
        listener.on_open()

    def _notification_handler(self, _sender: BleakGATTCharacteristic, data: bytearray) -> None:
        self._logger.debug("%s: Notify %r", self.name, bytes(data))
        if self._listener is not None:
            self._listener.on_data(bytes(data))

    def _disconnected(self, _client: BleakClientWithServiceCache) -> None:
        if self._expected_disconnect:
            self._logger.debug("%s: Disconnected; RSSI: %s", self.name, self.rssi)
            return
        self._logger.warning("%s: Unexpected disconnect; RSSI: %s", self.name, self.rssi)
        self._client = None
        if self._listener is not None:
            self._listener.on_closed()

    async def write(self, data: bytes) -> None:
        if self._client is None or self._write_char is None:
            raise TransportError(f"{self.name}: not connected")
        async with self._operation_lock:
            try:
                for i in range(0, len(data), BLE_WRITE_CHUNK):
                    await self._client.write_gatt_char(
                        self._write_char, data[i : i + BLE_WRITE_CHUNK], False
                    )
            except BLEAK_EXCEPTIONS as ex:
                self._logger.debug("%s: write failed", self.name, exc_info=True)
                raise TransportError(f"{self.name}: write failed: {ex}") from ex

    async def close(self) -> None:
        client = self._client
        read_char = self._read_char
        self._expected_disconnect = True
        self._client = None
        self._read_char = None
        self._write_char = None
        self._listener = None
        if client and client.is_connected:
            if read_char:
                try:
                    await client.stop_notify(read_char)
                except (BleakError, KeyError, ValueError):
                    self._logger.debug("%s: stop_notify failed (already stopped?)", self.name, exc_info=True)
            await client.disconnect()


# ────────────────────────────────────────────────────────────────
# Classic Bluetooth SPP (rfcomm / virtual COM port)
# ────────────────────────────────────────────────────────────────


class SppTransport(Transport):
    """Serial port bridge; a reader task drains the port into the listener."""

    def __init__(self, port: str, baudrate: int = SPP_BAUD_RATE) -> None:
        super().__init__()
        self.port = port
        self.baudrate = baudrate
        self.name = port
        self._logger = logging.getLogger(port.replace("/", "-").strip("-"))
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._read_task: asyncio.Task | None = None

    async def open(self, listener: TransportListener) -> None:
        self._listener = listener
        try:
            self._reader, self._writer = await serial_asyncio.open_serial_connection(
                url=self.port, baudrate=self.baudrate
            )
        except (serial.SerialException, OSError) as ex:
            raise TransportError(f"{self.port}: cannot open: {ex}") from ex
        self._logger.info("Serial opened on %s @ %d", self.port, self.baudrate)
        self._read_task = asyncio.create_task(self._read_loop())
        listener.on_open()

    async def _read_loop(self) -> None:
        assert self._reader is not None  # nosec
        try:
            while True:
                data = await self._reader.read(SPP_READ_SIZE)
                if not data:
                    self._logger.info("%s: stream ended", self.port)
                    if self._listener is not None:
                        self._listener.on_closed()
                    return
                if self._listener is not None:
                    self._listener.on_data(data)
        except (serial.SerialException, OSError) as ex:
            self._logger.warning("%s: stream error: %s", self.port, ex)
            if self._listener is not None:
                self._listener.on_error(TransportError(str(ex)))

    async def write(self, data: bytes) -> None:
        if self._writer is None:
            raise TransportError(f"{self.port}: not open")
        try:
            self._writer.write(data)
            await self._writer.drain()
        except (serial.SerialException, OSError) as ex:
            raise TransportError(f"{self.port}: write failed: {ex}") from ex

    async def close(self) -> None:
        self._listener = None
        task, self._read_task = self._read_task, None
        if task and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        writer, self._writer = self._writer, None
        self._reader = None
        if writer is not None:
            writer.close()


# ────────────────────────────────────────────────────────────────
# In-process firmware simulator
# ────────────────────────────────────────────────────────────────


class SimulatedTransport(Transport):
    """Loops writes through a ``PumpSimulator`` and feeds its replies back."""

    def __init__(self, simulator: "PumpSimulator | None" = None, chunk_size: int = 0) -> None:
        super().__init__()
        if simulator is None:
            from ..simulator import PumpSimulator

            simulator = PumpSimulator()
        self.simulator = simulator
        self.name = "simulator"
        self.chunk_size = chunk_size
        self.writes: List[bytes] = []
        self._open = False

    async def open(self, listener: TransportListener) -> None:
        self._listener = listener
        self._open = True
        self.simulator.attach(self._emit)
        listener.on_open()

    def _emit(self, data: bytes) -> None:
        if not self._open or self._listener is None:
            return
        listener = self._listener
        loop = asyncio.get_running_loop()
        if self.chunk_size > 0:
            for i in range(0, len(data), self.chunk_size):
                loop.call_soon(listener.on_data, data[i : i + self.chunk_size])
        else:
            loop.call_soon(listener.on_data, data)

    async def write(self, data: bytes) -> None:
        if not self._open:
            raise TransportError("simulator: not open")
        self.writes.append(data)
        self.simulator.receive(data)

    async def close(self) -> None:
        self._open = False
        self._listener = None
        self.simulator.detach()


# ────────────────────────────────────────────────────────────────
# Target resolution
# ────────────────────────────────────────────────────────────────


def is_serial_target(target: str) -> bool:
    upper = target.upper()
    return target.startswith("/dev/") or (upper.startswith("COM") and upper[3:].isdigit())


def make_transport(target: Union[str, BLEDevice]) -> Transport:
    """``sim://`` → simulator, serial path → SPP, anything else → BLE."""
    if isinstance(target, BLEDevice):
        return BleTransport(target)
    if target.startswith(SIM_SCHEME):
        return SimulatedTransport()
    if is_serial_target(target):
        return SppTransport(target)
    return BleTransport(target)
