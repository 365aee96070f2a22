# custom_components/testicool/pump_control/discovery.py
"""Find pumps: BLE advertisement scan and classic serial (SPP) ports."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError
from serial.tools import list_ports

from ..const import DEVICE_NAME_PATTERNS, HM10_SERVICE_UUID, SCAN_TIMEOUT, UART_SERVICE_UUID
from ..exception import TransportError

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveredDevice:
    id: str
    name: str
    rssi: int
    ble_device: Optional[BLEDevice] = None

    @property
    def signal_quality(self) -> str:
        if self.rssi > -50:
            return "Excellent"
        if self.rssi > -70:
            return "Good"
        if self.rssi > -85:
            return "Fair"
        return "Poor"


def matches_pump_name(name: str | None, patterns: Iterable[str] = DEVICE_NAME_PATTERNS) -> bool:
    if not name:
        return False
    lowered = name.lower()
    return any(p.lower() in lowered for p in patterns)


def advertises_serial_service(service_uuids: Iterable[str] | None) -> bool:
    wanted = {HM10_SERVICE_UUID.lower(), UART_SERVICE_UUID.lower()}
    return any(u.lower() in wanted for u in service_uuids or ())


class PumpScanner:
    """One-shot BLE scan with a fixed cutoff; keeps the last result."""

    def __init__(self, patterns: Sequence[str] = DEVICE_NAME_PATTERNS, show_all: bool = False) -> None:
        self.patterns = list(patterns)
        self.show_all = show_all
        self._devices: Dict[str, DiscoveredDevice] = {}
        self._scanning = False
        self._lock = asyncio.Lock()

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    @property
    def discovered_devices(self) -> List[DiscoveredDevice]:
        """Strongest signal first."""
        return sorted(self._devices.values(), key=lambda d: d.rssi, reverse=True)

    def add(self, device: DiscoveredDevice, service_uuids: Iterable[str] | None = None) -> bool:
        if not (
            self.show_all
            or matches_pump_name(device.name, self.patterns)
            or advertises_serial_service(service_uuids)
        ):
            return False
        self._devices[device.id] = device
        return True

    async def scan(self, timeout: float = SCAN_TIMEOUT) -> List[DiscoveredDevice]:
        async with self._lock:
            self._devices.clear()
            self._scanning = True
            _LOGGER.debug("BLE scan started (%ss)", timeout)
            try:
                found = await BleakScanner.discover(timeout=timeout, return_adv=True)
            except BleakError as ex:
                raise TransportError(f"BLE scan failed: {ex}") from ex
            finally:
                self._scanning = False

            for address, (ble_device, adv) in found.items():
                name = ble_device.name or adv.local_name or ""
                self.add(DiscoveredDevice(address, name, adv.rssi, ble_device), adv.service_uuids)
            _LOGGER.debug("BLE scan finished; %d pump(s) of %d device(s)", len(self._devices), len(found))
            return self.discovered_devices


def list_serial_ports() -> List[Dict[str, str]]:
    """Serial ports the OS knows about (rfcomm/COM ports of paired SPP modules)."""
    return [
        {
            "device": port.device,
            "description": port.description or "",
            "hwid": port.hwid or "",
        }
        for port in sorted(list_ports.comports(), key=lambda p: p.device)
    ]
