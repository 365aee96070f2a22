# custom_components/testicool/pump_control/protocol.py
"""Line protocol spoken by the Testicool pump firmware.

Host → pump (one line each, ``\\n`` terminated):
    ON | OFF | SPEED:<0-255> | STATUS | TEMP | <raw text>

Pump → host:
    STATUS:{State:ON,Speed:70%,Runtime:5m,Remaining:25m,WaterTemp:10.0C,SkinTemp:34.5C}
    TEMP:{Water:10.0C,Skin:34.5C}      (legacy: TEMP:34.5)
    PUMP:ON | PUMP:OFF
    MANUAL:ON | MANUAL:OFF
    SPEED:<n>
    ERROR:<code>
    OK
    HELLO:<text>
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple, Union

from ..const import MAX_RUNTIME_SECONDS, SPEED_MAX, SPEED_MIN
from ..exception import ProtocolError

__all__ = [
    "CommandKind", "Command", "encode", "encode_bytes", "clamp_speed",
    "TemperatureReading", "Status", "Temperature", "PumpNotice", "ManualNotice",
    "SpeedNotice", "Error", "Ack", "Hello", "Unknown", "ParsedMessage",
    "ERROR_MESSAGES", "SAFETY_ERROR_CODES", "describe_error", "decode_line",
    "percent_to_speed", "speed_to_percent",
]

_LOGGER = logging.getLogger(__name__)

# ────────────────────────────────────────────────────────────────
# Commands (host → pump)
# ────────────────────────────────────────────────────────────────


class CommandKind(Enum):
    TURN_ON = "ON"
    TURN_OFF = "OFF"
    SET_SPEED = "SPEED"
    REQUEST_STATUS = "STATUS"
    REQUEST_TEMPERATURE = "TEMP"
    RAW = "RAW"


def clamp_speed(speed: Union[int, float]) -> int:
    """Clamp to the PWM byte range."""
    return max(SPEED_MIN, min(SPEED_MAX, int(speed)))


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    speed: int = 0
    text: str = ""

    @classmethod
    def turn_on(cls) -> "Command":
        return cls(CommandKind.TURN_ON)

    @classmethod
    def turn_off(cls) -> "Command":
        return cls(CommandKind.TURN_OFF)

    @classmethod
    def set_speed(cls, speed: Union[int, float]) -> "Command":
        return cls(CommandKind.SET_SPEED, speed=clamp_speed(speed))

    @classmethod
    def request_status(cls) -> "Command":
        return cls(CommandKind.REQUEST_STATUS)

    @classmethod
    def request_temperature(cls) -> "Command":
        return cls(CommandKind.REQUEST_TEMPERATURE)

    @classmethod
    def raw(cls, text: str) -> "Command":
        return cls(CommandKind.RAW, text=text)


def encode(command: Command) -> str:
    """Render ``command`` as exactly one newline-terminated line."""
    kind = command.kind
    if kind is CommandKind.SET_SPEED:
        body = f"SPEED:{clamp_speed(command.speed)}"
    elif kind is CommandKind.RAW:
        body = command.text.strip()
        if "\n" in body or "\r" in body:
            raise ValueError("Raw command must be a single line")
    else:
        body = kind.value
    return body + "\n"


def encode_bytes(command: Command) -> bytes:
    return encode(command).encode("utf-8")


# ────────────────────────────────────────────────────────────────
# Parsed messages (pump → host)
# ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TemperatureReading:
    """Water/skin pair; a legacy single reading only fills ``water``."""

    water: Optional[float] = None
    skin: Optional[float] = None

    @classmethod
    def legacy(cls, value: float) -> "TemperatureReading":
        return cls(water=value)

    @property
    def empty(self) -> bool:
        return self.water is None and self.skin is None


@dataclass(frozen=True)
class Status:
    pump_on: bool
    speed: int = 0
    runtime_min: int = 0
    remaining_min: int = MAX_RUNTIME_SECONDS // 60
    temperature: Optional[TemperatureReading] = None

    @property
    def runtime_seconds(self) -> int:
        return self.runtime_min * 60

    @property
    def remaining_seconds(self) -> int:
        return self.remaining_min * 60

    @property
    def water_temp(self) -> Optional[float]:
        return self.temperature.water if self.temperature else None

    @property
    def skin_temp(self) -> Optional[float]:
        return self.temperature.skin if self.temperature else None


@dataclass(frozen=True)
class Temperature:
    reading: TemperatureReading

    @property
    def water(self) -> Optional[float]:
        return self.reading.water

    @property
    def skin(self) -> Optional[float]:
        return self.reading.skin


@dataclass(frozen=True)
class PumpNotice:
    on: bool


@dataclass(frozen=True)
class ManualNotice:
    on: bool


@dataclass(frozen=True)
class SpeedNotice:
    speed: int


@dataclass(frozen=True)
class Error:
    code: str
    message: str

    @property
    def is_safety(self) -> bool:
        return self.code in SAFETY_ERROR_CODES


@dataclass(frozen=True)
class Ack:
    pass


@dataclass(frozen=True)
class Hello:
    raw: str


@dataclass(frozen=True)
class Unknown:
    raw: str


ParsedMessage = Union[
    Status, Temperature, PumpNotice, ManualNotice, SpeedNotice, Error, Ack, Hello, Unknown
]

# ────────────────────────────────────────────────────────────────
# Error codes
# ────────────────────────────────────────────────────────────────
ERROR_MESSAGES: Dict[str, str] = {
    "SAFETY_SHUTOFF": "Safety shutoff: Maximum runtime reached (30 minutes)",
    "OVERHEAT": "Overheat detected: Device stopped for safety",
    "PUMP_START_FAILED": "Pump failed to start. Check power connection.",
    "PUMP_NOT_RUNNING": "Pump not running. Turn it on first.",
    "INVALID_SPEED_VALUE": "Invalid speed value. Use 0-255.",
    "UNKNOWN_COMMAND": "Command not recognized by device",
    "CMD_TOO_LONG": "Command too long",
}

# max-runtime and overheat trip the shutoff latch
SAFETY_ERROR_CODES = frozenset({"SAFETY_SHUTOFF", "OVERHEAT"})


def describe_error(code: str) -> str:
    return ERROR_MESSAGES.get(code, f"Error: {code}")


# ────────────────────────────────────────────────────────────────
# Field helpers
# ────────────────────────────────────────────────────────────────


def percent_to_speed(percent: float) -> int:
    """
    Firmware reports speed in percent; the host works in PWM bytes.

    Halves round up (30% is 77), unlike ``round`` which would give 76.
    """
    return clamp_speed(math.floor(percent * SPEED_MAX / 100.0 + 0.5))


def speed_to_percent(speed: int) -> int:
    return int(speed / SPEED_MAX * 100)


def _parse_number(value: str, suffixes: Tuple[str, ...] = ()) -> float:
    text = value.strip()
    for suffix in suffixes:
        if text.endswith(suffix):
            text = text[: -len(suffix)].strip()
            break
    try:
        number = float(text)
    except ValueError as ex:
        raise ProtocolError(f"not a number: {value!r}") from ex
    if not math.isfinite(number):
        raise ProtocolError(f"not a finite number: {value!r}")
    return number


def _optional_number(value: Optional[str], suffixes: Tuple[str, ...] = ()) -> Optional[float]:
    if value is None:
        return None
    try:
        return _parse_number(value, suffixes)
    except ProtocolError as ex:
        _LOGGER.debug("Ignoring field: %s", ex)
        return None


def _iter_pairs(payload: str) -> Iterator[Tuple[str, str]]:
    body = payload.strip()
    if body.startswith("{"):
        body = body[1:]
    if body.endswith("}"):
        body = body[:-1]
    for item in body.split(","):
        key, sep, value = item.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        yield key, value.strip()


def _on_off(value: str) -> Optional[bool]:
    token = value.strip().upper()
    if token == "ON":
        return True
    if token == "OFF":
        return False
    return None


_TEMP_SUFFIXES = ("°C", "C")
_MINUTE_SUFFIXES = ("min", "m")

# ────────────────────────────────────────────────────────────────
# Decoders
# ────────────────────────────────────────────────────────────────


def _decode_status(payload: str) -> Optional[Status]:
    fields = dict(_iter_pairs(payload))
    state = fields.get("State", "")
    if state not in ("ON", "OFF"):
        # firmware reports State:ERROR after a safety trip; ERROR:<code> carries that
        _LOGGER.debug("STATUS without usable State: %r", payload)
        return None
    pump_on = state == "ON"

    percent = _optional_number(fields.get("Speed"), ("%",))
    runtime = _optional_number(fields.get("Runtime"), _MINUTE_SUFFIXES)
    remaining = _optional_number(fields.get("Remaining"), _MINUTE_SUFFIXES)
    water = _optional_number(fields.get("WaterTemp"), _TEMP_SUFFIXES)
    if water is None:
        water = _optional_number(fields.get("Temp"), _TEMP_SUFFIXES)
    skin = _optional_number(fields.get("SkinTemp"), _TEMP_SUFFIXES)

    reading = TemperatureReading(water=water, skin=skin)
    return Status(
        pump_on=pump_on,
        speed=percent_to_speed(percent) if percent is not None else 0,
        runtime_min=max(0, int(runtime)) if runtime is not None else 0,
        remaining_min=max(0, int(remaining)) if remaining is not None else MAX_RUNTIME_SECONDS // 60,
        temperature=None if reading.empty else reading,
    )


def _decode_temperature(payload: str) -> Optional[Temperature]:
    body = payload.strip()
    if "{" in body or ":" in body:
        fields = dict(_iter_pairs(body))
        reading = TemperatureReading(
            water=_optional_number(fields.get("Water"), _TEMP_SUFFIXES),
            skin=_optional_number(fields.get("Skin"), _TEMP_SUFFIXES),
        )
    else:
        value = _optional_number(body, _TEMP_SUFFIXES)
        reading = TemperatureReading.legacy(value) if value is not None else TemperatureReading()
    if reading.empty:
        _LOGGER.debug("TEMP without readable value: %r", payload)
        return None
    return Temperature(reading)


def _decode_speed(payload: str) -> Optional[SpeedNotice]:
    value = _optional_number(payload)
    if value is None:
        return None
    return SpeedNotice(clamp_speed(value))


def _decode_switch(payload: str, cls):
    on = _on_off(payload)
    if on is None:
        _LOGGER.debug("Bad ON/OFF payload: %r", payload)
        return None
    return cls(on)


def decode_line(line: str) -> Optional[ParsedMessage]:
    """
    Classify one trimmed line by its literal prefix.

    Returns ``None`` for a known prefix whose payload is unusable (the line
    is dropped) and ``Unknown`` for anything the grammar does not cover.
    """
    if line == "OK":
        return Ack()
    if line.startswith("STATUS:"):
        return _decode_status(line[len("STATUS:"):])
    if line.startswith("TEMP:"):
        return _decode_temperature(line[len("TEMP:"):])
    if line.startswith("PUMP:"):
        return _decode_switch(line[len("PUMP:"):], PumpNotice)
    if line.startswith("MANUAL:"):
        return _decode_switch(line[len("MANUAL:"):], ManualNotice)
    if line.startswith("SPEED:"):
        return _decode_speed(line[len("SPEED:"):])
    if line.startswith("ERROR:"):
        code = line[len("ERROR:"):].strip()
        return Error(code=code, message=describe_error(code))
    if line.startswith("HELLO:"):
        return Hello(raw=line[len("HELLO:"):].strip())
    _LOGGER.debug("Unknown line: %r", line)
    return Unknown(raw=line)
