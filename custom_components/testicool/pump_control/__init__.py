# custom_components/testicool/pump_control/__init__.py
"""Testicool pump control: line protocol, connection session, state and sessions."""
from __future__ import annotations

from .framing import LineFramer  # noqa: F401
from .protocol import Command, decode_line, encode  # noqa: F401
from .state import ControlSource, DeviceState, DeviceStateStore  # noqa: F401
from .session import SessionRecorder  # noqa: F401
from .device import ConnectionState, PumpDevice  # noqa: F401

__all__ = [
    "LineFramer",
    "Command",
    "decode_line",
    "encode",
    "ControlSource",
    "DeviceState",
    "DeviceStateStore",
    "SessionRecorder",
    "ConnectionState",
    "PumpDevice",
]
