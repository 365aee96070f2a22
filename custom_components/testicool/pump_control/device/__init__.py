# custom_components/testicool/pump_control/device/__init__.py
"""Pump device package."""
from __future__ import annotations

from .pump_device import (  # noqa: F401
    ConnectionState,
    PumpDevice,
    app,
    _handle_connect_errors,
)
from .transport import (  # noqa: F401
    BleTransport,
    SimulatedTransport,
    SppTransport,
    Transport,
    TransportListener,
    make_transport,
)

__all__ = [
    "ConnectionState",
    "PumpDevice",
    "app",
    "_handle_connect_errors",
    "Transport",
    "TransportListener",
    "BleTransport",
    "SppTransport",
    "SimulatedTransport",
    "make_transport",
]
