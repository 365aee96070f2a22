# custom_components/testicool/pump_control/state.py
"""Observable device state and the reconciliation policy that feeds it."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from ..const import DEFAULT_SPEED, MAX_RUNTIME_SECONDS, SPEED_MAX
from .protocol import (
    Ack,
    Error,
    Hello,
    ManualNotice,
    ParsedMessage,
    PumpNotice,
    SpeedNotice,
    Status,
    Temperature,
    Unknown,
    clamp_speed,
)

_LOGGER = logging.getLogger(__name__)


class ControlSource(Enum):
    APP = "app"
    MANUAL = "manual"


@dataclass
class DeviceState:
    pump_on: bool = False
    speed: int = DEFAULT_SPEED
    water_temp: float = 0.0
    skin_temp: float = 0.0
    runtime_seconds: int = 0
    remaining_seconds: int = MAX_RUNTIME_SECONDS
    last_update: Optional[datetime] = None
    error: Optional[str] = None
    safety_shutoff: bool = False
    control_source: ControlSource = ControlSource.APP

    @property
    def speed_percent(self) -> int:
        return int(self.speed / SPEED_MAX * 100)

    @property
    def runtime_progress(self) -> float:
        return min(self.runtime_seconds / MAX_RUNTIME_SECONDS, 1.0)

    @property
    def formatted_runtime(self) -> str:
        return f"{self.runtime_seconds // 60}m {self.runtime_seconds % 60}s"

    @property
    def formatted_remaining(self) -> str:
        return f"{self.remaining_seconds // 60}m {self.remaining_seconds % 60}s"

    @property
    def formatted_water_temp(self) -> str:
        return f"{self.water_temp:.1f}°C"

    @property
    def formatted_skin_temp(self) -> str:
        return f"{self.skin_temp:.1f}°C"

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["control_source"] = self.control_source.value
        out["last_update"] = self.last_update.isoformat() if self.last_update else None
        return out


StateListener = Callable[[DeviceState, FrozenSet[str]], None]

# changed-set delivered by reset()
ALL_FIELDS: FrozenSet[str] = frozenset(f.name for f in fields(DeviceState))


class DeviceStateStore:
    """
    Single owner of the live ``DeviceState``.

    All writes go through ``apply``/``apply_optimistic``/``reset``/``clear_error``
    and happen on the event loop thread; listeners get a copy of the state
    plus the names of the fields that were written.

    Reconciliation is last-write-wins per field. There are no sequence
    numbers, so a stale STATUS can overwrite a fresher optimistic write.
    """

    def __init__(self, now: Callable[[], datetime] = datetime.now) -> None:
        self.now = now
        self._state = DeviceState()
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> DeviceState:
        """Snapshot; mutating it does not touch the store."""
        return replace(self._state)

    # -------- observers

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        if listener not in self._listeners:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _unsubscribe

    def _notify(self, changed: FrozenSet[str]) -> None:
        if not changed:
            return
        snapshot = self.state
        for listener in tuple(self._listeners):
            try:
                listener(snapshot, changed)
            except Exception:
                _LOGGER.debug("state listener raised", exc_info=True)

    # -------- writes

    def apply(self, message: ParsedMessage) -> FrozenSet[str]:
        """Reconcile one decoded device message; return the written fields."""
        changed: Dict[str, Any] = {}

        if isinstance(message, Status):
            changed["pump_on"] = message.pump_on
            changed["speed"] = clamp_speed(message.speed)
            changed["runtime_seconds"] = max(0, message.runtime_seconds)
            changed["remaining_seconds"] = max(0, message.remaining_seconds)
            if message.water_temp is not None:
                changed["water_temp"] = message.water_temp
            if message.skin_temp is not None:
                changed["skin_temp"] = message.skin_temp
            changed["last_update"] = self.now()
        elif isinstance(message, Temperature):
            if message.water is not None:
                changed["water_temp"] = message.water
            if message.skin is not None:
                changed["skin_temp"] = message.skin
        elif isinstance(message, PumpNotice):
            changed["pump_on"] = message.on
        elif isinstance(message, ManualNotice):
            changed["pump_on"] = message.on
            changed["control_source"] = ControlSource.MANUAL
        elif isinstance(message, SpeedNotice):
            changed["speed"] = clamp_speed(message.speed)
        elif isinstance(message, Error):
            changed["error"] = message.message
            if message.is_safety:
                changed["safety_shutoff"] = True
                changed["pump_on"] = False
        elif isinstance(message, (Ack, Hello, Unknown)):
            pass
        else:
            _LOGGER.debug("Unhandled message type: %r", message)

        return self._write(changed)

    def apply_optimistic(
        self, pump_on: Optional[bool] = None, speed: Optional[int] = None
    ) -> FrozenSet[str]:
        """Record the intent of an app command before the pump confirms it."""
        changed: Dict[str, Any] = {"control_source": ControlSource.APP}
        if pump_on is not None:
            changed["pump_on"] = pump_on
        if speed is not None:
            changed["speed"] = clamp_speed(speed)
        return self._write(changed)

    def clear_error(self) -> FrozenSet[str]:
        """Dismiss the current error and release the safety latch."""
        return self._write({"error": None, "safety_shutoff": False})

    def reset(self) -> None:
        self._state = DeviceState()
        self._notify(ALL_FIELDS)

    def _write(self, changed: Dict[str, Any]) -> FrozenSet[str]:
        for name, value in changed.items():
            setattr(self._state, name, value)
        written = frozenset(changed)
        self._notify(written)
        return written
