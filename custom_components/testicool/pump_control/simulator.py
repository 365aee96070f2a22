# custom_components/testicool/pump_control/simulator.py
"""In-process emulation of the pump firmware command handler.

Reproduces what the Arduino sketch answers on its Bluetooth serial line so
the CLI and the tests can run without hardware:

    ON      → OK, PUMP:ON            (ERROR:PUMP_START_FAILED after a safety trip)
    OFF     → OK, PUMP:OFF
    SPEED:n → OK, SPEED:n            (ERROR:PUMP_NOT_RUNNING / INVALID_SPEED_VALUE)
    STATUS  → STATUS:{State:..,[Speed,Runtime,Remaining,]WaterTemp:..C,SkinTemp:..C}
    TEMP    → TEMP:{Water:..C,Skin:..C}
    other   → ERROR:UNKNOWN_COMMAND
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from ..const import DEFAULT_SPEED, MAX_RUNTIME_SECONDS, OVERHEAT_TEMP_C, SPEED_MAX

_LOGGER = logging.getLogger(__name__)

# firmware command buffer is 32 bytes including the terminator
COMMAND_BUFFER_SIZE = 32


class PumpSimulator:
    """Firmware state machine: OFF, ON, ERROR (latched by the runtime cap)."""

    def __init__(
        self,
        water_temp: float = 12.0,
        skin_temp: float = 34.0,
        clock: Callable[[], float] = time.monotonic,
        hello: Optional[str] = "Testicool_Prototype v1.0.0",
    ) -> None:
        self.water_temp = water_temp
        self.skin_temp = skin_temp
        self._clock = clock
        self.hello = hello
        self.pump_on = False
        self.error_latched = False
        self.speed = DEFAULT_SPEED
        self.started_at: Optional[float] = None
        self.received: List[str] = []
        self._buffer = bytearray()
        self._sink: Optional[Callable[[bytes], None]] = None

    # -------- wiring

    def attach(self, sink: Callable[[bytes], None]) -> None:
        self._sink = sink
        if self.hello:
            self._send(f"HELLO:{self.hello}")

    def detach(self) -> None:
        self._sink = None
        self._buffer.clear()

    def _send(self, line: str) -> None:
        _LOGGER.debug("sim → %s", line)
        if self._sink is not None:
            self._sink((line + "\r\n").encode("utf-8"))

    # -------- serial input

    def receive(self, data: bytes) -> None:
        """Byte-wise command reader; CR or LF ends a command."""
        for byte in data:
            if byte in (0x0A, 0x0D):
                if self._buffer:
                    cmd = self._buffer.decode("utf-8", errors="replace")
                    self._buffer.clear()
                    self.handle_command(cmd)
            elif len(self._buffer) < COMMAND_BUFFER_SIZE - 1:
                self._buffer.append(byte)
            else:
                self._buffer.clear()
                self._send("ERROR:CMD_TOO_LONG")

    def handle_command(self, command: str) -> None:
        self.check_safety()
        self.received.append(command)
        cmd = command.strip().upper()
        if cmd == "ON":
            if self.error_latched:
                self._send("ERROR:PUMP_START_FAILED")
                return
            self._start()
            self._send("OK")
            self._send("PUMP:ON")
        elif cmd == "OFF":
            self._stop()
            self._send("OK")
            self._send("PUMP:OFF")
        elif cmd == "STATUS":
            self._send(self.status_line())
        elif cmd == "TEMP":
            self._send(f"TEMP:{{Water:{self.water_temp:.1f}C,Skin:{self.skin_temp:.1f}C}}")
        elif cmd.startswith("SPEED:"):
            self._set_speed(cmd[len("SPEED:"):])
        else:
            self._send("ERROR:UNKNOWN_COMMAND")

    # -------- pump

    def _start(self) -> None:
        if not self.pump_on:
            self.started_at = self._clock()
        self.pump_on = True

    def _stop(self) -> None:
        self.pump_on = False
        self.started_at = None

    def _set_speed(self, value: str) -> None:
        try:
            speed = int(value)
        except ValueError:
            speed = 0  # atoi semantics
        if not 0 <= speed <= SPEED_MAX:
            self._send("ERROR:INVALID_SPEED_VALUE")
            return
        if not self.pump_on:
            self._send("ERROR:PUMP_NOT_RUNNING")
            return
        self.speed = speed
        self._send("OK")
        self._send(f"SPEED:{speed}")

    @property
    def runtime_seconds(self) -> int:
        if not self.pump_on or self.started_at is None:
            return 0
        return int(self._clock() - self.started_at)

    def check_safety(self) -> bool:
        """Enforce the runtime cap and the simulated overtemperature cutoff."""
        if not self.pump_on:
            return False
        if self.runtime_seconds >= MAX_RUNTIME_SECONDS:
            code = "SAFETY_SHUTOFF"
        elif self.skin_temp >= OVERHEAT_TEMP_C:
            code = "OVERHEAT"
        else:
            return False
        self._stop()
        self.error_latched = True
        self._send(f"ERROR:{code}")
        return True

    def clear_error(self) -> None:
        self.error_latched = False

    def press_button(self) -> None:
        """Lid button toggles the pump and announces MANUAL:ON/OFF."""
        if self.pump_on:
            self._stop()
            self._send("MANUAL:OFF")
        elif not self.error_latched:
            self._start()
            self._send("MANUAL:ON")

    def status_line(self) -> str:
        if self.pump_on:
            runtime = self.runtime_seconds
            remaining = max(0, MAX_RUNTIME_SECONDS - runtime)
            body = (
                f"State:ON,Speed:{self.speed * 100 // SPEED_MAX}%,"
                f"Runtime:{runtime // 60}m,Remaining:{remaining // 60}m"
            )
        else:
            body = f"State:{'ERROR' if self.error_latched else 'OFF'}"
        return f"STATUS:{{{body},WaterTemp:{self.water_temp:.1f}C,SkinTemp:{self.skin_temp:.1f}C}}"
