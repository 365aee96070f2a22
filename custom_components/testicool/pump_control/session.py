# custom_components/testicool/pump_control/session.py
"""Cooling session clock, sample buffers and CSV export."""

from __future__ import annotations

import csv
import io
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Deque, FrozenSet, List, Optional, Sequence, Union

from ..const import (
    EXPORT_HEADER,
    EXPORT_MATCH_TOLERANCE,
    EXPORT_TIMESTAMP_FORMAT,
    SESSION_DURATION,
    SESSION_MAX_SAMPLES,
    SESSION_TICK_INTERVAL,
    SPEED_MAX,
)
from .scheduler import PeriodicTask, Scheduler
from .state import ALL_FIELDS, DeviceState, DeviceStateStore

_LOGGER = logging.getLogger(__name__)

SESSION_TASK = "session-clock"

Number = Union[int, float]


@dataclass(frozen=True)
class Sample:
    timestamp: datetime
    value: Number


def _nearest(samples: Sequence[Sample], when: datetime, tolerance: float) -> Optional[Sample]:
    best: Optional[Sample] = None
    best_gap = tolerance
    for sample in samples:
        gap = abs((sample.timestamp - when).total_seconds())
        if gap < best_gap:
            best, best_gap = sample, gap
    return best


def _mmss(seconds: int) -> str:
    return f"{seconds // 60}:{seconds % 60:02d}"


class SessionRecorder:
    """
    Times one cooling session and keeps the last ``max_samples`` temperature
    and speed readings. ``on_expired`` is called once when the countdown
    hits zero (the device wires it to a pump-off command).
    """

    def __init__(
        self,
        scheduler: Scheduler | None = None,
        on_expired: Callable[[], None] | None = None,
        clock: Callable[[], datetime] = datetime.now,
        tick_interval: float = SESSION_TICK_INTERVAL,
        max_samples: int = SESSION_MAX_SAMPLES,
    ) -> None:
        self._clock = clock
        self._on_expired = on_expired
        self._scheduler = scheduler or Scheduler()
        self._timer: PeriodicTask = self._scheduler.add(SESSION_TASK, tick_interval, self.tick)
        self._unsubscribe: Callable[[], None] | None = None

        self.active = False
        self.start_time: Optional[datetime] = None
        self.target_duration = SESSION_DURATION
        self.elapsed = 0
        self.remaining = SESSION_DURATION
        self.average_temperature = 0.0
        self.temperature_samples: Deque[Sample] = deque(maxlen=max_samples)
        self.speed_samples: Deque[Sample] = deque(maxlen=max_samples)

    # ────────────────────────────────────────────────────────────────
    # Session control
    # ────────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        """True while the clock ticks (active and not paused)."""
        return self._timer.running

    def start_session(self, duration: int = SESSION_DURATION) -> bool:
        if self.active:
            _LOGGER.debug("Session already active; start ignored")
            return False
        if duration <= 0:
            raise ValueError("duration must be positive")
        self.active = True
        self.start_time = self._clock()
        self.target_duration = int(duration)
        self.elapsed = 0
        self.remaining = self.target_duration
        self.temperature_samples.clear()
        self.speed_samples.clear()
        self.average_temperature = 0.0
        self._timer.start()
        _LOGGER.info("Session started; duration %ss", duration)
        return True

    def pause(self) -> None:
        self._timer.stop()
        _LOGGER.debug("Session paused")

    def resume(self) -> None:
        if not self.active:
            return
        self._timer.start()
        _LOGGER.debug("Session resumed")

    def stop(self) -> None:
        self._timer.stop()
        if self.active:
            _LOGGER.info(
                "Session stopped; elapsed %ss, avg %.1f°C, %d samples",
                self.elapsed,
                self.average_temperature,
                len(self.temperature_samples),
            )
        self.active = False

    def reset(self) -> None:
        self.stop()
        self.start_time = None
        self.elapsed = 0
        self.remaining = self.target_duration
        self.temperature_samples.clear()
        self.speed_samples.clear()
        self.average_temperature = 0.0

    def tick(self) -> None:
        """Advance the clock by one interval."""
        if not self.active:
            return
        self.elapsed += 1
        self.remaining = max(0, self.target_duration - self.elapsed)
        if self.remaining == 0:
            self.stop()
            _LOGGER.info("Session time is up; stopping pump")
            if self._on_expired is not None:
                self._on_expired()

    # ────────────────────────────────────────────────────────────────
    # Samples
    # ────────────────────────────────────────────────────────────────

    def record_temperature(self, value: float) -> None:
        if not self.active:
            return
        self.temperature_samples.append(Sample(self._clock(), float(value)))
        total = sum(s.value for s in self.temperature_samples)
        self.average_temperature = total / len(self.temperature_samples)

    def record_speed(self, value: int) -> None:
        if not self.active:
            return
        self.speed_samples.append(Sample(self._clock(), int(value)))

    def attach(self, store: DeviceStateStore) -> None:
        """Feed skin temperature and speed writes from ``store`` into the buffers."""
        self.detach()

        def _on_state(state: DeviceState, changed: FrozenSet[str]) -> None:
            if changed == ALL_FIELDS:
                return  # connection reset, not a reading
            if "skin_temp" in changed and state.skin_temp > 0:
                self.record_temperature(state.skin_temp)
            if "speed" in changed:
                self.record_speed(state.speed)

        self._unsubscribe = store.subscribe(_on_state)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ────────────────────────────────────────────────────────────────
    # Statistics
    # ────────────────────────────────────────────────────────────────

    @property
    def progress(self) -> float:
        if self.target_duration <= 0:
            return 0.0
        return self.elapsed / self.target_duration

    @property
    def average_duty_cycle(self) -> int:
        """Mean pump speed as a percentage of full PWM."""
        if not self.speed_samples:
            return 0
        mean = sum(s.value for s in self.speed_samples) / len(self.speed_samples)
        return int(mean / SPEED_MAX * 100)

    @property
    def formatted_elapsed(self) -> str:
        return _mmss(self.elapsed)

    @property
    def formatted_remaining(self) -> str:
        return _mmss(self.remaining)

    def summary(self) -> str:
        lines = [
            "Session Summary",
            "===============",
            f"Duration: {self.formatted_elapsed}",
            f"Average Temperature: {self.average_temperature:.1f}°C",
            f"Average Duty Cycle: {self.average_duty_cycle}%",
            f"Samples Collected: {len(self.temperature_samples)}",
        ]
        if self.start_time:
            lines.append(f"Start Time: {self.start_time.strftime('%Y-%m-%d %H:%M')}")
        return "\n".join(lines) + "\n"

    # ────────────────────────────────────────────────────────────────
    # Export
    # ────────────────────────────────────────────────────────────────

    def export_rows(self) -> List[List[str]]:
        timestamps = sorted(
            {s.timestamp for s in self.temperature_samples}
            | {s.timestamp for s in self.speed_samples}
        )
        rows: List[List[str]] = []
        for when in timestamps:
            start = self.start_time or when
            elapsed = int((when - start).total_seconds())
            temp = _nearest(self.temperature_samples, when, EXPORT_MATCH_TOLERANCE)
            speed = _nearest(self.speed_samples, when, EXPORT_MATCH_TOLERANCE)
            rows.append(
                [
                    when.strftime(EXPORT_TIMESTAMP_FORMAT),
                    str(elapsed),
                    f"{temp.value if temp else 0.0:.1f}",
                    str(int(speed.value) if speed else 0),
                ]
            )
        return rows

    def export_csv(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(EXPORT_HEADER)
        writer.writerows(self.export_rows())
        return buf.getvalue()

    def export_csv_file(self, path: Union[str, Path]) -> Path:
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(self.export_csv(), encoding="utf-8")
        return out
