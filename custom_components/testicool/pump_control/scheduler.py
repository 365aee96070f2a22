# custom_components/testicool/pump_control/scheduler.py
"""Cancellable periodic tasks on the asyncio loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Optional

_LOGGER = logging.getLogger(__name__)


class PeriodicTask:
    """
    Repeating ``loop.call_later`` timer.

    ``stop()`` cancels the pending handle and raises a stopped flag that is
    checked again when the timer fires, so a tick racing a stop is a no-op.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], None],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._owner_loop = loop
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None
        self._stopped = True

    @property
    def running(self) -> bool:
        return not self._stopped

    def start(self, fire_now: bool = False) -> None:
        self.stop()
        self._loop = self._owner_loop or asyncio.get_running_loop()
        self._stopped = False
        self._schedule()
        if fire_now:
            self._run_callback()

    def stop(self) -> None:
        self._stopped = True
        if self._handle:
            self._handle.cancel()
            self._handle = None

    def _schedule(self) -> None:
        assert self._loop is not None  # nosec
        self._handle = self._loop.call_later(self.interval, self._fire)

    def _fire(self) -> None:
        self._handle = None
        if self._stopped:
            return
        self._schedule()
        self._run_callback()

    def _run_callback(self) -> None:
        try:
            self._callback()
        except Exception:
            _LOGGER.exception("Periodic task %s failed", self.name)


class Scheduler:
    """Owns every named timer of one device so they can be torn down together."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: Dict[str, PeriodicTask] = {}

    def add(self, name: str, interval: float, callback: Callable[[], None]) -> PeriodicTask:
        if name in self._tasks:
            self._tasks[name].stop()
        task = PeriodicTask(name, interval, callback, self._loop)
        self._tasks[name] = task
        return task

    def get(self, name: str) -> Optional[PeriodicTask]:
        return self._tasks.get(name)

    def start(self, name: str, fire_now: bool = False) -> None:
        self._tasks[name].start(fire_now=fire_now)

    def stop(self, name: str) -> None:
        task = self._tasks.get(name)
        if task:
            task.stop()

    def stop_all(self) -> None:
        for task in self._tasks.values():
            task.stop()

    def is_running(self, name: str) -> bool:
        task = self._tasks.get(name)
        return bool(task and task.running)
