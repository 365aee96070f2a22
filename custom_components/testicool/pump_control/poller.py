# custom_components/testicool/pump_control/poller.py
"""Keep-alive polling of status and temperature while connected."""

from __future__ import annotations

import logging
from typing import Callable

from ..const import STATUS_POLL_INTERVAL, TEMPERATURE_POLL_INTERVAL
from .scheduler import Scheduler

_LOGGER = logging.getLogger(__name__)

STATUS_TASK = "status-poll"
TEMPERATURE_TASK = "temperature-poll"


class StatusPoller:
    """Two independent timers: STATUS every 5 s, TEMP every second."""

    def __init__(
        self,
        scheduler: Scheduler,
        request_status: Callable[[], None],
        request_temperature: Callable[[], None],
        status_interval: float = STATUS_POLL_INTERVAL,
        temperature_interval: float = TEMPERATURE_POLL_INTERVAL,
    ) -> None:
        self._scheduler = scheduler
        scheduler.add(STATUS_TASK, status_interval, request_status)
        scheduler.add(TEMPERATURE_TASK, temperature_interval, request_temperature)

    @property
    def running(self) -> bool:
        return self._scheduler.is_running(STATUS_TASK) or self._scheduler.is_running(
            TEMPERATURE_TASK
        )

    def start(self) -> None:
        """Start both timers and fire one request of each right away."""
        self._scheduler.start(TEMPERATURE_TASK, fire_now=True)
        self._scheduler.start(STATUS_TASK, fire_now=True)
        _LOGGER.debug("Started periodic updates")

    def stop(self) -> None:
        was_running = self.running
        self._scheduler.stop(STATUS_TASK)
        self._scheduler.stop(TEMPERATURE_TASK)
        if was_running:
            _LOGGER.debug("Stopped periodic updates")
