"""Shared fakes for the pump control tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import List, Optional

import pytest

from custom_components.testicool.exception import TransportError
from custom_components.testicool.pump_control.device.transport import Transport, TransportListener


class FakeTransport(Transport):
    """Records writes; the test pushes device output with ``feed``."""

    def __init__(self, fail_open: bool = False, ready: bool = True) -> None:
        super().__init__()
        self.fail_open = fail_open
        self.ready = ready
        self.fail_write = False
        self.writes: List[bytes] = []
        self.opened = False
        self.closed = False

    async def open(self, listener: TransportListener) -> None:
        if self.fail_open:
            raise TransportError("fake: unreachable")
        self._listener = listener
        self.opened = True
        if self.ready:
            listener.on_open()

    async def write(self, data: bytes) -> None:
        if self.fail_write:
            raise TransportError("fake: write failed")
        self.writes.append(data)

    async def close(self) -> None:
        self.closed = True

    # -------- test helpers

    @property
    def lines(self) -> List[str]:
        return [w.decode("utf-8") for w in self.writes]

    def feed(self, data: bytes | str) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        assert self._listener is not None
        self._listener.on_data(data)

    def drop(self) -> None:
        assert self._listener is not None
        self._listener.on_closed()


class FakeClock:
    """Datetime source that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 5, 1, 10, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


async def settle(rounds: int = 5) -> None:
    """Let spawned send tasks and call_soon callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def loop():
    lp = asyncio.new_event_loop()
    yield lp
    lp.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
