"""Periodic timers and the status poller."""

from __future__ import annotations

import asyncio

import pytest

from custom_components.testicool.pump_control.poller import (
    STATUS_TASK,
    TEMPERATURE_TASK,
    StatusPoller,
)
from custom_components.testicool.pump_control.scheduler import PeriodicTask, Scheduler


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        PeriodicTask("bad", 0, lambda: None)


def test_task_repeats_until_stopped():
    async def run():
        calls = []
        task = PeriodicTask("tick", 0.01, lambda: calls.append(1))
        task.start()
        await asyncio.sleep(0.055)
        task.stop()
        count = len(calls)
        await asyncio.sleep(0.03)
        return count, len(calls), task.running

    count, after, running = asyncio.run(run())
    assert count >= 3
    assert after == count
    assert running is False


def test_fire_after_stop_is_noop(loop):
    calls = []
    task = PeriodicTask("tick", 10, lambda: calls.append(1), loop=loop)
    task.start()
    task.stop()
    # a timer that already left the loop's queue still runs _fire
    task._fire()
    assert calls == []
    assert task.running is False


def test_fire_now(loop):
    calls = []
    task = PeriodicTask("tick", 10, lambda: calls.append(1), loop=loop)
    task.start(fire_now=True)
    assert calls == [1]
    task.stop()


def test_callback_exception_keeps_timer_alive(loop):
    def broken():
        raise RuntimeError("boom")

    task = PeriodicTask("tick", 10, broken, loop=loop)
    task.start(fire_now=True)
    assert task.running
    task._fire()
    assert task.running
    task.stop()


def test_scheduler_tasks_are_independent(loop):
    scheduler = Scheduler(loop=loop)
    scheduler.add("a", 10, lambda: None)
    scheduler.add("b", 10, lambda: None)
    scheduler.start("a")
    scheduler.start("b")
    scheduler.stop("a")
    assert not scheduler.is_running("a")
    assert scheduler.is_running("b")
    scheduler.stop_all()
    assert not scheduler.is_running("b")
    assert not scheduler.is_running("missing")


def test_poller_fires_immediately_then_stops(loop):
    calls = []
    scheduler = Scheduler(loop=loop)
    poller = StatusPoller(
        scheduler,
        lambda: calls.append("STATUS"),
        lambda: calls.append("TEMP"),
    )
    poller.start()
    assert sorted(calls) == ["STATUS", "TEMP"]
    assert poller.running
    assert scheduler.get(STATUS_TASK).interval == 5.0
    assert scheduler.get(TEMPERATURE_TASK).interval == 1.0

    poller.stop()
    poller.stop()
    assert not poller.running
    scheduler.get(STATUS_TASK)._fire()
    scheduler.get(TEMPERATURE_TASK)._fire()
    assert len(calls) == 2


def test_poller_ticks_on_its_own_intervals():
    async def run():
        calls = []
        poller = StatusPoller(
            Scheduler(),
            lambda: calls.append("STATUS"),
            lambda: calls.append("TEMP"),
            status_interval=0.05,
            temperature_interval=0.01,
        )
        poller.start()
        await asyncio.sleep(0.075)
        poller.stop()
        return calls

    calls = asyncio.run(run())
    assert calls.count("STATUS") >= 2
    assert calls.count("TEMP") > calls.count("STATUS")
