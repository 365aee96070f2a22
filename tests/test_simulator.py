"""Firmware emulation and an end-to-end session over the simulated link."""

from __future__ import annotations

import asyncio

from conftest import settle
from custom_components.testicool.pump_control.device.pump_device import PumpDevice
from custom_components.testicool.pump_control.device.transport import (
    BleTransport,
    SimulatedTransport,
    SppTransport,
    is_serial_target,
    make_transport,
)
from custom_components.testicool.pump_control.protocol import PumpNotice, SpeedNotice, Status, Temperature
from custom_components.testicool.pump_control.simulator import PumpSimulator


class Clock:
    def __init__(self) -> None:
        self.t = 1000.0

    def __call__(self) -> float:
        return self.t


def _sim(**kwargs):
    out = []
    sim = PumpSimulator(hello=None, **kwargs)
    sim.attach(lambda data: out.append(data.decode("utf-8")))
    return sim, out


def test_hello_on_attach():
    out = []
    PumpSimulator().attach(lambda data: out.append(data))
    assert out == [b"HELLO:Testicool_Prototype v1.0.0\r\n"]


def test_on_off_replies():
    sim, out = _sim()
    sim.receive(b"ON\n")
    sim.receive(b"OFF\r\n")
    assert out == ["OK\r\n", "PUMP:ON\r\n", "OK\r\n", "PUMP:OFF\r\n"]


def test_speed_requires_running_pump():
    sim, out = _sim()
    sim.receive(b"SPEED:100\n")
    sim.receive(b"ON\nSPEED:300\nSPEED:100\n")
    assert out == [
        "ERROR:PUMP_NOT_RUNNING\r\n",
        "OK\r\n",
        "PUMP:ON\r\n",
        "ERROR:INVALID_SPEED_VALUE\r\n",
        "OK\r\n",
        "SPEED:100\r\n",
    ]
    assert sim.speed == 100


def test_status_lines():
    clock = Clock()
    sim, out = _sim(clock=clock)
    sim.receive(b"STATUS\n")
    sim.receive(b"ON\n")
    clock.t += 330
    sim.receive(b"STATUS\nTEMP\n")
    assert out[0] == "STATUS:{State:OFF,WaterTemp:12.0C,SkinTemp:34.0C}\r\n"
    assert out[3] == (
        "STATUS:{State:ON,Speed:70%,Runtime:5m,Remaining:24m,WaterTemp:12.0C,SkinTemp:34.0C}\r\n"
    )
    assert out[4] == "TEMP:{Water:12.0C,Skin:34.0C}\r\n"


def test_runtime_cap_trips_safety_shutoff():
    clock = Clock()
    sim, out = _sim(clock=clock)
    sim.receive(b"ON\n")
    clock.t += 1800
    sim.receive(b"STATUS\n")
    assert out[2] == "ERROR:SAFETY_SHUTOFF\r\n"
    assert out[3].startswith("STATUS:{State:ERROR,")
    sim.receive(b"ON\n")
    assert out[-1] == "ERROR:PUMP_START_FAILED\r\n"
    sim.clear_error()
    sim.receive(b"ON\n")
    assert out[-1] == "PUMP:ON\r\n"


def test_command_too_long_and_unknown():
    sim, out = _sim()
    sim.receive(b"X" * 40 + b"\n")
    sim.receive(b"DANCE\n")
    assert out[0] == "ERROR:CMD_TOO_LONG\r\n"
    assert out[-1] == "ERROR:UNKNOWN_COMMAND\r\n"


def test_manual_button():
    sim, out = _sim()
    sim.press_button()
    sim.press_button()
    assert out == ["MANUAL:ON\r\n", "MANUAL:OFF\r\n"]


def test_target_resolution():
    assert is_serial_target("/dev/rfcomm0")
    assert is_serial_target("COM7")
    assert not is_serial_target("COMPUTER")
    assert not is_serial_target("AA:BB:CC:DD:EE:FF")
    assert isinstance(make_transport("sim://pump"), SimulatedTransport)
    assert isinstance(make_transport("/dev/rfcomm0"), SppTransport)
    assert isinstance(make_transport("AA:BB:CC:DD:EE:FF"), BleTransport)


def test_end_to_end_over_simulated_link():
    async def run():
        sim = PumpSimulator()
        dev = PumpDevice(
            transport_factory=lambda target: SimulatedTransport(sim, chunk_size=7),
            status_interval=60,
            temperature_interval=60,
        )
        await dev.connect("sim://pump")
        await settle(10)
        idle = dev.device_state

        waiter = asyncio.ensure_future(dev.wait_for_message(PumpNotice, timeout=1.0))
        assert await dev.turn_pump_on()
        notice = await waiter

        waiter = asyncio.ensure_future(dev.wait_for_message(SpeedNotice, timeout=1.0))
        assert await dev.set_pump_speed(200)
        echo = await waiter

        waiter = asyncio.ensure_future(dev.wait_for_message(Status, timeout=1.0))
        await dev.request_status()
        status = await waiter
        running = dev.device_state

        sim.press_button()
        await settle(10)
        manual = dev.device_state
        await dev.disconnect()
        return idle, notice, echo, status, running, manual

    idle, notice, echo, status, running, manual = asyncio.run(run())
    assert idle.water_temp == 12.0
    assert idle.skin_temp == 34.0
    assert idle.pump_on is False
    assert notice == PumpNotice(True)
    assert echo == SpeedNotice(200)
    assert status.pump_on is True
    assert running.pump_on is True
    assert running.last_update is not None
    assert manual.pump_on is False
    assert manual.control_source.value == "manual"


def test_simulated_temperature_poll():
    async def run():
        dev = PumpDevice(
            transport_factory=lambda target: SimulatedTransport(PumpSimulator(skin_temp=35.5)),
            status_interval=60,
            temperature_interval=60,
        )
        await dev.connect("sim://")
        waiter = asyncio.ensure_future(dev.wait_for_message(Temperature, timeout=1.0))
        await dev.request_temperature()
        reading = await waiter
        await dev.disconnect()
        return reading

    assert asyncio.run(run()).skin == 35.5


def test_overheat_cutoff():
    sim, out = _sim(skin_temp=36.0)
    sim.receive(b"ON\n")
    sim.skin_temp = 41.0
    sim.receive(b"TEMP\n")
    assert out[2] == "ERROR:OVERHEAT\r\n"
    assert sim.pump_on is False
    assert sim.error_latched is True
