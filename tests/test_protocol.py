"""Command encoding and line decoding."""

from __future__ import annotations

import pytest

from custom_components.testicool.pump_control.protocol import (
    Ack,
    Command,
    Error,
    Hello,
    ManualNotice,
    PumpNotice,
    SpeedNotice,
    Status,
    Temperature,
    Unknown,
    decode_line,
    describe_error,
    encode,
    encode_bytes,
    percent_to_speed,
    speed_to_percent,
)

# ────────────────────────────────────────────────────────────────
# encode
# ────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "command, line",
    [
        (Command.turn_on(), "ON\n"),
        (Command.turn_off(), "OFF\n"),
        (Command.set_speed(180), "SPEED:180\n"),
        (Command.request_status(), "STATUS\n"),
        (Command.request_temperature(), "TEMP\n"),
        (Command.raw("  HELLO  "), "HELLO\n"),
    ],
)
def test_encode(command, line):
    assert encode(command) == line


def test_set_speed_clamps():
    assert encode(Command.set_speed(300)) == encode(Command.set_speed(255)) == "SPEED:255\n"
    assert encode(Command.set_speed(-5)) == encode(Command.set_speed(0)) == "SPEED:0\n"


def test_encode_bytes_is_utf8():
    assert encode_bytes(Command.set_speed(42)) == b"SPEED:42\n"


def test_raw_command_must_be_one_line():
    with pytest.raises(ValueError):
        encode(Command.raw("ON\nOFF"))


def test_percent_conversions():
    assert percent_to_speed(0) == 0
    assert percent_to_speed(100) == 255
    assert percent_to_speed(150) == 255
    assert percent_to_speed(70) == 179
    assert percent_to_speed(30) == 77
    assert speed_to_percent(255) == 100


# ────────────────────────────────────────────────────────────────
# STATUS
# ────────────────────────────────────────────────────────────────


def test_full_status():
    msg = decode_line(
        "STATUS:{State:ON,Speed:70%,Runtime:5m,Remaining:25m,WaterTemp:10.0C,SkinTemp:34.5C}"
    )
    assert isinstance(msg, Status)
    assert msg.pump_on is True
    assert msg.speed == 179
    assert msg.runtime_seconds == 300
    assert msg.remaining_seconds == 1500
    assert msg.water_temp == 10.0
    assert msg.skin_temp == 34.5


def test_minimal_status_defaults():
    msg = decode_line("STATUS:{State:OFF}")
    assert msg == Status(pump_on=False)
    assert msg.speed == 0
    assert msg.runtime_seconds == 0
    assert msg.remaining_seconds == 1800
    assert msg.water_temp is None
    assert msg.skin_temp is None


def test_status_without_braces_and_reordered():
    msg = decode_line("STATUS:SkinTemp:33.0C,State:ON,Runtime:2m")
    assert msg.pump_on is True
    assert msg.runtime_seconds == 120
    assert msg.skin_temp == 33.0
    assert msg.water_temp is None


def test_status_malformed_fields_are_dropped_individually():
    msg = decode_line("STATUS:{State:ON,Speed:fast%,Runtime:xm,WaterTemp:11.5C,SkinTemp:??C}")
    assert isinstance(msg, Status)
    assert msg.speed == 0
    assert msg.runtime_seconds == 0
    assert msg.water_temp == 11.5
    assert msg.skin_temp is None


def test_status_legacy_temp_key_fills_water():
    msg = decode_line("STATUS:{State:OFF,Temp:12.5C}")
    assert msg.water_temp == 12.5
    assert msg.skin_temp is None


@pytest.mark.parametrize(
    "line",
    ["STATUS:{Speed:50%}", "STATUS:{State:MAYBE}", "STATUS:{State:ERROR,WaterTemp:1.0C}", "STATUS:"],
)
def test_status_without_valid_state_is_dropped(line):
    assert decode_line(line) is None


def test_non_finite_numbers_are_ignored():
    msg = decode_line("STATUS:{State:ON,Speed:nan%,WaterTemp:infC}")
    assert msg.speed == 0
    assert msg.water_temp is None


# ────────────────────────────────────────────────────────────────
# TEMP
# ────────────────────────────────────────────────────────────────


def test_dual_temperature():
    msg = decode_line("TEMP:{Water:10.0C,Skin:34.5C}")
    assert isinstance(msg, Temperature)
    assert (msg.water, msg.skin) == (10.0, 34.5)


def test_legacy_temperature_is_water_only():
    msg = decode_line("TEMP:34.5C")
    assert isinstance(msg, Temperature)
    assert msg.water == 34.5
    assert msg.skin is None


def test_partial_dual_temperature():
    msg = decode_line("TEMP:{Skin:33.1C}")
    assert msg.water is None
    assert msg.skin == 33.1


def test_unreadable_temperature_is_dropped():
    assert decode_line("TEMP:warm") is None
    assert decode_line("TEMP:{Water:x,Skin:y}") is None


# ────────────────────────────────────────────────────────────────
# notices, errors, misc
# ────────────────────────────────────────────────────────────────


def test_notices():
    assert decode_line("PUMP:ON") == PumpNotice(True)
    assert decode_line("PUMP:OFF") == PumpNotice(False)
    assert decode_line("MANUAL:ON") == ManualNotice(True)
    assert decode_line("MANUAL:OFF") == ManualNotice(False)
    assert decode_line("SPEED:200") == SpeedNotice(200)
    assert decode_line("PUMP:SIDEWAYS") is None


def test_ack_is_exact():
    assert decode_line("OK") == Ack()
    assert isinstance(decode_line("OKAY"), Unknown)


def test_hello():
    assert decode_line("HELLO:Testicool_Prototype v1.0.0") == Hello("Testicool_Prototype v1.0.0")


@pytest.mark.parametrize(
    "code, message",
    [
        ("SAFETY_SHUTOFF", "Safety shutoff: Maximum runtime reached (30 minutes)"),
        ("OVERHEAT", "Overheat detected: Device stopped for safety"),
        ("PUMP_START_FAILED", "Pump failed to start. Check power connection."),
        ("PUMP_NOT_RUNNING", "Pump not running. Turn it on first."),
        ("INVALID_SPEED_VALUE", "Invalid speed value. Use 0-255."),
        ("UNKNOWN_COMMAND", "Command not recognized by device"),
        ("CMD_TOO_LONG", "Command too long"),
        ("BATTERY_LOW", "Error: BATTERY_LOW"),
    ],
)
def test_error_table(code, message):
    msg = decode_line(f"ERROR:{code}")
    assert msg == Error(code, message)
    assert describe_error(code) == message


def test_safety_codes():
    assert decode_line("ERROR:SAFETY_SHUTOFF").is_safety
    assert decode_line("ERROR:OVERHEAT").is_safety
    assert not decode_line("ERROR:CMD_TOO_LONG").is_safety


def test_anything_else_is_unknown():
    assert decode_line("Testicool Ready") == Unknown("Testicool Ready")
