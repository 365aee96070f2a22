"""Line framer: chunk independence, trimming, noise handling."""

from __future__ import annotations

import pytest

from custom_components.testicool.pump_control.framing import LineFramer

STREAM = (
    b"HELLO:Testicool_Prototype v1.0.0\r\n"
    b"OK\r\n"
    b"\r\n"
    b"STATUS:{State:ON,Speed:70%,Runtime:5m,Remaining:25m,WaterTemp:10.0C,SkinTemp:34.5C}\r\n"
    b"   TEMP:{Water:10.0C,Skin:34.5C}  \n"
    b"PUMP:OFF\n"
    b"partial"
)

EXPECTED = [
    "HELLO:Testicool_Prototype v1.0.0",
    "OK",
    "STATUS:{State:ON,Speed:70%,Runtime:5m,Remaining:25m,WaterTemp:10.0C,SkinTemp:34.5C}",
    "TEMP:{Water:10.0C,Skin:34.5C}",
    "PUMP:OFF",
]


def _feed_in_chunks(data: bytes, size: int):
    framer = LineFramer()
    out = []
    for i in range(0, len(data), size):
        out.extend(framer.feed(data[i : i + size]))
    return out, framer


def test_single_chunk():
    framer = LineFramer()
    assert framer.feed(STREAM) == EXPECTED
    assert framer.pending == len(b"partial")


@pytest.mark.parametrize("size", [1, 2, 3, 7, 20, 64])
def test_chunk_boundaries_do_not_matter(size):
    lines, framer = _feed_in_chunks(STREAM, size)
    assert lines == EXPECTED
    assert framer.pending == len(b"partial")


def test_every_split_point_matches_single_feed():
    for cut in range(len(STREAM) + 1):
        framer = LineFramer()
        lines = framer.feed(STREAM[:cut]) + framer.feed(STREAM[cut:])
        assert lines == EXPECTED, cut


def test_tail_is_held_until_delimiter():
    framer = LineFramer()
    assert framer.feed(b"PUMP:O") == []
    assert framer.feed(b"N") == []
    assert framer.feed(b"\n") == ["PUMP:ON"]
    assert framer.pending == 0


def test_control_characters_are_trimmed():
    framer = LineFramer()
    assert framer.feed(b"\x00\x07OK\x1b\r\n") == ["OK"]


def test_whitespace_only_lines_produce_nothing():
    framer = LineFramer()
    assert framer.feed(b"\n\r\n   \n\t\n") == []


def test_str_input_is_accepted():
    framer = LineFramer()
    assert framer.feed("TEMP:12.5C\n") == ["TEMP:12.5C"]


def test_undecodable_line_is_dropped():
    framer = LineFramer()
    assert framer.feed(b"\xff\xfe\xfd\nOK\n") == ["OK"]


def test_utf8_split_across_chunks():
    framer = LineFramer()
    data = "TEMP:12.5°C\n".encode("utf-8")
    cut = data.index(b"\xb0")
    assert framer.feed(data[:cut]) == []
    assert framer.feed(data[cut:]) == ["TEMP:12.5°C"]


def test_unterminated_flood_is_discarded_through_next_newline():
    framer = LineFramer(max_line_length=16)
    assert framer.feed(b"X" * 20) == []
    assert framer.pending == 0
    # rest of the runaway line is skipped, the next line survives
    assert framer.feed(b"YYYY\nOK\n") == ["OK"]


def test_overlong_complete_line_is_dropped():
    framer = LineFramer(max_line_length=8)
    assert framer.feed(b"0123456789ABCDEF\nOK\n") == ["OK"]


def test_reset_discards_buffer():
    framer = LineFramer()
    framer.feed(b"STATUS:{State:O")
    framer.reset()
    assert framer.pending == 0
    assert framer.feed(b"N}\nOK\n") == ["N}", "OK"]
