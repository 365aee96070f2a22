# custom_components/testicool/pump_control/framing.py
"""Reassemble newline-terminated lines from an arbitrarily chunked byte stream."""

from __future__ import annotations

import logging
import string
from typing import List, Union

from ..const import LINE_DELIMITER, MAX_LINE_LENGTH

_LOGGER = logging.getLogger(__name__)

# whitespace plus every ASCII control character (NUL, BEL, DEL, ...)
_STRIP_CHARS = string.whitespace + "".join(chr(c) for c in range(32)) + chr(127)


class LineFramer:
    """
    Incremental line splitter.

    Every chunk is appended to an internal buffer; complete lines are
    decoded, trimmed and returned, the trailing fragment waits for the
    next delimiter. One framer serves one connection and is thrown away
    (or ``reset()``) on disconnect.
    """

    def __init__(self, max_line_length: int = MAX_LINE_LENGTH) -> None:
        self._buffer = bytearray()
        self._max_line_length = max_line_length
        self._discarding = False

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet forming a line."""
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()
        self._discarding = False

    def feed(self, chunk: Union[bytes, bytearray, str]) -> List[str]:
        """Append ``chunk`` and return every line it completed."""
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        self._buffer.extend(chunk)

        *complete, tail = bytes(self._buffer).split(LINE_DELIMITER)
        self._buffer = bytearray(tail)

        lines: List[str] = []
        for raw in complete:
            if self._discarding:
                # remainder of an overlong line; the delimiter ends the discard
                self._discarding = False
                continue
            line = self._decode(raw)
            if line:
                lines.append(line)

        if len(self._buffer) > self._max_line_length:
            _LOGGER.warning(
                "Dropping unterminated line after %d bytes", len(self._buffer)
            )
            self._buffer.clear()
            self._discarding = True
        return lines

    def _decode(self, raw: bytes) -> str:
        if len(raw) > self._max_line_length:
            _LOGGER.warning("Dropping overlong line (%d bytes)", len(raw))
            return ""
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            _LOGGER.debug("Dropping undecodable line: %s", raw.hex(" ").upper())
            return ""
        return text.strip(_STRIP_CHARS)
