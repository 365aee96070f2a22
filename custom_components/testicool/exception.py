# custom_components/testicool/exception.py
"""Exceptions raised by the Testicool pump control package."""

from __future__ import annotations


class TesticoolError(Exception):
    """Base class for all package errors."""


class TransportError(TesticoolError):
    """Connect, write or stream failure on the physical link."""


class CharacteristicMissingError(TransportError):
    """The BLE module does not expose a usable serial characteristic."""


class ProtocolError(TesticoolError):
    """A line or field could not be parsed. Always recovered locally."""
