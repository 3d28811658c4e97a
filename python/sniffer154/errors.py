"""Error taxonomy shared by the device and host sides of the link."""

from __future__ import annotations


class SnifferError(Exception):
    """Base class for all sniffer link errors."""


class EncodingFailed(SnifferError, ValueError):
    """Packet does not fit the output buffer or carries an out-of-range field."""


class DecodeError(SnifferError, ValueError):
    """Corrupt, truncated or mistagged frame."""


class TransportError(SnifferError):
    """Serial read/write failure."""


class ProbeTimeout(TransportError):
    """No probe reply arrived before the deadline."""
