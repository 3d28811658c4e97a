"""Host-side byte transports for the sniffer link."""

from __future__ import annotations

import logging
from typing import Protocol

from .errors import TransportError

logger = logging.getLogger(__name__)

# Must match the device firmware UART configuration
BAUD_RATE = 115200

_DRAIN_CHUNK = 128
_DRAIN_LIMIT = 64 * 1024


class Transport(Protocol):
    """Abstract transport interface."""

    def read(self, n: int) -> bytes: ...
    def write(self, data: bytes) -> None: ...
    def close(self) -> None: ...


class SerialTransport:
    """UART / serial port transport (requires pyserial).

    *port* is anything pyserial's ``serial_for_url`` accepts, so
    ``/dev/ttyACM0`` and ``socket://localhost:4154`` (the device emulator)
    both work.  Stale bytes already buffered by the port are drained on
    open so the first frame read belongs to this session.
    """

    def __init__(self, port: str, baudrate: int = BAUD_RATE, timeout: float = 0.1):
        import serial
        self._serial_error = serial.SerialException
        try:
            self._ser = serial.serial_for_url(port, baudrate=baudrate, timeout=timeout)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"cannot open {port}: {e}") from e
        self.port = port
        self._drain()

    def _drain(self) -> None:
        drained = 0
        while drained < _DRAIN_LIMIT:
            chunk = self.read(_DRAIN_CHUNK)
            if not chunk:
                break
            drained += len(chunk)
        if drained:
            logger.debug("drained %d stale bytes from %s", drained, self.port)

    def read(self, n: int) -> bytes:
        try:
            return self._ser.read(n)
        except (self._serial_error, OSError) as e:
            raise TransportError(f"read from {self.port} failed: {e}") from e

    def write(self, data: bytes) -> None:
        try:
            self._ser.write(data)
            self._ser.flush()
        except (self._serial_error, OSError) as e:
            raise TransportError(f"write to {self.port} failed: {e}") from e

    def close(self) -> None:
        self._ser.close()


def list_serial_ports() -> list[str]:
    """Device names of every serial port the OS reports."""
    from serial.tools import list_ports
    return [p.device for p in list_ports.comports()]
