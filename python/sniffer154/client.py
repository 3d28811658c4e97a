"""Host link client: codec and framer bound to a transport."""

from __future__ import annotations

import logging
import time

from .errors import DecodeError, ProbeTimeout, TransportError
from .framer import HOST_RX_CAPACITY, LinkFramer
from .transport import Transport
from .wire import (
    PROBE_HOST,
    CaptureStart,
    CaptureStop,
    Channel,
    Packet,
    Probe,
    describe,
    encode,
)

logger = logging.getLogger(__name__)

# Host only ever sends control packets, which fit a small buffer
HOST_TX_SIZE = 256
READ_CHUNK = 4096


class SnifferLink:
    """Control and receive side of a sniffer device on the host."""

    def __init__(self, transport: Transport, capacity: int = HOST_RX_CAPACITY):
        self._transport = transport
        self._framer = LinkFramer(capacity)

    @classmethod
    def open(cls, port: str, timeout: float = 0.1) -> SnifferLink:
        """Open a serial port (or pyserial URL) at the link baud rate."""
        from .transport import SerialTransport
        return cls(SerialTransport(port, timeout=timeout))

    @property
    def framer(self) -> LinkFramer:
        return self._framer

    def write_packet(self, packet: Packet) -> None:
        self._transport.write(encode(packet, HOST_TX_SIZE))
        logger.debug("sent %s", describe(packet))

    def receive(self) -> Packet | None:
        """Non-blocking poll for the next packet.

        Returns an already buffered packet if there is one, otherwise does
        a single transport read.  Returns None when no complete frame is
        available yet.  A corrupt frame raises DecodeError; the link stays
        usable.
        """
        packet = self._framer.pop()
        if packet is not None:
            return packet
        data = self._transport.read(READ_CHUNK)
        if data:
            self._framer.extend(data)
            return self._framer.pop()
        return None

    def probe(self, timeout: float | None = None) -> None:
        """Confirm the peer runs the sniffer firmware.

        Sends Probe(PROBE_HOST) and waits for any Probe reply.  Without a
        *timeout* this blocks until one arrives; otherwise ProbeTimeout is
        raised once the deadline passes.
        """
        self.write_packet(Probe(PROBE_HOST))
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            try:
                packet = self.receive()
            except DecodeError as e:
                logger.debug("ignoring corrupt frame while probing: %s", e)
                packet = None
            if isinstance(packet, Probe):
                logger.debug("probe answered with %08x", packet.magic)
                return
            if deadline is not None and time.monotonic() >= deadline:
                raise ProbeTimeout(f"no probe reply within {timeout:.2f}s")

    def set_channel(self, channel: int) -> None:
        self.write_packet(Channel(channel))

    def start_capture(self) -> None:
        self.write_packet(CaptureStart())

    def stop_capture(self) -> None:
        self.write_packet(CaptureStop())

    def close(self) -> None:
        self._transport.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def discover(ports: list[str], timeout: float = 0.5) -> list[str]:
    """Return the subset of *ports* that answer the probe handshake."""
    found: list[str] = []
    for port in ports:
        try:
            with SnifferLink.open(port) as link:
                link.probe(timeout)
        except TransportError as e:
            logger.info("probe on %s failed: %s", port, e)
            continue
        found.append(port)
    return found
