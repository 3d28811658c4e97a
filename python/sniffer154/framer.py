"""Byte-stream reassembly of 0x00-terminated wire frames."""

from __future__ import annotations

import logging

from .errors import DecodeError
from .wire import Packet, decode, describe

logger = logging.getLogger(__name__)

HOST_RX_CAPACITY = 4096
DEVICE_RX_CAPACITY = 512


class LinkFramer:
    """Stateful frame reassembler shared by the device reader and the host.

    Reads may deliver part of a frame, exactly one frame, or several frames
    at once.  Bytes accumulate until a 0x00 terminator is seen; everything
    up to and including it is handed to the codec.  A frame that fails to
    decode is dropped and framing resumes after its terminator.

    If *capacity* bytes accumulate without a terminator (sustained line
    noise, or a peer that lost sync) the buffer is discarded and the framer
    skips input up to the next 0x00 before it trusts the stream again.
    """

    def __init__(self, capacity: int = HOST_RX_CAPACITY):
        self.capacity = capacity
        self.decode_errors: int = 0
        self.overflows: int = 0
        self._buf = bytearray()
        self._resync = False

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet framed."""
        return len(self._buf)

    def extend(self, data: bytes) -> None:
        """Append newly read bytes."""
        if self._resync:
            end = data.find(b"\x00")
            if end < 0:
                return
            data = data[end + 1:]
            self._resync = False
            logger.debug("resynchronised after overflow")

        self._buf.extend(data)
        if len(self._buf) >= self.capacity and self._buf.find(b"\x00") < 0:
            logger.warning(
                "%d bytes without frame terminator (capacity %d), "
                "dropping buffer", len(self._buf), self.capacity)
            self.overflows += 1
            self._buf.clear()
            self._resync = True

    def pop(self) -> Packet | None:
        """Return the next complete packet, or None if no frame is buffered.

        Raises DecodeError for a corrupt frame; its bytes are already
        discarded, so the next call continues with the following frame.
        """
        end = self._buf.find(b"\x00")
        if end < 0:
            return None

        frame = bytes(self._buf[:end + 1])
        del self._buf[:end + 1]
        try:
            packet, _ = decode(frame)
        except DecodeError:
            self.decode_errors += 1
            raise
        return packet

    def feed(self, data: bytes) -> list[Packet]:
        """Feed raw bytes, return every packet that became complete."""
        self.extend(data)
        packets: list[Packet] = []
        while True:
            try:
                packet = self.pop()
            except DecodeError as e:
                logger.warning("dropping corrupt frame: %s", e)
                continue
            if packet is None:
                break
            logger.debug("framed %s", describe(packet))
            packets.append(packet)
        return packets

    def reset(self) -> None:
        """Clear internal buffer."""
        self._buf.clear()
        self._resync = False
