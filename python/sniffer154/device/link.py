"""Device serial link tasks: inbound reader and outbound writer."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from ..errors import DecodeError, TransportError
from ..framer import DEVICE_RX_CAPACITY, LinkFramer
from ..wire import MAX_ENCODED_SIZE, Packet, describe, encode_into

logger = logging.getLogger(__name__)

READ_CHUNK = 64
RETRY_DELAY = 0.01


class AsyncSerial(Protocol):
    """Serial peripheral as seen by the device tasks."""

    async def read(self, n: int) -> bytes: ...
    async def write(self, data: bytes) -> None: ...
    async def flush(self) -> None: ...


class StreamSerial:
    """AsyncSerial over an asyncio stream pair (TCP, pipe, pty)."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._reader = reader
        self._writer = writer

    async def read(self, n: int) -> bytes:
        try:
            return await self._reader.read(n)
        except (ConnectionError, OSError) as e:
            raise TransportError(f"serial read failed: {e}") from e

    async def write(self, data: bytes) -> None:
        if self._writer.is_closing():
            raise TransportError("serial peer closed")
        self._writer.write(data)

    async def flush(self) -> None:
        try:
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            raise TransportError(f"serial write failed: {e}") from e

    def close(self) -> None:
        self._writer.close()


class LinkReader:
    """Frames inbound bytes and hands control packets to the orchestrator.

    The control queue is normally of capacity 1, so at most one decoded
    packet waits for the orchestrator and control is processed strictly
    in order.
    """

    def __init__(self, serial: AsyncSerial, control: asyncio.Queue[Packet],
                 capacity: int = DEVICE_RX_CAPACITY):
        self.serial = serial
        self.control = control
        self.framer = LinkFramer(capacity)
        self.packets: int = 0

    async def run(self) -> None:
        while True:
            try:
                data = await self.serial.read(READ_CHUNK)
            except TransportError as e:
                logger.error("URX: Failed to read UART, %s", e)
                await asyncio.sleep(RETRY_DELAY)
                continue
            if not data:
                logger.info("URX: link closed")
                return

            self.framer.extend(data)
            while True:
                try:
                    packet = self.framer.pop()
                except DecodeError as e:
                    logger.error("URX: Failed to decode packet, %s", e)
                    continue
                if packet is None:
                    break
                logger.debug("URX: Received %s", describe(packet))
                self.packets += 1
                await self.control.put(packet)


class LinkWriter:
    """Encodes outgoing packets and writes them one whole frame at a time."""

    def __init__(self, serial: AsyncSerial, outgoing: asyncio.Queue[Packet],
                 tx_buffer_size: int = MAX_ENCODED_SIZE):
        self.serial = serial
        self.outgoing = outgoing
        self.frames: int = 0
        self.failures: int = 0
        self._tx_buffer = bytearray(tx_buffer_size)

    async def run(self) -> None:
        while True:
            packet = await self.outgoing.get()
            # EncodingFailed means the TX buffer is misconfigured: fatal
            data = bytes(encode_into(packet, self._tx_buffer))
            try:
                await self.serial.write(data)
                await self.serial.flush()
            except TransportError as e:
                self.failures += 1
                logger.error("UTX: Failed to write %s, %s", describe(packet), e)
                continue
            self.frames += 1
            logger.debug("UTX: Sent %s", describe(packet))
