"""Device assembly: radio, orchestrator and link tasks wired together.

The emulator serves one device over TCP so the host tools can reach it
through pyserial's ``socket://host:port`` URLs, with a SimulatedRadio
producing synthetic 802.15.4 traffic.
"""

from __future__ import annotations

import asyncio
import logging
import random
import struct
from dataclasses import dataclass
from typing import Callable

from ..framer import DEVICE_RX_CAPACITY
from ..wire import MAX_ENCODED_SIZE, Packet
from .link import AsyncSerial, LinkReader, LinkWriter, StreamSerial
from .orchestrator import CaptureOrchestrator
from .radio import DEFAULT_CHANNEL, Radio, RadioNotifier, SimulatedRadio, rssi_to_lqi

logger = logging.getLogger(__name__)

DEFAULT_PORT = 4154


@dataclass
class DeviceConfig:
    channel: int = DEFAULT_CHANNEL
    control_depth: int = 1
    outgoing_depth: int = 4
    rx_capacity: int = DEVICE_RX_CAPACITY
    tx_buffer_size: int = MAX_ENCODED_SIZE
    extended_frames: bool = False


class SnifferDevice:
    """Three cooperating tasks around one serial link and one radio.

    reader -> control queue -> orchestrator -> outgoing queue -> writer
    """

    def __init__(self, serial: AsyncSerial, radio: Radio,
                 config: DeviceConfig | None = None,
                 link_quality: Callable[[int], int] = rssi_to_lqi):
        self.config = config or DeviceConfig()
        self.notifier = RadioNotifier()
        radio.set_rx_available_callback(self.notifier.signal)

        self.control: asyncio.Queue[Packet] = asyncio.Queue(maxsize=self.config.control_depth)
        self.outgoing: asyncio.Queue[Packet] = asyncio.Queue(maxsize=self.config.outgoing_depth)

        self.orchestrator = CaptureOrchestrator(
            radio, self.notifier, self.control, self.outgoing,
            channel=self.config.channel,
            link_quality=link_quality,
            extended_frames=self.config.extended_frames,
        )
        self.reader = LinkReader(serial, self.control, self.config.rx_capacity)
        self.writer = LinkWriter(serial, self.outgoing, self.config.tx_buffer_size)

    async def run(self) -> None:
        """Run until the link closes or a task fails."""
        tasks = [
            asyncio.create_task(self.reader.run(), name="uart-reader"),
            asyncio.create_task(self.writer.run(), name="uart-writer"),
            asyncio.create_task(self.orchestrator.run(), name="radio-receive"),
        ]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                task.result()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)


# ---------------------------------------------------------------------------
# Synthetic traffic
# ---------------------------------------------------------------------------

def synthetic_frame(seq: int, rng: random.Random) -> bytes:
    """A plausible 802.15.4 data frame (short addressing, PAN compression)."""
    header = struct.pack(
        "<HBHHH",
        0x8841,               # data frame, PAN ID compression, short addresses
        seq & 0xFF,
        0xABCD,               # destination PAN
        rng.randrange(0x10000),
        rng.randrange(0x10000),
    )
    return header + bytes(rng.randrange(256) for _ in range(rng.randint(1, 40)))


async def generate_traffic(radio: SimulatedRadio, rate: float,
                           seed: int | None = None) -> None:
    """Feed *rate* synthetic receptions per second into *radio*."""
    rng = random.Random(seed)
    seq = 0
    while True:
        await asyncio.sleep(1.0 / rate)
        if radio.receive_frame(synthetic_frame(seq, rng), rssi=rng.randint(-90, -20)):
            seq += 1


# ---------------------------------------------------------------------------
# TCP serving
# ---------------------------------------------------------------------------

async def serve(host: str = "127.0.0.1", port: int = DEFAULT_PORT,
                config: DeviceConfig | None = None, rate: float = 10.0) -> None:
    """Serve an emulated sniffer to one TCP client at a time, forever."""
    busy = asyncio.Lock()

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        if busy.locked():
            logger.warning("rejecting %s: device already in use", peer)
            writer.close()
            return
        async with busy:
            logger.info("host connected from %s", peer)
            serial = StreamSerial(reader, writer)
            radio = SimulatedRadio()
            device = SnifferDevice(serial, radio, config)
            traffic = asyncio.create_task(generate_traffic(radio, rate))
            try:
                await device.run()
            finally:
                traffic.cancel()
                serial.close()
            logger.info("host %s disconnected", peer)

    server = await asyncio.start_server(handle, host, port)
    logger.info("emulated sniffer listening on socket://%s:%d", host, port)
    async with server:
        await server.serve_forever()
