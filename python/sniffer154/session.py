"""Host capture session: device frames in, pcap records out."""

from __future__ import annotations

import logging
import threading
from typing import Protocol

from .client import SnifferLink
from .errors import DecodeError, TransportError
from .pcap import PcapWriter, tap_record
from .wire import (
    CaptureFrame,
    CaptureFrameExtended,
    CaptureStart,
    CaptureStop,
    Channel,
    Packet,
    describe,
)

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = 11


class ControlSource(Protocol):
    """Host control surface: yields Channel / CaptureStart / CaptureStop."""

    def poll(self) -> Packet | None: ...


class CaptureSession:
    """Single-threaded polling loop between a device link and a pcap writer.

    Every iteration polls the control source once, the link once and the
    stop flag once; none of them blocks for longer than the transport's
    read timeout.  A corrupt frame is counted and skipped.  A transport
    failure ends the session and propagates.
    """

    def __init__(self, link: SnifferLink, writer: PcapWriter,
                 channel: int = DEFAULT_CHANNEL,
                 stop: threading.Event | None = None,
                 controls: ControlSource | None = None):
        self.link = link
        self.writer = writer
        self.channel = channel
        self.stop = stop if stop is not None else threading.Event()
        self.controls = controls
        self.frames: int = 0
        self.decode_errors: int = 0

    def run(self) -> None:
        self.link.set_channel(self.channel)
        self.link.start_capture()
        logger.info("capturing on channel %d", self.channel)
        try:
            while not self.stop.is_set():
                if self.controls is not None:
                    command = self.controls.poll()
                    if command is not None:
                        self.handle_command(command)
                self.poll_link()
        finally:
            self._stop_device()
        logger.info("capture stopped: %d frames, %d decode errors",
                    self.frames, self.decode_errors)

    def poll_link(self) -> None:
        try:
            packet = self.link.receive()
        except DecodeError as e:
            self.decode_errors += 1
            logger.warning("dropping corrupt frame: %s", e)
            return
        if isinstance(packet, (CaptureFrame, CaptureFrameExtended)):
            self.write_frame(packet)
        elif packet is not None:
            logger.debug("ignoring %s", describe(packet))

    def write_frame(self, packet: CaptureFrame | CaptureFrameExtended) -> None:
        self.writer.write_record(tap_record(packet, self.channel))
        self.writer.flush()
        self.frames += 1

    def handle_command(self, command: Packet) -> None:
        if isinstance(command, Channel):
            self.channel = command.channel
            self.link.set_channel(command.channel)
            logger.info("switched to channel %d", command.channel)
        elif isinstance(command, (CaptureStart, CaptureStop)):
            self.link.write_packet(command)
        else:
            logger.warning("unsupported control command %s", describe(command))

    def _stop_device(self) -> None:
        try:
            self.link.stop_capture()
        except TransportError as e:
            logger.error("could not stop capture: %s", e)
