"""Device-side capture state machine."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Awaitable, Callable

from ..wire import (
    PROBE_DEVICE,
    PROBE_HOST,
    CaptureFrame,
    CaptureFrameExtended,
    CaptureStart,
    CaptureStop,
    Channel,
    ExtendedFrame,
    Frame,
    NoOperation,
    Packet,
    Power,
    Probe,
    Reset,
    describe,
)
from .radio import (
    DEFAULT_CHANNEL,
    Radio,
    RadioConfig,
    RadioNotifier,
    parse_raw_received,
    rssi_to_lqi,
)

logger = logging.getLogger(__name__)


class CaptureOrchestrator:
    """Owns the radio and mediates between radio events and control packets.

    Waits on two sources at once, the radio notifier and the control queue,
    and handles exactly one event per iteration in arrival order.  When both
    are ready the radio goes first and the control packet is handled on the
    very next iteration.  Captured frames and probe replies go to
    *outgoing*; when it is full the orchestrator suspends, so a slow serial
    writer throttles capture rather than letting frames pile up.
    """

    def __init__(self, radio: Radio, notifier: RadioNotifier,
                 control: asyncio.Queue[Packet], outgoing: asyncio.Queue[Packet],
                 channel: int = DEFAULT_CHANNEL,
                 link_quality: Callable[[int], int] = rssi_to_lqi,
                 extended_frames: bool = False):
        self.radio = radio
        self.notifier = notifier
        self.control = control
        self.outgoing = outgoing
        self.link_quality = link_quality
        self.extended_frames = extended_frames

        self.channel = channel
        self.capture_enabled = False
        self.config = RadioConfig(channel=channel)

        self._handlers: dict[type[Packet], Callable[[Packet], Awaitable[None]]] = {
            Channel: self._on_channel,
            Power: self._on_ignored,
            Probe: self._on_probe,
            CaptureStart: self._on_capture_start,
            CaptureStop: self._on_capture_stop,
            NoOperation: self._on_ignored,
            Reset: self._on_ignored,
            CaptureFrame: self._on_ignored,
            CaptureFrameExtended: self._on_ignored,
        }

    async def run(self) -> None:
        radio_wait: asyncio.Future | None = None
        control_wait: asyncio.Future | None = None
        try:
            while True:
                # A control packet left ready by the last iteration goes first
                if control_wait is not None and control_wait.done():
                    packet = control_wait.result()
                    control_wait = None
                    await self.handle_control(packet)
                    continue

                if radio_wait is None:
                    radio_wait = asyncio.ensure_future(self.notifier.wait())
                if control_wait is None:
                    control_wait = asyncio.ensure_future(self.control.get())

                done, _ = await asyncio.wait(
                    {radio_wait, control_wait},
                    return_when=asyncio.FIRST_COMPLETED)

                # One event per iteration; the other stays armed for the next
                if radio_wait in done:
                    radio_wait.result()
                    radio_wait = None
                    await self.handle_radio_event()
                else:
                    packet = control_wait.result()
                    control_wait = None
                    await self.handle_control(packet)
        finally:
            for waiter in (radio_wait, control_wait):
                if waiter is not None:
                    waiter.cancel()

    # ------------------------------------------------------------------
    # Radio path
    # ------------------------------------------------------------------

    async def handle_radio_event(self) -> None:
        received = self.radio.get_raw_received()
        if received is None:
            return
        try:
            payload, rssi = parse_raw_received(received.data)
        except ValueError as e:
            logger.error("RRX: dropping malformed receive record: %s", e)
            return
        lqi = self.link_quality(rssi)

        if not self.capture_enabled:
            return

        packet: Packet
        if self.extended_frames:
            packet = CaptureFrameExtended(ExtendedFrame(
                payload=payload,
                channel=received.channel,
                received_signal_strength_indicator=rssi * 1000,
                link_quality_index=lqi,
            ))
        else:
            packet = CaptureFrame(Frame(payload, lqi))
        logger.debug("RRX: captured %d bytes, rssi %d, lqi %d",
                     len(payload), rssi, lqi)
        await self.outgoing.put(packet)

    # ------------------------------------------------------------------
    # Control path
    # ------------------------------------------------------------------

    async def handle_control(self, packet: Packet) -> None:
        logger.info("CTL: Received %s", describe(packet))
        await self._handlers[type(packet)](packet)

    async def _on_channel(self, packet: Channel) -> None:
        self.channel = packet.channel
        self.config = replace(self.config, channel=packet.channel)
        logger.info("CTL: Set channel %d", self.channel)
        self.radio.set_config(self.config)
        # The radio does not retune until reception is re-armed
        if self.radio.needs_rearm:
            self.radio.restart_receive()

    async def _on_probe(self, packet: Probe) -> None:
        if packet.magic == PROBE_HOST:
            await self.outgoing.put(Probe(PROBE_DEVICE))
        else:
            logger.debug("CTL: ignoring probe %08x", packet.magic)

    async def _on_capture_start(self, packet: CaptureStart) -> None:
        logger.info("CTL: Start capture %d", self.channel)
        self.radio.set_config(self.config)
        self.radio.start_receive()
        self.capture_enabled = True

    async def _on_capture_stop(self, packet: CaptureStop) -> None:
        self.capture_enabled = False
        logger.info("CTL: Stop capture")

    async def _on_ignored(self, packet: Packet) -> None:
        pass
