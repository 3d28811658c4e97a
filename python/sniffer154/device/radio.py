"""Radio collaborator interface, receive notifier and a simulated radio."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Protocol

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = 11

# 802.15.4 aMaxPhyPacketSize
MAX_PSDU_SIZE = 127

# rssi_to_lqi clamps to this range (dBm)
LQI_RSSI_MIN = -80
LQI_RSSI_MAX = -30


@dataclass(frozen=True)
class RadioConfig:
    channel: int = DEFAULT_CHANNEL
    promiscuous: bool = True
    rx_when_idle: bool = True
    auto_ack_rx: bool = False
    auto_ack_tx: bool = False


@dataclass(frozen=True)
class RawReceived:
    """Latest raw receive record as the radio driver hands it out.

    Layout of *data*:
      [length: u8][psdu: length - 2 bytes][lqi slot: u8][rssi: i8]
    where *length* counts the PSDU plus the two trailer bytes that replace
    the FCS.
    """

    data: bytes
    channel: int


def parse_raw_received(data: bytes) -> tuple[bytes, int]:
    """Split a raw receive record into (payload, rssi_dbm)."""
    if not data:
        raise ValueError("Empty receive record")
    size = data[0]
    if size < 2 or size >= len(data):
        raise ValueError(f"Bad receive record length {size} for {len(data)} bytes")
    payload = bytes(data[1:size - 1])
    rssi = data[size]
    if rssi >= 0x80:
        rssi -= 0x100
    return payload, rssi


def rssi_to_lqi(rssi: int) -> int:
    """Linear RSSI to LQI mapping, -80 dBm -> 0, -30 dBm -> 255."""
    if rssi < LQI_RSSI_MIN:
        return 0
    if rssi > LQI_RSSI_MAX:
        return 0xFF
    return (rssi - LQI_RSSI_MIN) * 0xFF // (LQI_RSSI_MAX - LQI_RSSI_MIN)


class Radio(Protocol):
    """What the capture orchestrator needs from an 802.15.4 radio driver."""

    needs_rearm: bool

    def set_config(self, config: RadioConfig) -> None: ...
    def start_receive(self) -> None: ...
    def restart_receive(self) -> None: ...
    def get_raw_received(self) -> RawReceived | None: ...
    def set_rx_available_callback(self, callback: Callable[[], None]) -> None: ...


class RadioNotifier:
    """Single-slot wake-up raised from the radio's interrupt context.

    ``signal()`` may be called from any thread.  Signals raised before the
    waiter observes them coalesce: at most one wake is ever pending.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._event = asyncio.Event()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending

    def signal(self) -> None:
        with self._lock:
            if self._pending:
                return
            self._pending = True
            loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._event.set)

    def _take(self) -> bool:
        with self._lock:
            taken = self._pending
            self._pending = False
        return taken

    async def wait(self) -> None:
        """Suspend until a signal is pending, then consume it."""
        with self._lock:
            self._loop = asyncio.get_running_loop()
        while not self._take():
            await self._event.wait()
            self._event.clear()


class SimulatedRadio:
    """In-memory radio used by the emulator and the tests.

    Like the hardware it keeps only the latest reception: a frame that
    arrives before the previous one was fetched overwrites it.
    """

    needs_rearm = True

    def __init__(self) -> None:
        self.config = RadioConfig()
        self.receiving = False
        self.rearms: int = 0
        self.overwritten: int = 0
        self._latest: RawReceived | None = None
        self._callback: Callable[[], None] | None = None

    def set_config(self, config: RadioConfig) -> None:
        self.config = config

    def start_receive(self) -> None:
        self.receiving = True

    def restart_receive(self) -> None:
        self.rearms += 1

    def get_raw_received(self) -> RawReceived | None:
        received, self._latest = self._latest, None
        return received

    def set_rx_available_callback(self, callback: Callable[[], None]) -> None:
        self._callback = callback

    def receive_frame(self, payload: bytes, rssi: int = -50,
                      channel: int | None = None) -> bool:
        """Simulate an over-the-air reception.  Returns False if not receiving."""
        if len(payload) > MAX_PSDU_SIZE:
            raise ValueError(f"PSDU of {len(payload)} bytes exceeds "
                             f"{MAX_PSDU_SIZE} bytes")
        if not self.receiving:
            return False
        if channel is None:
            channel = self.config.channel
        if self._latest is not None:
            self.overwritten += 1
        size = len(payload) + 2
        record = bytes([size]) + bytes(payload) + bytes([0, rssi & 0xFF])
        self._latest = RawReceived(record, channel)
        if self._callback is not None:
            self._callback()
        return True
