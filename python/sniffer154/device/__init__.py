"""Emulated sniffer device: radio capture multiplexed with host control."""

from .radio import RadioConfig, RawReceived, RadioNotifier, SimulatedRadio, rssi_to_lqi
from .orchestrator import CaptureOrchestrator
from .link import AsyncSerial, StreamSerial, LinkReader, LinkWriter
from .emulator import DeviceConfig, SnifferDevice, serve

__all__ = [
    "RadioConfig", "RawReceived", "RadioNotifier", "SimulatedRadio", "rssi_to_lqi",
    "CaptureOrchestrator",
    "AsyncSerial", "StreamSerial", "LinkReader", "LinkWriter",
    "DeviceConfig", "SnifferDevice", "serve",
]
