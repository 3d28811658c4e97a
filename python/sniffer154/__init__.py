"""sniffer154 - IEEE 802.15.4 sniffer link protocol, device emulator and capture host."""

from .errors import SnifferError, EncodingFailed, DecodeError, TransportError, ProbeTimeout
from .wire import (
    Packet, PacketKind, Frame, ExtendedFrame,
    NoOperation, Reset, Probe, Channel, Power,
    CaptureStart, CaptureStop, CaptureFrame, CaptureFrameExtended,
    PROBE_HOST, PROBE_DEVICE, encode, encode_into, decode,
)
from .framer import LinkFramer
from .client import SnifferLink, discover
from .pcap import PcapWriter, PcapReader, build_tap_header, parse_tap_record
from .session import CaptureSession

__all__ = [
    "SnifferError", "EncodingFailed", "DecodeError", "TransportError", "ProbeTimeout",
    "Packet", "PacketKind", "Frame", "ExtendedFrame",
    "NoOperation", "Reset", "Probe", "Channel", "Power",
    "CaptureStart", "CaptureStop", "CaptureFrame", "CaptureFrameExtended",
    "PROBE_HOST", "PROBE_DEVICE", "encode", "encode_into", "decode",
    "LinkFramer",
    "SnifferLink", "discover",
    "PcapWriter", "PcapReader", "build_tap_header", "parse_tap_record",
    "CaptureSession",
]
