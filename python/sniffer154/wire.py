"""Sniffer wire format: packet schema and COBS-framed binary encoding.

Frame layout on the serial link:

  [COBS(body)][0x00]

The body is a compact variant-tagged encoding (postcard compatible):

  tag       LEB128 varint, position of the variant in PacketKind
  u8        one raw byte
  u32       LEB128 varint, at most 5 bytes
  i32       zigzag, then LEB128 varint
  Optional  0x00 (None) | 0x01 value
  bytes     LEB128 length, then the bytes

COBS guarantees 0x00 never occurs inside the encoded body, so a receiver
finds frame boundaries by scanning for 0x00 alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar

from .errors import DecodeError, EncodingFailed

# Wire constants (must match the device firmware)
PROBE_HOST = 0xFEDCBA98
PROBE_DEVICE = 0x01234567

MAX_PAYLOAD_SIZE = 256
MAX_ENCODED_SIZE = 512

TERMINATOR = 0x00

_U32_MAX = 0xFFFFFFFF
_I32_MIN = -(1 << 31)
_I32_MAX = (1 << 31) - 1


class PacketKind(IntEnum):
    NO_OPERATION = 0
    RESET = 1
    PROBE = 2
    CHANNEL = 3
    POWER = 4
    CAPTURE_START = 5
    CAPTURE_STOP = 6
    CAPTURE_FRAME = 7
    CAPTURE_FRAME_EXTENDED = 8


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Frame:
    payload: bytes
    link_quality_index: int | None = None


@dataclass(frozen=True)
class ExtendedFrame:
    """Frame with capture-time radio metadata.

    Carried under its own variant tag so peers that only know the
    two-field Frame reject it instead of misreading it.  RSSI is fixed
    point milli-dBm (dBm * 1000).
    """

    payload: bytes
    channel: int
    received_signal_strength_indicator: int | None = None
    link_quality_index: int | None = None


class Packet:
    """Base class of the closed packet variant set."""

    kind: ClassVar[PacketKind]


@dataclass(frozen=True)
class NoOperation(Packet):
    kind: ClassVar[PacketKind] = PacketKind.NO_OPERATION


@dataclass(frozen=True)
class Reset(Packet):
    kind: ClassVar[PacketKind] = PacketKind.RESET


@dataclass(frozen=True)
class Probe(Packet):
    magic: int
    kind: ClassVar[PacketKind] = PacketKind.PROBE


@dataclass(frozen=True)
class Channel(Packet):
    channel: int
    kind: ClassVar[PacketKind] = PacketKind.CHANNEL


@dataclass(frozen=True)
class Power(Packet):
    level: int
    kind: ClassVar[PacketKind] = PacketKind.POWER


@dataclass(frozen=True)
class CaptureStart(Packet):
    kind: ClassVar[PacketKind] = PacketKind.CAPTURE_START


@dataclass(frozen=True)
class CaptureStop(Packet):
    kind: ClassVar[PacketKind] = PacketKind.CAPTURE_STOP


@dataclass(frozen=True)
class CaptureFrame(Packet):
    frame: Frame
    kind: ClassVar[PacketKind] = PacketKind.CAPTURE_FRAME


@dataclass(frozen=True)
class CaptureFrameExtended(Packet):
    frame: ExtendedFrame
    kind: ClassVar[PacketKind] = PacketKind.CAPTURE_FRAME_EXTENDED


PACKET_TYPES: dict[PacketKind, type[Packet]] = {
    PacketKind.NO_OPERATION: NoOperation,
    PacketKind.RESET: Reset,
    PacketKind.PROBE: Probe,
    PacketKind.CHANNEL: Channel,
    PacketKind.POWER: Power,
    PacketKind.CAPTURE_START: CaptureStart,
    PacketKind.CAPTURE_STOP: CaptureStop,
    PacketKind.CAPTURE_FRAME: CaptureFrame,
    PacketKind.CAPTURE_FRAME_EXTENDED: CaptureFrameExtended,
}


def describe(packet: Packet) -> str:
    """Short human-readable label for log lines."""
    if isinstance(packet, Probe):
        return f"Probe {packet.magic:08x}"
    if isinstance(packet, Channel):
        return f"Channel {packet.channel}"
    if isinstance(packet, Power):
        return f"Power {packet.level}"
    if isinstance(packet, (CaptureFrame, CaptureFrameExtended)):
        return f"Capture Frame {len(packet.frame.payload)}"
    return {
        PacketKind.NO_OPERATION: "NO-OP",
        PacketKind.RESET: "Reset",
        PacketKind.CAPTURE_START: "Capture Start",
        PacketKind.CAPTURE_STOP: "Capture Stop",
    }[packet.kind]


# ---------------------------------------------------------------------------
# COBS
# ---------------------------------------------------------------------------

def cobs_encode(data: bytes) -> bytes:
    """Consistent Overhead Byte Stuffing (no trailing delimiter)."""
    out = bytearray(b"\x00")
    code_pos = 0
    code = 1
    for b in data:
        if b == 0:
            out[code_pos] = code
            code_pos = len(out)
            out.append(0)
            code = 1
            continue
        out.append(b)
        code += 1
        if code == 0xFF:
            out[code_pos] = code
            code_pos = len(out)
            out.append(0)
            code = 1
    out[code_pos] = code
    return bytes(out)


def cobs_decode(data: bytes) -> bytes:
    """Inverse of cobs_encode.  *data* must not include the delimiter."""
    out = bytearray()
    pos = 0
    n = len(data)
    if n == 0:
        raise DecodeError("empty COBS frame")
    while pos < n:
        code = data[pos]
        if code == 0:
            raise DecodeError(f"zero byte inside COBS frame at {pos}")
        pos += 1
        end = pos + code - 1
        if end > n:
            raise DecodeError("COBS block runs past end of frame")
        block = data[pos:end]
        if 0 in block:
            raise DecodeError("zero byte inside COBS block")
        out.extend(block)
        pos = end
        if code < 0xFF and pos < n:
            out.append(0)
    return bytes(out)


# ---------------------------------------------------------------------------
# Body encoding
# ---------------------------------------------------------------------------

def _put_varint(buf: bytearray, value: int) -> None:
    while value >= 0x80:
        buf.append((value & 0x7F) | 0x80)
        value >>= 7
    buf.append(value)


def _put_u8(buf: bytearray, value: int, name: str) -> None:
    if not 0 <= value <= 0xFF:
        raise EncodingFailed(f"{name} out of range for u8: {value}")
    buf.append(value)


def _put_u32(buf: bytearray, value: int, name: str) -> None:
    if not 0 <= value <= _U32_MAX:
        raise EncodingFailed(f"{name} out of range for u32: {value}")
    _put_varint(buf, value)


def _put_i32(buf: bytearray, value: int, name: str) -> None:
    if not _I32_MIN <= value <= _I32_MAX:
        raise EncodingFailed(f"{name} out of range for i32: {value}")
    _put_varint(buf, ((value << 1) ^ (value >> 31)) & _U32_MAX)


def _put_bytes(buf: bytearray, value: bytes) -> None:
    if len(value) > MAX_PAYLOAD_SIZE:
        raise EncodingFailed(
            f"payload of {len(value)} bytes exceeds {MAX_PAYLOAD_SIZE}")
    _put_varint(buf, len(value))
    buf.extend(value)


def _encode_body(packet: Packet) -> bytes:
    buf = bytearray()
    _put_varint(buf, packet.kind)

    if isinstance(packet, Probe):
        _put_u32(buf, packet.magic, "magic")
    elif isinstance(packet, Channel):
        _put_u8(buf, packet.channel, "channel")
    elif isinstance(packet, Power):
        _put_i32(buf, packet.level, "power")
    elif isinstance(packet, CaptureFrame):
        frame = packet.frame
        if frame.link_quality_index is None:
            buf.append(0)
        else:
            buf.append(1)
            _put_u8(buf, frame.link_quality_index, "link_quality_index")
        _put_bytes(buf, frame.payload)
    elif isinstance(packet, CaptureFrameExtended):
        frame = packet.frame
        _put_u8(buf, frame.channel, "channel")
        if frame.received_signal_strength_indicator is None:
            buf.append(0)
        else:
            buf.append(1)
            _put_i32(buf, frame.received_signal_strength_indicator, "rssi")
        if frame.link_quality_index is None:
            buf.append(0)
        else:
            buf.append(1)
            _put_u8(buf, frame.link_quality_index, "link_quality_index")
        _put_bytes(buf, frame.payload)

    return bytes(buf)


class _BodyReader:
    """Bounds-checked cursor over a decoded body."""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def u8(self) -> int:
        if self._pos >= len(self._data):
            raise DecodeError("truncated body")
        value = self._data[self._pos]
        self._pos += 1
        return value

    def u32(self) -> int:
        value = 0
        for i in range(5):
            b = self.u8()
            if i == 4 and b > 0x0F:
                raise DecodeError("varint overflows u32")
            value |= (b & 0x7F) << (7 * i)
            if not b & 0x80:
                return value
        raise DecodeError("varint overflows u32")

    def i32(self) -> int:
        z = self.u32()
        return (z >> 1) ^ -(z & 1)

    def option(self) -> bool:
        tag = self.u8()
        if tag > 1:
            raise DecodeError(f"invalid option tag {tag}")
        return tag == 1

    def payload(self) -> bytes:
        length = self.u32()
        if length > MAX_PAYLOAD_SIZE:
            raise DecodeError(f"payload length {length} exceeds {MAX_PAYLOAD_SIZE}")
        end = self._pos + length
        if end > len(self._data):
            raise DecodeError("truncated payload")
        value = self._data[self._pos:end]
        self._pos = end
        return bytes(value)

    def finish(self) -> None:
        if self._pos != len(self._data):
            raise DecodeError(
                f"{len(self._data) - self._pos} trailing bytes after packet")


def _decode_body(body: bytes) -> Packet:
    r = _BodyReader(body)
    tag = r.u32()
    try:
        kind = PacketKind(tag)
    except ValueError:
        raise DecodeError(f"unknown packet tag {tag}") from None

    packet: Packet
    if kind == PacketKind.PROBE:
        packet = Probe(r.u32())
    elif kind == PacketKind.CHANNEL:
        packet = Channel(r.u8())
    elif kind == PacketKind.POWER:
        packet = Power(r.i32())
    elif kind == PacketKind.CAPTURE_FRAME:
        lqi = r.u8() if r.option() else None
        packet = CaptureFrame(Frame(r.payload(), lqi))
    elif kind == PacketKind.CAPTURE_FRAME_EXTENDED:
        channel = r.u8()
        rssi = r.i32() if r.option() else None
        lqi = r.u8() if r.option() else None
        packet = CaptureFrameExtended(ExtendedFrame(r.payload(), channel, rssi, lqi))
    else:
        packet = PACKET_TYPES[kind]()

    r.finish()
    return packet


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def encode(packet: Packet, limit: int = MAX_ENCODED_SIZE) -> bytes:
    """Encode *packet* into a terminated frame of at most *limit* bytes."""
    frame = cobs_encode(_encode_body(packet)) + b"\x00"
    if len(frame) > limit:
        raise EncodingFailed(
            f"encoded packet of {len(frame)} bytes exceeds buffer of {limit}")
    return frame


def encode_into(packet: Packet, buffer: bytearray | memoryview) -> memoryview:
    """Encode *packet* into a caller-owned buffer, return the used slice."""
    frame = encode(packet, len(buffer))
    view = memoryview(buffer)
    view[:len(frame)] = frame
    return view[:len(frame)]


def decode(buffer: bytes | bytearray | memoryview) -> tuple[Packet, bytes]:
    """Decode the first frame in *buffer*.

    Returns the packet and whatever bytes followed its terminator.
    Raises DecodeError on any malformed input.
    """
    data = bytes(buffer)
    end = data.find(b"\x00")
    if end < 0:
        raise DecodeError("no frame terminator")
    packet = _decode_body(cobs_decode(data[:end]))
    return packet, data[end + 1:]
