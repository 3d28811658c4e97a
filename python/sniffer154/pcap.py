"""pcap capture file read/write with IEEE 802.15.4 TAP metadata.

File format (classic libpcap, microsecond timestamps):
  [global header: 24 bytes]
  [record header: 16 bytes][record data]
  ...

Each record's data is an IEEE 802.15.4 TAP header followed by the raw
frame payload:
  [version: u8 = 0][reserved: u8 = 0][header_length: u16 LE]
  [TLV: type u16 LE, length u16 LE, value padded to 4 bytes] x N
  [payload]

The writer emits big-endian pcap headers; the TAP header is always
little-endian.
"""

from __future__ import annotations

import struct
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Iterator

from .wire import CaptureFrame, CaptureFrameExtended

LINKTYPE_IEEE802_15_4_TAP = 283

PCAP_MAGIC = 0xA1B2C3D4
PCAP_VERSION = (2, 4)
PCAP_SNAPLEN = 65535
PCAP_HEADER_FMT = "IHHiIII"
PCAP_HEADER_SIZE = struct.calcsize("<" + PCAP_HEADER_FMT)  # 24
RECORD_HEADER_FMT = "IIII"
RECORD_HEADER_SIZE = struct.calcsize("<" + RECORD_HEADER_FMT)  # 16

# TAP TLV types
TAP_FCS_TYPE = 0
TAP_RSSI = 1
TAP_CHANNEL_PLAN = 3
TAP_LQI = 10

TAP_HEADER_FMT = "<BBH"
TAP_HEADER_SIZE = struct.calcsize(TAP_HEADER_FMT)  # 4
TLV_HEADER_FMT = "<HH"

# Value length each known TLV type must declare
TAP_TLV_LENGTHS = {TAP_FCS_TYPE: 1, TAP_CHANNEL_PLAN: 3, TAP_RSSI: 4, TAP_LQI: 1}

FCS_NONE = 0


# ---------------------------------------------------------------------------
# TAP metadata
# ---------------------------------------------------------------------------

def _tlv(tlv_type: int, length: int, value: bytes) -> bytes:
    return struct.pack(TLV_HEADER_FMT, tlv_type, length) + value.ljust(4, b"\x00")


def build_tap_header(channel: int, rssi: float | None = None,
                     lqi: int | None = None) -> bytes:
    """Build a TAP header carrying FCS type, channel and optional RSSI/LQI."""
    tlvs = [
        _tlv(TAP_FCS_TYPE, 1, struct.pack("<B", FCS_NONE)),
        # channel plan: channel number u16, channel page u8
        _tlv(TAP_CHANNEL_PLAN, 3, struct.pack("<HB", channel, 0)),
    ]
    if rssi is not None:
        tlvs.append(_tlv(TAP_RSSI, 4, struct.pack("<f", rssi)))
    if lqi is not None:
        tlvs.append(_tlv(TAP_LQI, 1, struct.pack("<B", lqi)))

    body = b"".join(tlvs)
    return struct.pack(TAP_HEADER_FMT, 0, 0, TAP_HEADER_SIZE + len(body)) + body


def tap_record(packet: CaptureFrame | CaptureFrameExtended, channel: int) -> bytes:
    """TAP header plus payload for one captured frame.

    The channel plan field reports the channel the host configured; RSSI
    is only present for extended frames that carry one (converted from
    milli-dBm to dBm).
    """
    frame = packet.frame
    rssi = None
    if isinstance(packet, CaptureFrameExtended) and \
            frame.received_signal_strength_indicator is not None:
        rssi = frame.received_signal_strength_indicator / 1000.0
    return build_tap_header(channel, rssi, frame.link_quality_index) + frame.payload


@dataclass
class TapRecord:
    fields: dict[str, Any]
    payload: bytes


def parse_tap_record(data: bytes) -> TapRecord:
    """Split a TAP record into decoded metadata fields and the payload."""
    if len(data) < TAP_HEADER_SIZE:
        raise ValueError("Truncated TAP header")
    version, _reserved, header_len = struct.unpack_from(TAP_HEADER_FMT, data, 0)
    if version != 0:
        raise ValueError(f"Unsupported TAP version: {version}")
    if header_len < TAP_HEADER_SIZE or header_len > len(data):
        raise ValueError(f"Bad TAP header length: {header_len}")

    fields: dict[str, Any] = {}
    pos = TAP_HEADER_SIZE
    while pos + 4 <= header_len:
        tlv_type, length = struct.unpack_from(TLV_HEADER_FMT, data, pos)
        if pos + 4 + length > header_len:
            raise ValueError(f"TLV type {tlv_type} overruns TAP header")
        expected = TAP_TLV_LENGTHS.get(tlv_type)
        if expected is not None and length != expected:
            raise ValueError(f"TLV type {tlv_type} has length {length}, "
                             f"expected {expected}")
        value = data[pos + 4:pos + 4 + length]
        if tlv_type == TAP_FCS_TYPE:
            fields["fcs_type"] = value[0]
        elif tlv_type == TAP_CHANNEL_PLAN:
            fields["channel"], fields["page"] = struct.unpack("<HB", value)
        elif tlv_type == TAP_RSSI:
            fields["rssi"] = struct.unpack("<f", value)[0]
        elif tlv_type == TAP_LQI:
            fields["lqi"] = value[0]
        else:
            fields[f"tlv_{tlv_type}"] = value
        # values are padded to a 4-byte boundary
        pos += 4 + (length + 3) // 4 * 4

    return TapRecord(fields=fields, payload=data[header_len:])


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------

class PcapWriter:
    """Writes timestamped records to a pcap stream."""

    def __init__(self, dest: str | Path | BinaryIO,
                 linktype: int = LINKTYPE_IEEE802_15_4_TAP,
                 endianness: str = "big"):
        if isinstance(dest, (str, Path)):
            self._f: BinaryIO = open(dest, "wb")
            self._owns_file = True
        else:
            self._f = dest
            self._owns_file = False
        self._prefix = ">" if endianness == "big" else "<"
        self.records: int = 0

        self._f.write(struct.pack(
            self._prefix + PCAP_HEADER_FMT,
            PCAP_MAGIC, PCAP_VERSION[0], PCAP_VERSION[1],
            0, 0, PCAP_SNAPLEN, linktype,
        ))

    def write_record(self, data: bytes, timestamp: float | None = None) -> None:
        """Write one record stamped with *timestamp* (default: wall clock)."""
        if timestamp is None:
            timestamp = time.time()
        ts_sec = int(timestamp)
        ts_usec = int(round((timestamp - ts_sec) * 1_000_000))
        if ts_usec >= 1_000_000:
            ts_sec += 1
            ts_usec -= 1_000_000
        self._f.write(struct.pack(
            self._prefix + RECORD_HEADER_FMT,
            ts_sec, ts_usec, len(data), len(data),
        ))
        self._f.write(data)
        self.records += 1

    def flush(self) -> None:
        self._f.flush()

    def close(self) -> None:
        self.flush()
        if self._owns_file:
            self._f.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------

@dataclass
class PcapRecord:
    timestamp: float
    data: bytes
    orig_len: int = field(default=0)


class PcapReader:
    """Reads a pcap file written by PcapWriter (or any classic pcap)."""

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._f: BinaryIO | None = None
        self._prefix = "<"
        self.linktype: int | None = None

    def open(self) -> int:
        """Open the file and parse the global header.  Returns the linktype."""
        self._f = open(self._path, "rb")
        try:
            return self._read_header()
        except ValueError:
            self.close()
            raise

    def _read_header(self) -> int:
        assert self._f is not None

        header = self._f.read(PCAP_HEADER_SIZE)
        if len(header) < PCAP_HEADER_SIZE:
            raise ValueError("Truncated pcap header")

        for prefix in ("<", ">"):
            if struct.unpack_from(prefix + "I", header, 0)[0] == PCAP_MAGIC:
                self._prefix = prefix
                break
        else:
            raise ValueError(f"Bad magic: {header[:4]!r}")

        _, major, minor, _, _, _, linktype = struct.unpack(
            self._prefix + PCAP_HEADER_FMT, header)
        if (major, minor) != PCAP_VERSION:
            raise ValueError(f"Unsupported version: {major}.{minor}")
        self.linktype = linktype
        return linktype

    def records(self) -> Iterator[PcapRecord]:
        if self._f is None:
            self.open()
        assert self._f is not None

        while True:
            hdr = self._f.read(RECORD_HEADER_SIZE)
            if not hdr:
                break
            if len(hdr) < RECORD_HEADER_SIZE:
                raise ValueError("Truncated record header")
            ts_sec, ts_usec, incl_len, orig_len = struct.unpack(
                self._prefix + RECORD_HEADER_FMT, hdr)
            data = self._f.read(incl_len)
            if len(data) < incl_len:
                raise ValueError(
                    f"Truncated record: {len(data)} of {incl_len} bytes")
            yield PcapRecord(ts_sec + ts_usec / 1_000_000, data, orig_len)

    def close(self) -> None:
        if self._f:
            self._f.close()
            self._f = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *exc):
        self.close()
