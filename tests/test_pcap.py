"""Test TAP metadata headers and pcap file read/write.

Run from the repo root:
    python3 tests/test_pcap.py
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "python"))

import io
import struct
import tempfile

from sniffer154.pcap import (
    LINKTYPE_IEEE802_15_4_TAP, PcapReader, PcapWriter,
    build_tap_header, parse_tap_record, tap_record,
)
from sniffer154.wire import CaptureFrame, CaptureFrameExtended, ExtendedFrame, Frame


def test_tap_header_minimal():
    """FCS type and channel plan only: 4 + 2 * 8 bytes."""
    print("test_tap_header_minimal...", end="")

    header = build_tap_header(11)
    assert len(header) == 20
    version, reserved, length = struct.unpack_from("<BBH", header, 0)
    assert (version, reserved, length) == (0, 0, 20)

    tap = parse_tap_record(header + b"\x01\x02")
    assert tap.fields == {"fcs_type": 0, "channel": 11, "page": 0}
    assert tap.payload == b"\x01\x02"

    print(" OK")


def test_tap_header_optional_fields():
    print("test_tap_header_optional_fields...", end="")

    header = build_tap_header(26, rssi=-42.5, lqi=180)
    assert len(header) == 36
    assert struct.unpack_from("<H", header, 2)[0] == 36

    tap = parse_tap_record(header)
    assert tap.fields["channel"] == 26
    assert tap.fields["rssi"] == -42.5
    assert tap.fields["lqi"] == 180
    assert tap.payload == b""

    only_lqi = build_tap_header(15, lqi=7)
    assert len(only_lqi) == 28
    assert "rssi" not in parse_tap_record(only_lqi).fields

    print(" OK")


def test_tap_record_from_frames():
    print("test_tap_record_from_frames...", end="")

    record = tap_record(CaptureFrame(Frame(b"\xde\xad", 200)), channel=15)
    tap = parse_tap_record(record)
    assert tap.fields["channel"] == 15
    assert tap.fields["lqi"] == 200
    assert "rssi" not in tap.fields
    assert tap.payload == b"\xde\xad"

    record = tap_record(CaptureFrameExtended(ExtendedFrame(b"\x01", 20, -57000, None)),
                        channel=20)
    tap = parse_tap_record(record)
    assert tap.fields["rssi"] == -57.0
    assert "lqi" not in tap.fields

    print(" OK")


def test_parse_tap_rejects_garbage():
    print("test_parse_tap_rejects_garbage...", end="")

    for data in [b"", b"\x00\x00", b"\x01\x00\x04\x00", b"\x00\x00\xff\x00"]:
        try:
            parse_tap_record(data)
        except ValueError:
            continue
        raise AssertionError(f"{data.hex()} parsed")

    print(" OK")


def test_parse_tap_rejects_bad_tlv_lengths():
    print("test_parse_tap_rejects_bad_tlv_lengths...", end="")

    def tap(tlv_type, length, value):
        body = struct.pack("<HH", tlv_type, length) + value
        return struct.pack("<BBH", 0, 0, 4 + len(body)) + body

    cases = [
        tap(3, 2, b"\x0b\x00\x00\x00"),    # channel plan needs 3 bytes
        tap(1, 1, b"\x00\x00\x00\x00"),    # RSSI needs 4 bytes
        tap(10, 0, b"\x00\x00\x00\x00"),   # LQI needs 1 byte
        tap(0, 2, b"\x00\x00\x00\x00"),    # FCS type needs 1 byte
        tap(42, 8, b"\x00\x00\x00\x00"),   # value runs past the header
    ]
    for data in cases:
        try:
            parse_tap_record(data + b"\x01\x02")
        except ValueError:
            continue
        raise AssertionError(f"{data.hex()} parsed")

    # Unknown types of any in-bounds length are kept raw
    tap_fields = parse_tap_record(tap(42, 2, b"\xaa\xbb\x00\x00")).fields
    assert tap_fields["tlv_42"] == b"\xaa\xbb"

    print(" OK")


def test_pcap_roundtrip():
    print("test_pcap_roundtrip...", end="")

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "capture.pcap")
        records = [
            (1700000000.25, tap_record(CaptureFrame(Frame(b"\x01\x02\x03", 10)), 11)),
            (1700000001.5, tap_record(CaptureFrame(Frame(b"\x04", None)), 11)),
        ]
        with PcapWriter(path) as w:
            for ts, data in records:
                w.write_record(data, ts)
            assert w.records == 2

        with open(path, "rb") as f:
            head = f.read(24)
        assert head[:4] == bytes.fromhex("a1b2c3d4")
        assert struct.unpack(">I", head[20:24])[0] == LINKTYPE_IEEE802_15_4_TAP

        with PcapReader(path) as r:
            assert r.linktype == LINKTYPE_IEEE802_15_4_TAP
            read = list(r.records())
        assert len(read) == 2
        for (ts, data), rec in zip(records, read):
            assert abs(rec.timestamp - ts) < 1e-6
            assert rec.data == data
            assert rec.orig_len == len(data)

    print(" OK")


def test_pcap_little_endian_and_stream():
    print("test_pcap_little_endian_and_stream...", end="")

    stream = io.BytesIO()
    w = PcapWriter(stream, endianness="little")
    w.write_record(b"\xaa\xbb")
    w.close()
    assert not stream.closed
    assert stream.getvalue()[:4] == bytes.fromhex("d4c3b2a1")

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "le.pcap")
        with open(path, "wb") as f:
            f.write(stream.getvalue())
        with PcapReader(path) as r:
            recs = list(r.records())
        assert [rec.data for rec in recs] == [b"\xaa\xbb"]

    print(" OK")


def test_pcap_truncated_record():
    print("test_pcap_truncated_record...", end="")

    stream = io.BytesIO()
    w = PcapWriter(stream)
    w.write_record(b"\x01\x02\x03\x04", 1.0)
    w.write_record(b"\x05\x06\x07\x08", 2.0)
    full = stream.getvalue()

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "cut.pcap")
        # cut inside the second record's data, then inside its header
        for cut in (len(full) - 2, len(full) - 4 - 10):
            with open(path, "wb") as f:
                f.write(full[:cut])
            read = []
            try:
                with PcapReader(path) as r:
                    for rec in r.records():
                        read.append(rec.data)
            except ValueError:
                pass
            else:
                raise AssertionError(f"truncation at {cut} not reported")
            assert read == [b"\x01\x02\x03\x04"]

        # A file that ends on a record boundary reads cleanly
        with open(path, "wb") as f:
            f.write(full)
        with PcapReader(path) as r:
            assert len(list(r.records())) == 2

    print(" OK")


def test_pcap_bad_magic():
    print("test_pcap_bad_magic...", end="")

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "bad.pcap")
        with open(path, "wb") as f:
            f.write(b"BTLM" + bytes(20))
        try:
            with PcapReader(path) as r:
                list(r.records())
        except ValueError:
            pass
        else:
            raise AssertionError("bad magic accepted")

    print(" OK")


if __name__ == "__main__":
    print("sniffer154 pcap tests")
    print("=====================\n")

    test_tap_header_minimal()
    test_tap_header_optional_fields()
    test_tap_record_from_frames()
    test_parse_tap_rejects_garbage()
    test_parse_tap_rejects_bad_tlv_lengths()
    test_pcap_roundtrip()
    test_pcap_little_endian_and_stream()
    test_pcap_truncated_record()
    test_pcap_bad_magic()

    print("\nAll tests passed.")
