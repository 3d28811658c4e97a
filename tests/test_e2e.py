"""End-to-end tests: emulated device and host capture session.

The first test wires the device tasks to an in-memory serial link and
replays the device's output into a host capture.  The second serves the
emulator over TCP and captures through pyserial's socket:// URL.

Run from the repo root:
    python3 tests/test_e2e.py
"""

import asyncio
import os
import socket
import sys
import tempfile
import threading
import time

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "python"))

from sniffer154.client import SnifferLink
from sniffer154.device.emulator import SnifferDevice, serve
from sniffer154.device.radio import SimulatedRadio
from sniffer154.errors import TransportError
from sniffer154.framer import LinkFramer
from sniffer154.pcap import LINKTYPE_IEEE802_15_4_TAP, PcapReader, PcapWriter, parse_tap_record
from sniffer154.session import CaptureSession
from sniffer154.wire import CaptureFrame, CaptureStart, CaptureStop, Channel, Frame, encode

TIMEOUT = 5  # seconds


def find_free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class QueueSerial:
    """In-memory AsyncSerial; put b"" on *inbound* to close the link."""

    def __init__(self):
        self.inbound = asyncio.Queue()
        self.written = bytearray()

    async def read(self, n):
        return await self.inbound.get()

    async def write(self, data):
        self.written.extend(data)

    async def flush(self):
        pass


class ReplayTransport:
    """Host transport that hands back recorded device output once."""

    def __init__(self, data, stop):
        self.data = data
        self.stop = stop
        self.written = bytearray()

    def read(self, n):
        if not self.data:
            self.stop.set()
            return b""
        chunk, self.data = self.data[:n], self.data[n:]
        return chunk

    def write(self, data):
        self.written.extend(data)

    def close(self):
        pass


async def wait_until(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


def test_device_to_pcap():
    print("test_device_to_pcap...", end="")

    async def run_device():
        serial = QueueSerial()
        radio = SimulatedRadio()
        device = SnifferDevice(serial, radio, link_quality=lambda rssi: 200)
        task = asyncio.create_task(device.run())

        serial.inbound.put_nowait(encode(Channel(15)) + encode(CaptureStart()))
        await wait_until(lambda: device.orchestrator.capture_enabled)
        assert radio.config.channel == 15

        assert radio.receive_frame(b"\xde\xad")
        await wait_until(lambda: device.writer.frames == 1)

        serial.inbound.put_nowait(encode(CaptureStop()))
        await wait_until(lambda: not device.orchestrator.capture_enabled)
        radio.receive_frame(b"\xbe\xef")
        await asyncio.sleep(0.05)
        assert device.writer.frames == 1

        serial.inbound.put_nowait(b"")
        await asyncio.wait_for(task, 1.0)
        return bytes(serial.written)

    output = asyncio.run(run_device())
    assert LinkFramer().feed(output) == [CaptureFrame(Frame(b"\xde\xad", 200))]

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "capture.pcap")
        stop = threading.Event()
        transport = ReplayTransport(output, stop)
        with PcapWriter(path) as writer:
            CaptureSession(SnifferLink(transport), writer, channel=15, stop=stop).run()

        with PcapReader(path) as reader:
            assert reader.linktype == LINKTYPE_IEEE802_15_4_TAP
            records = list(reader.records())
    assert len(records) == 1
    tap = parse_tap_record(records[0].data)
    assert tap.fields["channel"] == 15
    assert tap.fields["lqi"] == 200
    assert tap.payload == b"\xde\xad"

    print(" OK")


def test_tcp_emulator_capture():
    print("test_tcp_emulator_capture...", end="")

    port = find_free_port()
    loop = asyncio.new_event_loop()
    server = loop.create_task(serve("127.0.0.1", port, rate=100.0))

    def run_server():
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(server)
        except asyncio.CancelledError:
            pass

    thread = threading.Thread(target=run_server, daemon=True)
    thread.start()

    try:
        # Wait for the emulator to start listening
        link = None
        deadline = time.monotonic() + TIMEOUT
        while time.monotonic() < deadline:
            try:
                link = SnifferLink.open(f"socket://127.0.0.1:{port}")
                break
            except TransportError:
                time.sleep(0.1)
        assert link is not None, "could not connect to emulator"

        with link:
            link.probe(timeout=TIMEOUT)

            stop = threading.Event()
            records = []

            class Collector:
                def write_record(self, data, timestamp=None):
                    records.append(parse_tap_record(data))
                    stop.set()

                def flush(self):
                    pass

            watchdog = threading.Timer(TIMEOUT, stop.set)
            watchdog.start()
            try:
                CaptureSession(link, Collector(), channel=20, stop=stop).run()
            finally:
                watchdog.cancel()

        assert records, "no frames captured"
        assert records[0].fields["channel"] == 20
        assert 0 <= records[0].fields["lqi"] <= 255
        assert len(records[0].payload) > 9
    finally:
        loop.call_soon_threadsafe(server.cancel)
        thread.join(TIMEOUT)

    print(" OK")


if __name__ == "__main__":
    print("sniffer154 end-to-end tests")
    print("===========================\n")

    test_device_to_pcap()
    test_tcp_emulator_capture()

    print("\nAll tests passed.")
