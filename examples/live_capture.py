#!/usr/bin/env python3
"""Connect to a sniffer and print captured frames as they arrive.

Run the emulated device first:
    python examples/emulated_device.py      # serves on localhost:4154

Then in another terminal:
    python examples/live_capture.py [port-or-url] [channel]
"""

import sys

from sniffer154.client import SnifferLink
from sniffer154.errors import DecodeError
from sniffer154.wire import CaptureFrame, CaptureFrameExtended

port = sys.argv[1] if len(sys.argv) > 1 else "socket://localhost:4154"
channel = int(sys.argv[2]) if len(sys.argv) > 2 else 15

link = SnifferLink.open(port)
link.probe(timeout=2.0)
link.set_channel(channel)
link.start_capture()

try:
    while True:
        try:
            packet = link.receive()
        except DecodeError as e:
            print(f"corrupt frame: {e}")
            continue
        if isinstance(packet, CaptureFrameExtended):
            frame = packet.frame
            rssi = frame.received_signal_strength_indicator
            rssi_str = "?" if rssi is None else f"{rssi / 1000:.0f} dBm"
            print(f"ch={frame.channel} rssi={rssi_str} lqi={frame.link_quality_index} "
                  f"{frame.payload.hex()}")
        elif isinstance(packet, CaptureFrame):
            print(f"ch={channel} lqi={packet.frame.link_quality_index} "
                  f"{packet.frame.payload.hex()}")
except KeyboardInterrupt:
    pass
finally:
    link.stop_capture()
    link.close()
