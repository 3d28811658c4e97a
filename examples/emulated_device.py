#!/usr/bin/env python3
"""Serve an emulated sniffer with synthetic 802.15.4 traffic over TCP.

Serves one host at a time on localhost:4154.  Every reception also
carries RSSI and channel metadata (extended frames).

Usage:
    python examples/emulated_device.py

Then in another terminal:
    python examples/live_capture.py
or
    sniffer154 capture socket://localhost:4154 --channel 15 -o /tmp/capture.pcap
"""

import asyncio
import logging

from sniffer154.device import DeviceConfig, serve

logging.basicConfig(level=logging.INFO,
                    format="%(asctime)s %(levelname)s %(name)s: %(message)s")

config = DeviceConfig(channel=11, outgoing_depth=8, extended_frames=True)

try:
    asyncio.run(serve("127.0.0.1", 4154, config, rate=20.0))
except KeyboardInterrupt:
    pass
