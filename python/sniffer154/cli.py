"""sniffer154 command-line tool."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import threading

from .client import SnifferLink, discover
from .errors import TransportError
from .pcap import LINKTYPE_IEEE802_15_4_TAP, PcapReader, PcapWriter, parse_tap_record
from .session import DEFAULT_CHANNEL, CaptureSession
from .transport import list_serial_ports

CHANNELS = range(11, 27)


def cmd_list(args: argparse.Namespace) -> None:
    """Print the serial ports that answer the probe handshake."""
    for port in discover(list_serial_ports(), timeout=args.timeout):
        print(port)


def cmd_probe(args: argparse.Namespace) -> None:
    """Probe a single port."""
    try:
        with SnifferLink.open(args.port) as link:
            link.probe(args.timeout)
    except TransportError as e:
        print(f"{args.port}: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"{args.port}: sniffer found")


def cmd_capture(args: argparse.Namespace) -> None:
    """Capture to a pcap file (or stdout) until SIGINT/SIGTERM."""
    stop = threading.Event()

    def request_stop(signum, frame):
        stop.set()

    signal.signal(signal.SIGTERM, request_stop)
    signal.signal(signal.SIGINT, request_stop)

    dest = sys.stdout.buffer if args.output == "-" else args.output
    try:
        with SnifferLink.open(args.port) as link, PcapWriter(dest) as writer:
            session = CaptureSession(link, writer, args.channel, stop)
            session.run()
    except TransportError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _format_record(index: int, timestamp: float, data: bytes) -> str:
    tap = parse_tap_record(data)
    fields_str = ", ".join(f"{k}={v:.1f}" if isinstance(v, float) else f"{k}={v}"
                           for k, v in tap.fields.items())
    return f"[{timestamp:17.6f}] #{index} {fields_str}: {tap.payload.hex()}"


def cmd_dump(args: argparse.Namespace) -> None:
    """Dump a capture file to stdout."""
    with PcapReader(args.file) as reader:
        if reader.linktype != LINKTYPE_IEEE802_15_4_TAP:
            print(f"Error: linktype {reader.linktype} is not IEEE 802.15.4 TAP",
                  file=sys.stderr)
            sys.exit(1)
        try:
            for i, record in enumerate(reader.records()):
                try:
                    print(_format_record(i, record.timestamp, record.data))
                except ValueError as e:
                    print(f"[{record.timestamp:17.6f}] #{i} malformed: {e}")
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)


def cmd_emulate(args: argparse.Namespace) -> None:
    """Serve an emulated device over TCP."""
    from .device.emulator import DeviceConfig, serve

    config = DeviceConfig(extended_frames=args.extended)
    try:
        asyncio.run(serve(args.host, args.port, config, args.rate))
    except KeyboardInterrupt:
        pass


def main() -> None:
    parser = argparse.ArgumentParser(prog="sniffer154",
                                     description="IEEE 802.15.4 sniffer tool")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug logging on stderr")
    sub = parser.add_subparsers(dest="command")

    # list
    p_list = sub.add_parser("list", help="List serial ports running the sniffer")
    p_list.add_argument("--timeout", type=float, default=0.5, help="Probe timeout (s)")

    # probe
    p_probe = sub.add_parser("probe", help="Probe one port")
    p_probe.add_argument("port", help="Serial port or URL (e.g. socket://localhost:4154)")
    p_probe.add_argument("--timeout", type=float, default=0.5, help="Probe timeout (s)")

    # capture
    p_capture = sub.add_parser("capture", help="Capture frames to pcap")
    p_capture.add_argument("port", help="Serial port or URL")
    p_capture.add_argument("--channel", type=int, default=DEFAULT_CHANNEL,
                           choices=CHANNELS, metavar="{11..26}", help="Radio channel")
    p_capture.add_argument("-o", "--output", default="-",
                           help="Output pcap file ('-' for stdout)")

    # dump
    p_dump = sub.add_parser("dump", help="Dump a capture file")
    p_dump.add_argument("file", help="Path to .pcap file")

    # emulate
    p_emulate = sub.add_parser("emulate", help="Serve an emulated sniffer over TCP")
    p_emulate.add_argument("--host", default="127.0.0.1", help="Listen address")
    p_emulate.add_argument("--port", type=int, default=4154, help="Listen port")
    p_emulate.add_argument("--rate", type=float, default=10.0,
                           help="Synthetic frames per second")
    p_emulate.add_argument("--extended", action="store_true",
                           help="Send frames with RSSI and channel metadata")

    args = parser.parse_args()
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "list":
        cmd_list(args)
    elif args.command == "probe":
        cmd_probe(args)
    elif args.command == "capture":
        cmd_capture(args)
    elif args.command == "dump":
        cmd_dump(args)
    elif args.command == "emulate":
        cmd_emulate(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
