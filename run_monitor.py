#!/usr/bin/env python3
"""Live soil probe monitor.

Connects to the probe, prints readings whenever they change and disconnects
on Ctrl-C (or after --duration seconds).

Examples:
    python run_monitor.py --port /dev/ttyUSB0
    python run_monitor.py --port socket://192.168.1.40:4000 --duration 30
    python run_monitor.py --fake --duration 5 --csv readings.csv
    python run_monitor.py --check
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from data_store import ReadingsHistory
from fakes.fake_serial import FakeSerial, FakeTransportProvider
from soil_probe_lib import ConnectionSession, EventLog, SerialConfig, SerialTransportProvider
from soil_probe_lib.models import ConnectionState, Event, Readings, Severity


def build_session(args: argparse.Namespace) -> ConnectionSession:
    """Create a session for the requested port (or the built-in fake probe)."""
    if args.fake:
        fake = FakeSerial()
        fake.start_streaming(period_s=args.fake_period)
        provider = FakeTransportProvider(serial=fake)
    else:
        provider = SerialTransportProvider(port=args.port)

    return ConnectionSession(
        provider=provider,
        config=SerialConfig(baud=args.baud),
        event_log=EventLog(capacity=args.log_capacity),
        log_raw_chunks=args.raw,
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="Live soil probe monitor")
    parser.add_argument("--port", default=None,
                        help="Serial port or pyserial URL (default: auto-select)")
    parser.add_argument("--baud", type=int, default=9600,
                        help="Baud rate (default: 9600)")
    parser.add_argument("--duration", type=float, default=0.0,
                        help="Stop after N seconds (default: run until Ctrl-C)")
    parser.add_argument("--csv", type=Path, default=None,
                        help="Write readings history to this CSV file on exit")
    parser.add_argument("--raw", action="store_true",
                        help="Also log every raw chunk received")
    parser.add_argument("--log-capacity", type=int, default=100,
                        help="Event log size (default: 100)")
    parser.add_argument("--fake", action="store_true",
                        help="Use the built-in fake probe instead of a serial port")
    parser.add_argument("--fake-period", type=float, default=0.5,
                        help="Seconds between fake probe records (default: 0.5)")
    parser.add_argument("--check", action="store_true",
                        help="Only report whether a serial port is available")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    session = build_session(args)

    if args.check:
        capability = session.check_capability()
        status = "✓ supported" if capability.supported else "✗ not supported"
        print(f"Serial transport: {status}")
        print(capability.details)
        return 0 if capability.supported else 1

    history = ReadingsHistory()
    history.attach(session.readings_store)

    def print_event(event: Event) -> None:
        if event.severity in (Severity.WARNING, Severity.ERROR) or args.raw:
            print(f"  {event.format()}")

    def print_readings(readings: Readings) -> None:
        print(f"  {readings.describe()}")

    session.event_log.subscribe(print_event)
    session.readings_store.subscribe(print_readings)

    print("=" * 60)
    print("Soil Probe Monitor")
    print(f"Port: {'fake probe' if args.fake else (args.port or '(auto-select)')}")
    print(f"Baud: {args.baud}")
    print("=" * 60)

    if not session.connect():
        for event in session.events[:3]:
            print(f"  {event.format()}")
        return 1

    start = time.time()
    try:
        while session.state == ConnectionState.ACTIVE:
            if args.duration and time.time() - start >= args.duration:
                break
            time.sleep(0.2)
    except KeyboardInterrupt:
        print()
    finally:
        session.disconnect()
        history.detach()

    stats = history.get_stats()
    print("=" * 60)
    print(f"Snapshots recorded: {stats['row_count']}")
    print(f"Final readings: {session.readings.describe()}")

    if args.csv is not None:
        args.csv.write_text(history.to_csv())
        print(f"History written to {args.csv.resolve()}")

    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
