"""Show exactly what the probe sends: raw chunks, reassembled lines, parsed fields."""

import sys
import time

import serial

from soil_probe_lib import LineReassembler, parse_line
from soil_probe_lib.errors import DecodeError


def diagnose_connection(port="/dev/ttyUSB0", baud=9600, seconds=10.0):
    """Open the port and print everything received for a few seconds."""

    print(f"\n=== Opening {port} at {baud} baud ===")
    ser = serial.serial_for_url(
        port,
        baudrate=baud,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE,
        timeout=0.2,
        rtscts=False,
        dsrdtr=False,
        xonxoff=False
    )
    print(f"Port opened: {ser.is_open}")

    reassembler = LineReassembler()
    chunks = 0
    lines = 0
    parsed = 0

    print(f"\n=== Listening for {seconds:.0f} seconds ===")
    start = time.time()

    while time.time() - start < seconds:
        data = ser.read(max(1, ser.in_waiting))
        if not data:
            continue

        chunks += 1
        print(f"RX chunk ({len(data)} bytes): {data!r}")

        try:
            complete = list(reassembler.ingest(data))
        except DecodeError as e:
            print(f"  !! {e}")
            continue

        for line in complete:
            lines += 1
            update = parse_line(line)
            if update:
                parsed += 1
            fields = ", ".join(f"{f.value}={v:g}" for f, v in update.items()) or "(no valid fields)"
            print(f"  LINE {line!r} -> {fields}")

    print(f"\nChunks: {chunks}  Lines: {lines}  Lines with readings: {parsed}")
    if reassembler.pending:
        print(f"Unterminated data left in buffer: {reassembler.pending!r}")

    if chunks == 0:
        print("\n*** NOTHING RECEIVED ***")
        print("\nPossible reasons:")
        print("1. Wrong port, or probe not powered")
        print("2. Baud rate mismatch (probe default is 9600)")
        print("3. Probe only sends on request (check firmware mode)")
    elif parsed == 0:
        print("\n*** DATA RECEIVED BUT NO READINGS PARSED ***")
        print("Expected lines like: N:10,P:20,K:30,EC:40,temp:25,moisture:60")

    ser.close()
    print("\nPort closed")

if __name__ == "__main__":
    port = sys.argv[1] if len(sys.argv) > 1 else "/dev/ttyUSB0"
    baud = int(sys.argv[2]) if len(sys.argv) > 2 else 9600
    diagnose_connection(port, baud)
