"""Wire protocol constants and patterns for the soil probe line format.

The probe streams ASCII text, one record per line:

    N:10,P:20,K:30,EC:40,temp:25,moisture:60\n

Fields are ``name:value`` pairs separated by commas. Names come from a closed
set; values are plain decimal numbers. There is no quoting or escaping.
"""

import re
from typing import Final, Tuple

# ============================================================================
# Line Framing
# ============================================================================

# Records end with LF; a trailing CR (if the firmware sends CRLF) is trimmed
LINE_TERMINATOR: Final[str] = "\n"

FIELD_SEPARATOR: Final[str] = ","
NAME_VALUE_SEPARATOR: Final[str] = ":"

# Text encoding for the byte stream (ASCII is a subset)
STREAM_ENCODING: Final[str] = "utf-8"

# ============================================================================
# Value Validation
# ============================================================================

# Plain decimal number with optional sign, fraction and exponent.
# Rejects "inf", "nan", hex and underscore digit grouping that float() accepts.
RE_DECIMAL_NUMBER: Final[re.Pattern[str]] = re.compile(
    r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$"
)

# ============================================================================
# Serial Settings
# ============================================================================

# The only supported port parameter. Probe firmware ships at 9600 8N1.
DEFAULT_BAUD: Final[int] = 9600

# Read timeout for the serial port. Bounds how long cancellation takes to be seen.
READ_TIMEOUT_S: Final[float] = 0.2

# Upper bound for a single read when nothing is waiting in the OS buffer
MAX_CHUNK_SIZE: Final[int] = 4096

# ============================================================================
# Session Defaults
# ============================================================================

EVENT_LOG_CAPACITY: Final[int] = 100

# Max seconds to wait for the reader thread to exit on disconnect
READER_JOIN_TIMEOUT_S: Final[float] = 5.0

# ============================================================================
# Disconnect Detection
# ============================================================================

# pyserial keeps is_open True when the device goes away; instead the next read
# raises SerialException with one of these messages (lowercased match).
# posix: "device reports readiness to read but returned no data (device disconnected ...)"
# socket://: "socket disconnected"
DISCONNECT_MARKERS: Final[Tuple[str, ...]] = (
    "socket disconnected",
    "device disconnected",
    "returned no data",
)
