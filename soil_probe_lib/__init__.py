"""
soil_probe_lib - Streaming decoder for NPK soil probes on a serial line.

Reads ``N:..,P:..,K:..,EC:..,temp:..,moisture:..`` text records, keeps the
latest value of each field and a bounded log of diagnostic events.
"""

from soil_probe_lib.errors import (
    CloseError,
    DecodeError,
    OpenError,
    ParseError,
    ProvisioningError,
    SerialIOError,
    SoilProbeError,
)
from soil_probe_lib.event_log import EventLog
from soil_probe_lib.models import (
    Capability,
    ConnectionState,
    Event,
    PortHandle,
    ReadingField,
    Readings,
    SerialConfig,
    Severity,
)
from soil_probe_lib.parsing import parse_line
from soil_probe_lib.readings import ReadingsStore, merge_readings
from soil_probe_lib.reassembler import LineReassembler
from soil_probe_lib.session import ConnectionSession
from soil_probe_lib.transport import SerialTransportProvider, Transport

__version__ = "0.1.0"

__all__ = [
    "ConnectionSession",
    "SerialTransportProvider",
    "Transport",
    "LineReassembler",
    "parse_line",
    "ReadingsStore",
    "merge_readings",
    "EventLog",
    "Readings",
    "ReadingField",
    "Event",
    "Severity",
    "ConnectionState",
    "SerialConfig",
    "PortHandle",
    "Capability",
    "SoilProbeError",
    "ProvisioningError",
    "OpenError",
    "CloseError",
    "DecodeError",
    "ParseError",
    "SerialIOError",
]
