"""Data models for the soil probe library."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

from soil_probe_lib import protocol


class ConnectionState(Enum):
    """Connection session lifecycle states."""

    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSING = "closing"


class Severity(Enum):
    """Event severity tags shown to the observer."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class ReadingField(Enum):
    """Closed set of fields the probe reports.

    Values are the exact names used on the wire (case-sensitive).
    """

    N = "N"
    P = "P"
    K = "K"
    EC = "EC"
    TEMP = "temp"
    MOISTURE = "moisture"

    @classmethod
    def from_name(cls, name: str) -> Optional["ReadingField"]:
        """Look up a field by its wire name, or None if it is not in the schema."""
        try:
            return cls(name)
        except ValueError:
            return None


# Subset of fields parsed from one line. Empty means "no change".
PartialUpdate = Dict[ReadingField, float]


@dataclass(frozen=True)
class Readings:
    """Latest known value of every schema field.

    Attributes:
        N: Nitrogen.
        P: Phosphorus.
        K: Potassium.
        EC: Electrical conductivity.
        temp: Soil temperature.
        moisture: Soil moisture.

    Values are reported as the probe sends them (no unit conversion).
    """

    N: float = 0.0
    P: float = 0.0
    K: float = 0.0
    EC: float = 0.0
    temp: float = 0.0
    moisture: float = 0.0

    def get(self, reading_field: ReadingField) -> float:
        """Value for one schema field."""
        values = {
            ReadingField.N: self.N,
            ReadingField.P: self.P,
            ReadingField.K: self.K,
            ReadingField.EC: self.EC,
            ReadingField.TEMP: self.temp,
            ReadingField.MOISTURE: self.moisture,
        }
        return values[reading_field]

    def to_dict(self) -> Dict[str, float]:
        """Field name -> value, in schema order."""
        return asdict(self)

    def describe(self) -> str:
        """Compact ``N:1.0, P:2.0, ...`` form used in event messages."""
        return ", ".join(f"{name}:{value:g}" for name, value in self.to_dict().items())


@dataclass(frozen=True)
class Event:
    """A single timestamped diagnostic event.

    Attributes:
        ts: Local time the event was recorded.
        severity: Severity tag.
        message: Human-readable text.
    """

    ts: datetime
    severity: Severity
    message: str

    def format(self) -> str:
        """Render as ``[HH:MM:SS] [severity] message``."""
        return f"[{self.ts.strftime('%H:%M:%S')}] [{self.severity.value}] {self.message}"


@dataclass(frozen=True)
class SerialConfig:
    """Port configuration requested on open. Baud rate is the only parameter."""

    baud: int = protocol.DEFAULT_BAUD

    def __post_init__(self) -> None:
        """Validate baud rate."""
        if self.baud <= 0:
            raise ValueError(f"baud must be positive, got {self.baud}")


@dataclass(frozen=True)
class PortHandle:
    """Identifies a port chosen by a transport provider (not yet opened).

    Attributes:
        device: Device path or pyserial URL (e.g. "/dev/ttyUSB0", "socket://host:port").
        description: Human-readable description from port enumeration.
    """

    device: str
    description: str = ""


@dataclass(frozen=True)
class Capability:
    """Result of probing whether the environment can provide a transport.

    Attributes:
        supported: True if at least one usable port is available.
        details: Multi-line human-readable diagnostic text.
        ports: Device names found during the probe.
    """

    supported: bool
    details: str
    ports: Tuple[str, ...] = field(default_factory=tuple)

