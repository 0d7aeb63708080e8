"""Custom exceptions for the soil probe library."""


class SoilProbeError(Exception):
    """Base exception for all soil probe library errors."""

    pass


class ProvisioningError(SoilProbeError):
    """Raised when no transport can be provided (no port selected or available)."""

    pass


class OpenError(SoilProbeError):
    """Raised when a port exists but cannot be opened."""

    pass


class CloseError(SoilProbeError):
    """Raised when closing a transport fails. Never blocks the return to idle."""

    pass


class DecodeError(SoilProbeError):
    """Raised when a received chunk is not valid text. The chunk is dropped."""

    pass


class ParseError(SoilProbeError):
    """Raised when a field within a line is malformed."""

    pass


class SerialIOError(SoilProbeError):
    """Raised when reading from an open port fails."""

    pass
