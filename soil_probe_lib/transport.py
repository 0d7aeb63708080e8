"""Serial transport layer for soil probe communication.

A TransportProvider finds a port, opens it and closes it. The opened
Transport yields raw byte chunks until the stream ends or the caller cancels.
"""

import logging
import os
import threading
from typing import Iterator, List, Optional, Protocol

from soil_probe_lib import protocol
from soil_probe_lib.errors import CloseError, OpenError, ProvisioningError, SerialIOError
from soil_probe_lib.models import Capability, PortHandle, SerialConfig

logger = logging.getLogger(__name__)


class SerialLike(Protocol):
    """Protocol for serial port interface (allows test doubles)."""

    def read(self, size: int = 1) -> bytes:
        """Read up to size bytes; returns b"" on timeout."""
        ...

    @property
    def in_waiting(self) -> int:
        """Number of bytes already buffered by the OS."""
        ...

    def close(self) -> None:
        """Close serial port."""
        ...

    @property
    def is_open(self) -> bool:
        """Check if port is open."""
        ...


class Transport:
    """Wrapper around an open pyserial port that produces byte chunks.

    The port is owned exclusively by whoever holds the Transport (the
    connection session); nothing else may read from or close it.
    """

    def __init__(self, serial_port: SerialLike, name: str = "") -> None:
        """Initialize transport with an open serial port instance.

        Args:
            serial_port: Object implementing SerialLike protocol
                        (e.g., serial.Serial or FakeSerial for testing)
            name: Port name for log messages
        """
        self._port = serial_port
        self.name = name

    def chunks(self, cancel: threading.Event) -> Iterator[bytes]:
        """Yield byte chunks as they arrive.

        Each iteration blocks in a single port read for at most the port's
        read timeout, so setting ``cancel`` stops the iterator within one read.

        Args:
            cancel: Set by the owner to stop reading

        Yields:
            Non-empty byte strings in arrival order

        Returns when cancelled, when the port reports it is closed, or when the
        read fails because the device or socket peer went away (end of stream).

        Raises:
            SerialIOError: If a read fails while the port is still open
        """
        while not cancel.is_set():
            if not self._port.is_open:
                logger.info(f"Port {self.name} closed, end of stream")
                return

            try:
                size = min(max(1, self._port.in_waiting), protocol.MAX_CHUNK_SIZE)
                data = self._port.read(size)
            except Exception as e:
                if cancel.is_set() or not self._port.is_open:
                    logger.debug(f"Read interrupted on {self.name}: {e}")
                    return
                if _is_disconnect(e):
                    logger.info(f"Port {self.name} disconnected, end of stream: {e}")
                    return
                raise SerialIOError(f"Failed to read from {self.name}: {e}") from e

            if data:
                yield data

    def cancel_read(self) -> None:
        """Unblock an in-flight read, if the underlying port supports it."""
        cancel = getattr(self._port, "cancel_read", None)
        if cancel is not None:
            cancel()
            logger.debug(f"Cancelled pending read on {self.name}")

    def close(self) -> None:
        """Close the serial port."""
        if self._port.is_open:
            self._port.close()
            logger.info(f"Closed serial port {self.name}")

    @property
    def is_open(self) -> bool:
        """Check if port is currently open."""
        return self._port.is_open


class TransportProvider(Protocol):
    """What the connection session needs from the transport layer."""

    def request_handle(self) -> PortHandle:
        """Choose a port. Raises ProvisioningError if none is available."""
        ...

    def open(self, handle: PortHandle, config: SerialConfig) -> Transport:
        """Open the chosen port. Raises OpenError on failure."""
        ...

    def close(self, transport: Transport) -> None:
        """Close an opened port. Raises CloseError on failure."""
        ...

    def check_capability(self) -> Capability:
        """Report whether a transport could be provided, without opening one."""
        ...


class SerialTransportProvider:
    """TransportProvider backed by pyserial.

    Accepts device paths ("/dev/ttyUSB0", "COM3") and pyserial URLs
    ("socket://192.168.1.20:4000", "loop://"). With no port configured, the
    first enumerated serial port is used.
    """

    def __init__(
        self, port: Optional[str] = None, timeout_s: float = protocol.READ_TIMEOUT_S
    ) -> None:
        """Initialize provider.

        Args:
            port: Device path or pyserial URL. None to auto-select.
            timeout_s: Read timeout in seconds. Default 0.2s so disconnect is prompt.
        """
        self._port = port or None
        self._timeout_s = timeout_s

    @property
    def port(self) -> Optional[str]:
        """Configured port, or None when auto-selecting."""
        return self._port

    def request_handle(self) -> PortHandle:
        """Return the configured port, or the first one found.

        Raises:
            ProvisioningError: If no port is configured and none are found
        """
        if self._port:
            return PortHandle(device=self._port, description="configured")

        ports = self._discover_ports()
        if not ports:
            raise ProvisioningError("No serial port found. Is the probe plugged in?")

        chosen = ports[0]
        logger.info(f"Auto-selected {chosen.device} ({chosen.description}) of {len(ports)} port(s)")
        return PortHandle(device=chosen.device, description=chosen.description or "")

    def open(self, handle: PortHandle, config: SerialConfig) -> Transport:
        """Open a port at the configured baud rate, 8N1, no flow control.

        Raises:
            OpenError: If pyserial is missing or the port cannot be opened
        """
        try:
            import serial  # type: ignore
        except ImportError as e:
            raise OpenError("pyserial not installed. Run: pip install pyserial") from e

        try:
            ser = serial.serial_for_url(
                handle.device,
                baudrate=config.baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self._timeout_s,
                rtscts=False,
                dsrdtr=False,
                xonxoff=False,
            )
        except Exception as e:
            raise OpenError(f"Failed to open {handle.device} at {config.baud} baud: {e}") from e

        logger.info(f"Opened serial port {handle.device} at {config.baud} baud, timeout={self._timeout_s}s")
        return Transport(ser, name=handle.device)

    def close(self, transport: Transport) -> None:
        """Close an opened transport.

        Raises:
            CloseError: If the port fails to close
        """
        try:
            transport.close()
        except Exception as e:
            raise CloseError(f"Failed to close {transport.name}: {e}") from e

    def check_capability(self) -> Capability:
        """Enumerate ports and check access, without opening anything."""
        lines: List[str] = []

        try:
            import serial  # type: ignore
        except ImportError:
            return Capability(
                supported=False, details="pyserial not installed. Run: pip install pyserial"
            )

        lines.append(f"pyserial {getattr(serial, '__version__', 'unknown')}")

        if self._port and "://" in self._port:
            lines.append(f"Configured URL transport: {self._port}")
            return Capability(supported=True, details="\n".join(lines), ports=(self._port,))

        candidates = [self._port] if self._port else [p.device for p in self._discover_ports()]
        if not candidates:
            lines.append("No serial ports found")
            lines.append("Connect the probe and check 'dmesg | tail' for USB detection")
            return Capability(supported=False, details="\n".join(lines))

        lines.append(f"Found {len(candidates)} port(s)")
        usable = []
        for device in candidates:
            ok, msg = _check_port_access(device)
            lines.append(f"  {msg}")
            if ok:
                usable.append(device)

        return Capability(supported=bool(usable), details="\n".join(lines), ports=tuple(candidates))

    def _discover_ports(self) -> list:
        """List serial ports known to the OS, sorted by device name."""
        from serial.tools import list_ports  # type: ignore

        return sorted(list_ports.comports(), key=lambda p: p.device)


def _is_disconnect(error: Exception) -> bool:
    """True if a read error means the other end went away rather than an I/O fault."""
    message = str(error).lower()
    return any(marker in message for marker in protocol.DISCONNECT_MARKERS)


def _check_port_access(device: str) -> tuple[bool, str]:
    """Check that the current user can read and write a device path.

    Args:
        device: Serial port path

    Returns:
        (has_access, message) tuple
    """
    if not os.path.exists(device):
        # Windows COM names are not filesystem paths; let open() decide
        if os.name == "nt":
            return True, f"{device} present"
        return False, f"{device} does not exist"

    if os.access(device, os.R_OK | os.W_OK):
        return True, f"{device} is accessible"

    return False, f"{device} not accessible (add user to the port's group, e.g. 'dialout')"
