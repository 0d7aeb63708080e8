"""Fake serial port and transport provider that simulate an NPK soil probe.

FakeSerial emulates what pyserial hands back from a probe: arbitrary-sized
chunks of the ``N:..,P:..,K:..`` line stream, read timeouts, port hang-up, USB unplug and
read cancellation. FakeTransportProvider plugs it into ConnectionSession with
injectable provisioning/open/close failures.
"""

import logging
import queue
import random
import threading
import time
from typing import Callable, List, Optional

import serial

from soil_probe_lib.errors import CloseError, OpenError, ProvisioningError
from soil_probe_lib.models import Capability, PortHandle, SerialConfig
from soil_probe_lib.transport import Transport

logger = logging.getLogger(__name__)

# Queue markers (never delivered as data)
_HANGUP = object()
_WAKE = object()
_UNPLUG = object()


class FakeSerial:
    """Deterministic stand-in for a pyserial port connected to a soil probe.

    Data is delivered in the chunks passed to feed(), so tests control
    exactly where records are split.
    """

    def __init__(self, timeout: float = 0.05) -> None:
        """Initialize fake port (already open, like serial.Serial).

        Args:
            timeout: Read timeout in seconds when no data is queued
        """
        self.timeout = timeout
        self.is_open = True
        self.close_calls = 0
        self.read_calls = 0

        self._chunks: "queue.Queue[object]" = queue.Queue()
        self._pending = bytearray()
        self._read_error: Optional[Exception] = None

        # Threading for simulated streaming
        self._stream_thread: Optional[threading.Thread] = None
        self._stop_streaming = threading.Event()

    # ========================================================================
    # pyserial surface
    # ========================================================================

    def read(self, size: int = 1) -> bytes:
        """Read up to size bytes, waiting up to timeout for the next chunk.

        Returns:
            Bytes, or b"" on timeout / cancellation / hang-up
        """
        if not self.is_open:
            raise RuntimeError("Port is closed")

        self.read_calls += 1

        if self._read_error is not None:
            error, self._read_error = self._read_error, None
            raise error

        if not self._pending:
            try:
                item = self._chunks.get(timeout=self.timeout)
            except queue.Empty:
                return b""

            if item is _HANGUP:
                # Remote end went away; the port reports closed from now on
                self.is_open = False
                return b""
            if item is _WAKE:
                return b""
            if item is _UNPLUG:
                # pyserial leaves is_open True and raises on the read
                raise serial.SerialException(
                    "device reports readiness to read but returned no data "
                    "(device disconnected or multiple access on port?)"
                )
            self._pending.extend(item)  # type: ignore[arg-type]

        data = bytes(self._pending[:size])
        del self._pending[:size]
        return data

    @property
    def in_waiting(self) -> int:
        """Bytes of the current chunk not yet read."""
        return len(self._pending)

    def cancel_read(self) -> None:
        """Wake a blocked read()."""
        self._chunks.put(_WAKE)

    def close(self) -> None:
        """Close the fake port."""
        self.close_calls += 1
        self.is_open = False
        self.stop_streaming()
        logger.debug("FakeSerial closed")

    # ========================================================================
    # Test controls
    # ========================================================================

    def feed(self, data: bytes) -> None:
        """Queue one chunk exactly as a single read would deliver it."""
        self._chunks.put(bytes(data))

    def feed_line(self, text: str) -> None:
        """Queue one complete record (LF appended) as a single chunk."""
        self.feed((text + "\n").encode("ascii"))

    def hang_up(self) -> None:
        """Signal end of stream after all queued chunks have been read."""
        self._chunks.put(_HANGUP)

    def unplug(self) -> None:
        """Simulate a pulled USB adapter after all queued chunks have been read."""
        self._chunks.put(_UNPLUG)

    def fail_next_read(self, error: Exception) -> None:
        """Make the next read() raise, as pyserial does when a USB adapter is pulled."""
        self._read_error = error

    def start_streaming(self, period_s: float = 0.1, seed: Optional[int] = None) -> None:
        """Start emitting random readings every period_s seconds.

        Each record is split into 1-3 chunks at random points, as a real UART
        read would.
        """
        self._stop_streaming.clear()
        self._stream_thread = threading.Thread(
            target=self._streaming_loop,
            args=(period_s, random.Random(seed)),
            name="FakeProbeStream",
            daemon=True,
        )
        self._stream_thread.start()
        logger.debug("Started fake probe streaming thread")

    def stop_streaming(self) -> None:
        """Stop streaming thread if running."""
        if self._stream_thread and self._stream_thread.is_alive():
            self._stop_streaming.set()
            if self._stream_thread is not threading.current_thread():
                self._stream_thread.join(timeout=2.0)
            self._stream_thread = None
            logger.debug("Stopped fake probe streaming thread")

    # ========================================================================
    # Internal: Streaming
    # ========================================================================

    def _streaming_loop(self, period_s: float, rng: random.Random) -> None:
        logger.debug(f"Streaming loop started, period={period_s:.3f}s")

        while not self._stop_streaming.is_set():
            data = make_probe_line(rng).encode("ascii") + b"\n"
            cuts = sorted(rng.sample(range(1, len(data)), k=rng.randint(0, 2)))
            start = 0
            for cut in cuts + [len(data)]:
                self.feed(data[start:cut])
                start = cut
            time.sleep(period_s)

        logger.debug("Streaming loop stopped")


def make_probe_line(rng: random.Random) -> str:
    """Generate one plausible probe record."""
    return (
        f"N:{rng.randint(0, 200)},"
        f"P:{rng.randint(0, 200)},"
        f"K:{rng.randint(0, 200)},"
        f"EC:{rng.uniform(0.0, 2000.0):.1f},"
        f"temp:{rng.uniform(5.0, 35.0):.1f},"
        f"moisture:{rng.uniform(0.0, 100.0):.1f}"
    )


class FakeTransportProvider:
    """TransportProvider handing out FakeSerial ports.

    The first open() uses the FakeSerial passed in (if any); later opens
    create fresh ones, like replugging a device.
    """

    def __init__(
        self,
        serial: Optional[FakeSerial] = None,
        fail_request: bool = False,
        fail_open: bool = False,
        fail_close: bool = False,
        device: str = "/dev/fake-probe",
    ) -> None:
        self.serial = serial
        self.fail_request = fail_request
        self.fail_open = fail_open
        self.fail_close = fail_close
        self.device = device

        self.opened: List[FakeSerial] = []
        self.configs: List[SerialConfig] = []
        self.close_calls = 0

    def request_handle(self) -> PortHandle:
        if self.fail_request:
            raise ProvisioningError("No port selected")
        return PortHandle(device=self.device, description="Fake soil probe")

    def open(self, handle: PortHandle, config: SerialConfig) -> Transport:
        if self.fail_open:
            raise OpenError(f"Failed to open {handle.device}: device busy")

        serial = self.serial if self.serial is not None and self.serial.is_open else FakeSerial()
        self.serial = serial
        self.opened.append(serial)
        self.configs.append(config)
        return Transport(serial, name=handle.device)

    def close(self, transport: Transport) -> None:
        self.close_calls += 1
        if self.fail_close:
            raise CloseError(f"Failed to close {transport.name}: I/O error")
        transport.close()

    def check_capability(self) -> Capability:
        if self.fail_request:
            return Capability(supported=False, details="No serial ports found")
        return Capability(
            supported=True,
            details=f"Found 1 port(s)\n  {self.device} is accessible",
            ports=(self.device,),
        )


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.02) -> bool:
    """Poll predicate until it is true or timeout expires.

    Returns:
        Final value of predicate()
    """
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
