"""Connection session: transport lifecycle and the single read loop."""

import logging
import threading
from typing import List, Optional

from soil_probe_lib import parsing, protocol
from soil_probe_lib.errors import (
    CloseError,
    DecodeError,
    OpenError,
    ProvisioningError,
    SerialIOError,
)
from soil_probe_lib.event_log import EventLog
from soil_probe_lib.models import (
    Capability,
    ConnectionState,
    Event,
    Readings,
    SerialConfig,
    Severity,
)
from soil_probe_lib.readings import ReadingsStore
from soil_probe_lib.reassembler import LineReassembler
from soil_probe_lib.transport import SerialTransportProvider, Transport, TransportProvider

logger = logging.getLogger(__name__)


class ConnectionSession:
    """Owns one probe connection: transport handle, state and read loop.

    State machine:
        IDLE --connect()--> CONNECTING --ok--> ACTIVE
                                       --fail--> IDLE
        ACTIVE --disconnect()--> CLOSING --> IDLE
        ACTIVE --end of stream / read failure--> IDLE

    connect() while not IDLE is rejected, so at most one read loop exists.
    Failures are recorded in the event log; connect() and disconnect() do not
    raise for transport errors.
    """

    def __init__(
        self,
        provider: Optional[TransportProvider] = None,
        config: SerialConfig = SerialConfig(),
        event_log: Optional[EventLog] = None,
        readings_store: Optional[ReadingsStore] = None,
        log_raw_chunks: bool = True,
    ) -> None:
        """Initialize session in IDLE state.

        Args:
            provider: Transport provider. Defaults to pyserial with auto-selected port.
            config: Port configuration used on every open.
            event_log: Event log to write to. Defaults to a new 100-entry log.
            readings_store: Store to merge readings into. Defaults to all-zero readings.
            log_raw_chunks: Record every received chunk as an info event.
        """
        self._provider: TransportProvider = provider or SerialTransportProvider()
        self._config = config
        self._event_log = event_log or EventLog()
        self._readings = readings_store or ReadingsStore()
        self._log_raw_chunks = log_raw_chunks

        self._state = ConnectionState.IDLE
        self._state_lock = threading.Lock()

        # Valid only while ACTIVE/CLOSING
        self._transport: Optional[Transport] = None
        self._reassembler: Optional[LineReassembler] = None
        self._reader_thread: Optional[threading.Thread] = None
        self._cancel_event = threading.Event()

        # Reader that outlived disconnect(); blocks connect() until it exits
        self._stale_reader: Optional[threading.Thread] = None

    # ========================================================================
    # Connection Management
    # ========================================================================

    def connect(self) -> bool:
        """Request a port, open it and start the read loop.

        Returns:
            True if the session is now ACTIVE, False if the attempt was
            rejected or failed (see the event log for why)
        """
        with self._state_lock:
            state = self._state
            stale_reader = self._stale_reader
            if stale_reader is not None and not stale_reader.is_alive():
                stale_reader = self._stale_reader = None
            if state == ConnectionState.IDLE and stale_reader is None:
                self._state = ConnectionState.CONNECTING

        if state != ConnectionState.IDLE:
            self._log(
                Severity.WARNING,
                f"Already connected (state: {state.value}). Disconnect first.",
            )
            return False
        if stale_reader is not None:
            self._log(
                Severity.WARNING,
                "Previous read loop is still running. Try again once the port is released.",
            )
            return False

        try:
            self._log(Severity.INFO, "Requesting serial port...")
            handle = self._provider.request_handle()

            self._log(
                Severity.INFO,
                f"Port {handle.device} selected, attempting to open at baud rate {self._config.baud}...",
            )
            transport = self._provider.open(handle, self._config)

        except (ProvisioningError, OpenError) as e:
            self._fail_connect(str(e))
            return False
        except Exception as e:
            logger.error(f"Unexpected error while connecting: {e}", exc_info=True)
            self._fail_connect(str(e))
            return False

        with self._state_lock:
            self._transport = transport
            self._reassembler = LineReassembler()
            self._cancel_event = threading.Event()
            self._state = ConnectionState.ACTIVE
            reader_thread = self._create_reader_thread()

        self._log(Severity.SUCCESS, "Connection established successfully!")
        reader_thread.start()
        logger.debug("Started reader thread")

        return True

    def disconnect(self) -> None:
        """Stop the read loop, close the port and return to IDLE.

        Safe to call when IDLE (no-op). Close failures are logged; the state
        still becomes IDLE. A read loop that outlives the join timeout is kept
        as stale, and connect() is refused until it exits.
        """
        transport: Optional[Transport] = None
        reader_thread: Optional[threading.Thread] = None

        with self._state_lock:
            state = self._state
            if state == ConnectionState.ACTIVE:
                self._state = ConnectionState.CLOSING
                transport = self._transport
                reader_thread = self._reader_thread
                self._cancel_event.set()

        if state == ConnectionState.IDLE:
            logger.debug("disconnect() while idle, nothing to do")
            return
        if state != ConnectionState.ACTIVE:
            self._log(Severity.WARNING, f"Disconnect ignored while {state.value}")
            return

        logger.info("Disconnecting from probe...")

        try:
            if transport is not None:
                transport.cancel_read()
        except Exception as e:
            logger.warning(f"Failed to cancel pending read: {e}")

        self._stop_reader_thread(reader_thread)

        close_failed = False
        try:
            if transport is not None:
                self._provider.close(transport)
        except CloseError as e:
            close_failed = True
            self._log(Severity.ERROR, f"Disconnect error: {e}")
        except Exception as e:
            close_failed = True
            logger.error(f"Unexpected error while closing: {e}", exc_info=True)
            self._log(Severity.ERROR, f"Disconnect error: {e}")

        if reader_thread is not None and reader_thread.is_alive():
            # Closing the port unblocks most reads that ignore cancel_read()
            self._stop_reader_thread(reader_thread)

        stalled = reader_thread is not None and reader_thread.is_alive()
        with self._state_lock:
            self._release()
            if stalled:
                self._stale_reader = reader_thread

        if stalled:
            self._log(Severity.WARNING, "Read loop did not stop; reconnect is blocked until it exits")

        self._log(
            Severity.INFO,
            "Device disconnected" + (" (port may not have closed cleanly)" if close_failed else ""),
        )

    def check_capability(self) -> Capability:
        """Report whether a transport can be provided, without opening one.

        Details are also written to the event log line by line.
        """
        self._log(Severity.INFO, "Checking for serial devices...")
        try:
            capability = self._provider.check_capability()
        except Exception as e:
            logger.error(f"Capability check failed: {e}", exc_info=True)
            self._log(Severity.ERROR, f"Error checking devices: {e}")
            return Capability(supported=False, details=f"Error checking devices: {e}")

        for line in capability.details.splitlines():
            self._log(Severity.INFO, line.strip())

        if capability.supported:
            self._log(Severity.INFO, "Connect your probe and call connect()")
        else:
            self._log(Severity.WARNING, "No usable serial transport available")

        return capability

    # ========================================================================
    # Observer Surface
    # ========================================================================

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def readings(self) -> Readings:
        """Latest readings snapshot."""
        return self._readings.snapshot()

    @property
    def events(self) -> List[Event]:
        """Event log contents, newest first."""
        return self._event_log.snapshot()

    @property
    def pending_buffer(self) -> str:
        """Partial line received but not yet terminated (debug view)."""
        reassembler = self._reassembler
        return reassembler.pending if reassembler is not None else ""

    @property
    def event_log(self) -> EventLog:
        """Underlying event log (for subscribing)."""
        return self._event_log

    @property
    def readings_store(self) -> ReadingsStore:
        """Underlying readings store (for subscribing)."""
        return self._readings

    @property
    def provider(self) -> TransportProvider:
        """Transport provider used by connect()."""
        return self._provider

    @property
    def config(self) -> SerialConfig:
        """Port configuration used on open."""
        return self._config

    def is_connected(self) -> bool:
        """True while the read loop is running."""
        return self._state == ConnectionState.ACTIVE

    # ========================================================================
    # Internal Helpers: Lifecycle
    # ========================================================================

    def _log(self, severity: Severity, message: str) -> None:
        self._event_log.append(severity, message)

    def _fail_connect(self, reason: str) -> None:
        """Record a failed connect and return to IDLE."""
        with self._state_lock:
            self._state = ConnectionState.IDLE
        self._log(Severity.ERROR, f"Connection error: {reason}")

    def _release(self) -> None:
        """Drop transport references and go IDLE. Caller holds the state lock."""
        if self._reassembler is not None:
            self._reassembler.reset()
        self._transport = None
        self._reassembler = None
        self._reader_thread = None
        self._state = ConnectionState.IDLE

    def _teardown_from_reader(self, transport: Transport) -> None:
        """Close the port after the stream ended on its own.

        No-op if disconnect() already took over.
        """
        with self._state_lock:
            if self._state != ConnectionState.ACTIVE or self._transport is not transport:
                return
            # CLOSING keeps connect() and disconnect() out while the port closes
            self._state = ConnectionState.CLOSING

        try:
            self._provider.close(transport)
        except Exception as e:
            self._log(Severity.ERROR, f"Disconnect error: {e}")

        with self._state_lock:
            self._release()

    # ========================================================================
    # Internal Helpers: Read Loop
    # ========================================================================

    def _create_reader_thread(self) -> threading.Thread:
        """Build the thread consuming the transport. Caller holds the state lock."""
        assert self._transport is not None and self._reassembler is not None

        self._reader_thread = threading.Thread(
            target=self._reader_loop,
            args=(self._transport, self._reassembler, self._cancel_event),
            name="SoilProbeReader",
            daemon=True,
        )
        return self._reader_thread

    def _stop_reader_thread(self, reader_thread: Optional[threading.Thread]) -> None:
        """Join the reader thread after cancellation was requested."""
        if reader_thread is None or reader_thread is threading.current_thread():
            return

        if reader_thread.is_alive():
            logger.debug("Waiting for reader thread to stop...")
            reader_thread.join(timeout=protocol.READER_JOIN_TIMEOUT_S)

            if reader_thread.is_alive():
                logger.warning("Reader thread did not stop cleanly")

    def _reader_loop(
        self,
        transport: Transport,
        reassembler: LineReassembler,
        cancel: threading.Event,
    ) -> None:
        """Background thread loop: chunks -> lines -> readings.

        Decode and parse failures are isolated to their chunk or line. The
        loop ends on cancellation, end of stream, or a transport read failure.
        """
        logger.info(f"Reader loop started (thread {threading.get_ident()})")
        self._log(Severity.INFO, "Beginning to read data from device...")

        try:
            for chunk in transport.chunks(cancel):
                if cancel.is_set():
                    # Data that arrives after disconnect() is never merged
                    break
                self._handle_chunk(chunk, reassembler)

        except SerialIOError as e:
            if not cancel.is_set():
                self._log(Severity.ERROR, f"Reading error: {e}")
                self._teardown_from_reader(transport)
            return

        except Exception as e:
            logger.error(f"Error in reader loop: {e}", exc_info=True)
            if not cancel.is_set():
                self._log(Severity.ERROR, f"Reading error: {e}")
                self._teardown_from_reader(transport)
            return

        if cancel.is_set():
            logger.info("Reader loop cancelled")
            return

        # Stream ended without a final terminator; the last record still counts
        final_line = reassembler.flush()
        if final_line is not None:
            self._handle_lines([final_line])

        self._log(Severity.WARNING, "Serial reading stopped")
        self._teardown_from_reader(transport)

    def _handle_chunk(self, chunk: bytes, reassembler: LineReassembler) -> None:
        """Feed one chunk through reassembly, parsing and merge."""
        if self._log_raw_chunks:
            preview = chunk.decode(protocol.STREAM_ENCODING, errors="replace")
            self._log(Severity.INFO, f"Raw data received: {_escape_newlines(preview)}")

        try:
            lines = list(reassembler.ingest(chunk))
        except DecodeError as e:
            self._log(Severity.ERROR, f"Decode error: {e}")
            return

        self._handle_lines(lines)

    def _handle_lines(self, lines: List[str]) -> None:
        """Process complete lines; a failure on one line does not affect the others."""
        for line in lines:
            try:
                self._handle_line(line)
            except Exception as e:
                logger.error(f"Error processing line {line!r}: {e}", exc_info=True)
                self._log(Severity.ERROR, f"Parse error on line: {line} - {e}")

    def _handle_line(self, line: str) -> None:
        """Parse one complete line and merge any fields it carries."""
        self._log(Severity.INFO, f"Processing line: {line}")

        update = parsing.parse_line(line)
        if not update:
            logger.debug(f"No valid fields in line: {line!r}")
            return

        readings = self._readings.merge(update)
        self._log(Severity.SUCCESS, f"New readings parsed: {readings.describe()}")


def _escape_newlines(text: str) -> str:
    return text.replace("\r", "\\r").replace("\n", "\\n")
