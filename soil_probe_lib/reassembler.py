"""Reassembly of a raw byte stream into complete text lines."""

import codecs
import logging
from typing import Iterator, Optional

from soil_probe_lib import protocol
from soil_probe_lib.errors import DecodeError

logger = logging.getLogger(__name__)


class LineReassembler:
    """Accumulates byte chunks and emits newline-terminated lines.

    Serial reads return whatever bytes happen to be in the OS buffer, so a
    record may arrive split across several chunks (or several records in one).
    The reassembler keeps the trailing partial line between calls.

    Invariant: after each ingest() the retained buffer holds no line terminator.
    """

    def __init__(self) -> None:
        """Initialize with an empty buffer."""
        self._buffer = ""
        # Incremental so a multi-byte character split across chunks decodes cleanly
        self._decoder = codecs.getincrementaldecoder(protocol.STREAM_ENCODING)(errors="strict")

    def ingest(self, chunk: bytes) -> Iterator[str]:
        """Append a chunk and return the lines it completed.

        The buffer is updated before this returns; the returned iterator only
        walks the already-split pieces.

        Args:
            chunk: Raw bytes as delivered by the transport

        Returns:
            Iterator over complete lines in arrival order, whitespace trimmed,
            blank lines skipped

        Raises:
            DecodeError: If the chunk is not valid text. The chunk is dropped
                         and the retained buffer is left unchanged.
        """
        try:
            text = self._decoder.decode(chunk)
        except UnicodeDecodeError as e:
            self._decoder.reset()
            raise DecodeError(f"Dropped {len(chunk)} undecodable bytes: {e.reason}") from e

        pieces = (self._buffer + text).split(protocol.LINE_TERMINATOR)
        self._buffer = pieces.pop()

        if pieces:
            logger.debug(f"Reassembled {len(pieces)} line(s), {len(self._buffer)} chars pending")

        return (line for line in (piece.strip() for piece in pieces) if line)

    def flush(self) -> Optional[str]:
        """Take the partial line as a final line at end of stream.

        Returns:
            The trimmed partial line, or None if it is blank
        """
        line = self._buffer.strip()
        self._buffer = ""
        self._decoder.reset()
        return line or None

    def reset(self) -> None:
        """Discard the partial line and any pending decoder state."""
        if self._buffer:
            logger.debug(f"Discarding partial line: {self._buffer!r}")
        self._buffer = ""
        self._decoder.reset()

    @property
    def pending(self) -> str:
        """Partial line received but not yet terminated."""
        return self._buffer
