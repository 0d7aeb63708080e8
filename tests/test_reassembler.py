"""Tests for reassembling byte chunks into lines."""

import pytest

from soil_probe_lib.errors import DecodeError
from soil_probe_lib.reassembler import LineReassembler


def test_line_split_across_two_chunks() -> None:
    """A record split across chunks comes out once, after the terminator arrives."""
    reassembler = LineReassembler()

    assert list(reassembler.ingest(b"N:1,P:2")) == []
    assert reassembler.pending == "N:1,P:2"

    assert list(reassembler.ingest(b"\n")) == ["N:1,P:2"]
    assert reassembler.pending == ""


def test_multiple_lines_in_one_chunk() -> None:
    """Several records in one chunk are returned in arrival order."""
    reassembler = LineReassembler()

    lines = list(reassembler.ingest(b"N:1\nP:2\nK:3"))

    assert lines == ["N:1", "P:2"]
    assert reassembler.pending == "K:3"


def test_lines_are_trimmed_and_blank_lines_dropped() -> None:
    """CRLF endings and padding are trimmed; empty lines never reach the parser."""
    reassembler = LineReassembler()

    lines = list(reassembler.ingest(b"  N:1 \r\n\r\n\n   \nP:2\r\n"))

    assert lines == ["N:1", "P:2"]
    assert reassembler.pending == ""


def test_buffer_never_holds_terminator() -> None:
    """After every ingest the retained buffer is at most one partial line."""
    reassembler = LineReassembler()

    for chunk in [b"N:1", b"0,P", b":2\nK", b":3\n\nEC:", b"4"]:
        reassembler.ingest(chunk)
        assert "\n" not in reassembler.pending

    assert reassembler.pending == "EC:4"


def test_concatenation_preserves_content() -> None:
    """Emitted lines plus the retained buffer reproduce the input, minus delimiters."""
    chunks = [b"N:1", b"0,P:20\nK", b":30\n", b"EC:4", b"0\ntemp:2", b"5"]
    reassembler = LineReassembler()

    emitted = []
    for chunk in chunks:
        emitted.extend(reassembler.ingest(chunk))

    joined_input = b"".join(chunks).decode("ascii")
    assert "\n".join(emitted + [reassembler.pending]) == joined_input


def test_multibyte_character_split_across_chunks() -> None:
    """A UTF-8 sequence split between reads decodes once complete."""
    reassembler = LineReassembler()
    encoded = "temp:25°\n".encode("utf-8")
    split = encoded.index(b"\xb0")  # second byte of the degree sign

    assert list(reassembler.ingest(encoded[:split])) == []
    assert list(reassembler.ingest(encoded[split:])) == ["temp:25°"]


def test_invalid_bytes_drop_chunk_and_keep_buffer() -> None:
    """An undecodable chunk raises DecodeError and leaves the buffer untouched."""
    reassembler = LineReassembler()
    reassembler.ingest(b"N:1")

    with pytest.raises(DecodeError):
        reassembler.ingest(b"\xff\xfe,P:2\n")

    assert reassembler.pending == "N:1"

    # Stream continues normally afterwards
    assert list(reassembler.ingest(b"0\n")) == ["N:10"]


def test_flush_returns_partial_line() -> None:
    """flush() hands back the unterminated tail once and clears it."""
    reassembler = LineReassembler()
    reassembler.ingest(b"N:1\nEC:4,temp:junk ")

    assert reassembler.flush() == "EC:4,temp:junk"
    assert reassembler.pending == ""
    assert reassembler.flush() is None


def test_reset_discards_partial_line() -> None:
    """reset() drops whatever was pending."""
    reassembler = LineReassembler()
    reassembler.ingest(b"N:1,P:")

    reassembler.reset()

    assert reassembler.pending == ""
    assert list(reassembler.ingest(b"2\n")) == ["2"]
