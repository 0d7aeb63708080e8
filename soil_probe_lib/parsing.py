"""Pure functions for parsing probe data lines into reading updates."""

import logging
import math
from typing import Tuple

from soil_probe_lib import protocol
from soil_probe_lib.errors import ParseError
from soil_probe_lib.models import PartialUpdate, ReadingField

logger = logging.getLogger(__name__)


def parse_value(text: str) -> float:
    """Parse a field value as a finite decimal number.

    Args:
        text: Value text (surrounding whitespace allowed)

    Returns:
        Parsed float

    Raises:
        ParseError: If text is not a plain decimal number, or is out of range
    """
    candidate = text.strip()
    if not protocol.RE_DECIMAL_NUMBER.match(candidate):
        raise ParseError(f"Not a decimal number: {text!r}")

    value = float(candidate)
    if not math.isfinite(value):
        # e.g. "1e999" overflows to inf
        raise ParseError(f"Value out of range: {text!r}")

    return value


def parse_field(part: str) -> Tuple[ReadingField, float]:
    """Parse one ``name:value`` field.

    Only the first colon separates name from value, so "N:1:2" has value "1:2"
    and is rejected.

    Args:
        part: One comma-separated piece of a data line

    Returns:
        Tuple of (field, value)

    Raises:
        ParseError: If there is no colon, the name is not in the schema,
                    or the value is not a finite number
    """
    name, sep, value_text = part.partition(protocol.NAME_VALUE_SEPARATOR)
    if not sep:
        raise ParseError(f"Missing '{protocol.NAME_VALUE_SEPARATOR}' in field: {part!r}")

    name = name.strip()
    reading_field = ReadingField.from_name(name)
    if reading_field is None:
        raise ParseError(f"Unknown field name: {name!r}")

    return reading_field, parse_value(value_text)


def parse_line(line: str) -> PartialUpdate:
    """Parse a data line into a partial readings update.

    Expected format: ``name:value[,name:value]...``
    Example: "N:10,P:20,K:30,EC:40,temp:25,moisture:60"

    Malformed fields are skipped individually; the rest of the line still
    applies. A line with no valid fields yields an empty update.

    Args:
        line: One complete line (terminator already removed)

    Returns:
        Mapping of each valid field to its value. If a field repeats, the
        last occurrence wins.
    """
    update: PartialUpdate = {}

    line = line.strip()
    if not line:
        return update

    for part in line.split(protocol.FIELD_SEPARATOR):
        try:
            reading_field, value = parse_field(part)
        except ParseError as e:
            logger.debug(f"Skipping field: {e}")
            continue
        update[reading_field] = value

    return update
