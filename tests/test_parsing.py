"""Tests for parsing probe lines into partial updates."""

import pytest

from soil_probe_lib.errors import ParseError
from soil_probe_lib.models import ReadingField
from soil_probe_lib.parsing import parse_field, parse_line, parse_value


def test_parse_full_line() -> None:
    """All six schema fields are parsed."""
    update = parse_line("N:10,P:20,K:30,EC:40,temp:25,moisture:60")

    assert update == {
        ReadingField.N: 10.0,
        ReadingField.P: 20.0,
        ReadingField.K: 30.0,
        ReadingField.EC: 40.0,
        ReadingField.TEMP: 25.0,
        ReadingField.MOISTURE: 60.0,
    }


def test_unknown_field_and_bad_number_skipped() -> None:
    """Bad fields are dropped individually; valid ones survive."""
    update = parse_line("N:10,foo:99,P:abc")

    assert update == {ReadingField.N: 10.0}


@pytest.mark.parametrize("line", ["", "   ", "garbage", "N", ":5", "N:", ",,,"])
def test_lines_without_valid_fields_yield_empty_update(line: str) -> None:
    """No valid fields means an empty update, not an exception."""
    assert parse_line(line) == {}


def test_whitespace_around_names_and_values() -> None:
    """Names and values are trimmed."""
    update = parse_line(" N : 1.5 , temp :-3.25 ")

    assert update == {ReadingField.N: 1.5, ReadingField.TEMP: -3.25}


def test_field_names_are_case_sensitive() -> None:
    """Only exact schema names are accepted."""
    assert parse_line("n:1,Temp:2,MOISTURE:3") == {}


@pytest.mark.parametrize("text", ["nan", "NaN", "inf", "-Infinity", "1e999", "0x10", "1_000", "12abc", ""])
def test_non_finite_or_non_decimal_values_rejected(text: str) -> None:
    """Only finite plain decimals are valid values."""
    with pytest.raises(ParseError):
        parse_value(text)


@pytest.mark.parametrize(
    "text,expected",
    [("42", 42.0), ("-7", -7.0), ("+3.5", 3.5), (".5", 0.5), ("5.", 5.0), ("1.2e3", 1200.0)],
)
def test_decimal_values_accepted(text: str, expected: float) -> None:
    assert parse_value(text) == expected


def test_value_split_on_first_colon_only() -> None:
    """'N:1:2' has value '1:2', which is not a number."""
    with pytest.raises(ParseError):
        parse_field("N:1:2")


def test_parse_field_errors() -> None:
    """Missing separator and unknown names raise ParseError."""
    with pytest.raises(ParseError):
        parse_field("N10")
    with pytest.raises(ParseError):
        parse_field("pH:7")

    assert parse_field("EC:1.25") == (ReadingField.EC, 1.25)


def test_repeated_field_last_wins() -> None:
    assert parse_line("N:1,N:2") == {ReadingField.N: 2.0}
