"""Tests for locale-tolerant number parsing."""

import math

import pytest

from funnelboard.services.number_parsing import parse_brazilian_number, parse_int_safe


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1.234,56", 1234.56),
        ("12,5", 12.5),
        ("100", 100.0),
        ("-3,2", -3.2),
        ("R$ 10", 0.0),
        ("10%", 10.0),
        ("1899-12-30", 0.0),
        ("", 0.0),
        ("-", 0.0),
        (None, 0.0),
        ("abc", 0.0),
    ],
)
def test_parse_brazilian_number(raw, expected):
    assert parse_brazilian_number(raw) == pytest.approx(expected)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1.234", 1234),
        ("12,9", 12),
        ("42", 42),
        ("-", 0),
        ("", 0),
        (None, 0),
        ("n/a", 0),
        (" 10", 10),
    ],
)
def test_parse_int_safe(raw, expected):
    assert parse_int_safe(raw) == expected


@pytest.mark.parametrize("raw", ["inf", "nan", "1e999", "-1e999", "NaN", "Infinity", ",", "..", "1,2,3", "\x00", "9" * 5000])
def test_parsers_are_total_and_finite(raw):
    assert math.isfinite(parse_brazilian_number(raw))
    assert isinstance(parse_int_safe(raw), int)
