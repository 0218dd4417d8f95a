"""Locale-tolerant number parsing for spreadsheet cells.

Brazilian exports write `1.234,56` (dot thousands, comma decimals). Both
parsers strip dots, turn the first comma into a decimal point, then read the
longest numeric prefix. Both are total: any input gives a finite number and
unreadable cells give 0.
"""

import math
import re
from typing import Any

_INT_PREFIX = re.compile(r"^[+-]?\d+")
_FLOAT_PREFIX = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
# Empty numeric cells sometimes render as an epoch date (e.g. 1899-12-30)
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _normalize(value: str) -> str:
    return value.replace(".", "").replace(",", ".", 1)


def parse_int_safe(value: Any) -> int:
    """Parse an integer cell; `""`, `"-"`, None and garbage give 0.

    Examples:
        parse_int_safe("1.234") -> 1234
        parse_int_safe("12,9")  -> 12
    """
    if value is None:
        return 0
    text = str(value).strip()
    if not text or text == "-":
        return 0
    match = _INT_PREFIX.match(_normalize(text))
    if not match:
        return 0
    try:
        return int(match.group(0))
    except ValueError:
        # Digit strings past the interpreter's int conversion limit
        return 0


def parse_brazilian_number(value: Any) -> float:
    """Parse a decimal cell written with Brazilian separators.

    Examples:
        parse_brazilian_number("1.234,56")   -> 1234.56
        parse_brazilian_number("1899-12-30") -> 0
    """
    if value is None:
        return 0.0
    text = str(value).strip()
    if not text or text in ("-", "0"):
        return 0.0
    if _ISO_DATE.match(text):
        return 0.0
    match = _FLOAT_PREFIX.match(_normalize(text))
    if not match:
        return 0.0
    number = float(match.group(0))
    return number if math.isfinite(number) else 0.0
