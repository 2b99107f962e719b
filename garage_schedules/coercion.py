"""
Safe type converters for loosely-typed model output.

The model returns numbers as strings ("$1,200.00"), dates with times
attached, booleans as "yes", and nulls as "N/A". Every converter here
returns None when it cannot produce a clean value; none of them raise.
"""

from __future__ import annotations

import math
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

_NUMERIC_NOISE = re.compile(r"[,$\s]|usd", re.IGNORECASE)

# Values at or above this are treated as unparseable
MAX_MAGNITUDE = Decimal("1e15")


def safe_decimal(value: Any) -> Decimal | None:
    """Convert a number or numeric string to a finite Decimal below MAX_MAGNITUDE."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        result = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = _NUMERIC_NOISE.sub("", value)
        if not cleaned:
            return None
        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            return None
    else:
        return None
    if not result.is_finite() or abs(result) >= MAX_MAGNITUDE:
        return None
    return result


def safe_float(value: Any) -> float | None:
    number = safe_decimal(value)
    return float(number) if number is not None else None


def safe_int(value: Any) -> int | None:
    """Convert to int only when the value is integral (3, 3.0, "3")."""
    number = safe_decimal(value)
    if number is None or number != number.to_integral_value():
        return None
    return int(number)


def safe_date(value: Any) -> date | None:
    """Parse an ISO date, tolerating a trailing time component."""
    if value is None:
        return None
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) > 10 and text[10] in "T ":
        text = text[:10]
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def safe_text(value: Any) -> str | None:
    """Return stripped text, or None for empty / non-scalar values."""
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    text = str(value).strip()
    return text or None


def safe_bool(value: Any) -> bool | None:
    """Tri-state: only real booleans survive; anything else is unknown."""
    return value if isinstance(value, bool) else None


def trim_decimal(value: Decimal) -> Decimal:
    """Drop trailing zeros without switching to exponent notation (10.00 → 10)."""
    normalized = value.normalize()
    if normalized.as_tuple().exponent > 0:
        return normalized.quantize(Decimal(1))
    return normalized
