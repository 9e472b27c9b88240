"""
Exact conversion between decimal major units (API boundary) and integer
minor units (storage and ledger).

Floats are accepted only through their shortest repr, so 12.34 stays 1234
and never drifts through binary rounding.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from .errors import ValidationError


MINOR_UNIT_EXPONENT = 2
_SCALE = Decimal(10) ** MINOR_UNIT_EXPONENT

# $9,999,999.99 keeps every value inside a signed 32-bit ledger column
MAX_AMOUNT_MINOR = 999_999_999


def to_minor(value, *, field: str = "amount") -> int:
    """Convert a major-unit amount ("50.00", 50, Decimal) to minor units."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")

    raw = value if isinstance(value, (int, Decimal)) else str(value).strip()
    if isinstance(raw, str):
        if not raw:
            raise ValidationError(f"{field} is required")
        if "e" in raw.lower():
            raise ValidationError(f"{field} must be a plain decimal number")

    try:
        amount = Decimal(raw)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a decimal number")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")

    scaled = amount * _SCALE
    if scaled != scaled.to_integral_value():
        raise ValidationError(f"{field} supports at most {MINOR_UNIT_EXPONENT} decimal places")

    minor = int(scaled)
    if abs(minor) > MAX_AMOUNT_MINOR:
        raise ValidationError(f"{field} is too large")
    return minor


def to_major(minor: int | None) -> str | None:
    """Render minor units as a fixed two-decimal major-unit string."""
    if minor is None:
        return None
    return str((Decimal(int(minor)) / _SCALE).quantize(Decimal(1) / _SCALE))
