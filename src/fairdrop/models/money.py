"""Monetary rounding.

All monetary values are Decimal. Intermediate arithmetic keeps full
precision; values are rounded only when written to a record.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from fairdrop.errors import ValidationError


def quantum(places: int) -> Decimal:
    """Return the Decimal step for ``places`` decimal places (e.g. 4 -> 0.0001)."""
    return Decimal(1).scaleb(-places)


def round_money(value: Decimal, places: int) -> Decimal:
    """Round a monetary value for storage."""
    return value.quantize(quantum(places), rounding=ROUND_HALF_UP)


def parse_amount(raw: object, field_name: str = "amount") -> Decimal:
    """Parse a caller-supplied amount into a finite Decimal.

    Floats are converted through ``str`` so 0.1 stays 0.1.
    """
    if isinstance(raw, bool) or raw is None:
        raise ValidationError(f"{field_name} is required")
    try:
        value = Decimal(str(raw)) if not isinstance(raw, Decimal) else raw
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field_name} is not a number: {raw!r}") from exc
    if not value.is_finite():
        raise ValidationError(f"{field_name} must be finite")
    return value
