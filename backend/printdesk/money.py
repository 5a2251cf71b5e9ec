# Overview: Integer money/weight helpers and display formatting.

"""
Money and weight units.

All amounts are integer cents (paisa) and all weights are integer grams.
Floats never touch a stored amount: conversions from user text go through
Decimal, and derived fractions are rounded half-up back to integers.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .validation import ValidationError


DEFAULT_CURRENCY_PREFIX = "Rs."


def round_half_up_div(numerator: int, denominator: int) -> int:
    """Integer division rounded half away from zero."""
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    quotient = Decimal(numerator) / Decimal(denominator)
    return int(quotient.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_currency(cents: int | None, prefix: str = DEFAULT_CURRENCY_PREFIX) -> str:
    """Render cents as "Rs. 1,234.50"."""
    cents = int(cents or 0)
    sign = "-" if cents < 0 else ""
    rupees, paisa = divmod(abs(cents), 100)
    return f"{sign}{prefix} {rupees:,}.{paisa:02d}"


def parse_amount(value) -> int:
    """
    Parse user-entered money ("1,234.50", "Rs. 20", 75) into cents.

    Rejects more than two decimal places instead of silently rounding.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError("amount is required")

    if isinstance(value, int):
        return value * 100

    text = str(value).strip()
    for prefix in (DEFAULT_CURRENCY_PREFIX, "Rs", "LKR"):
        if text.startswith(prefix):
            text = text[len(prefix):].strip()
    text = text.replace(",", "")
    if not text:
        raise ValidationError("amount is required")

    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {value}")

    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value}")
    if amount.as_tuple().exponent < -2:
        raise ValidationError("amount cannot have more than 2 decimal places")

    return int(amount * 100)


def kg_to_grams(value) -> int:
    """Convert a kilogram figure (str/int/Decimal) to integer grams."""
    try:
        kg = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"Invalid weight: {value}")
    if not kg.is_finite():
        raise ValidationError(f"Invalid weight: {value}")
    return int((kg * 1000).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_weight(grams: int | None) -> str:
    """Render grams as "2.50 kg"."""
    kg = Decimal(int(grams or 0)) / Decimal(1000)
    return f"{kg.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)} kg"
