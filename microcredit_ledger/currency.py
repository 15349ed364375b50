"""
Monetary Helpers Module

Decimal parsing, validation and presentation rounding. Ledger arithmetic keeps
full Decimal precision; rounding to the currency precision happens only when a
value leaves the engine (receipts, reports, API responses). NEVER uses float
for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from enum import Enum
from typing import Union
import re

from .exceptions import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28

ZERO = Decimal('0')

# Optional leading currency code, then sign, digits and separators only
_AMOUNT_PATTERN = re.compile(r'(?:[A-Za-z]{3}\s*)?([+-]?[\d.,]+)')


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    MZN = ("MZN", 2)  # Mozambican Metical
    USD = ("USD", 2)  # US Dollar
    ZAR = ("ZAR", 2)  # South African Rand
    EUR = ("EUR", 2)  # Euro

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Resolve an ISO code such as "usd" or "MZN"; unknown codes are rejected"""
        try:
            return cls[code.strip().upper()]
        except (KeyError, AttributeError):
            raise ValidationError(f"Unsupported currency: {code}")


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number ("1,500.50", "1500,50", "MZN 20")

    Returns:
        Decimal value

    Raises:
        ValidationError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValidationError("Value must be a non-empty string")

    match = _AMOUNT_PATTERN.fullmatch(value.strip())
    if match is None:
        raise ValidationError(f"Cannot convert '{value}' to Decimal")
    clean_value = match.group(1)

    if ',' in clean_value and '.' in clean_value:
        # Both comma and dot - assume comma is thousands separator
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:  # Decimal separator
            clean_value = clean_value.replace(',', '.')
        else:  # Thousands separator
            clean_value = clean_value.replace(',', '')

    try:
        result = Decimal(clean_value)
    except InvalidOperation:
        raise ValidationError(f"Cannot convert '{value}' to Decimal")
    if not result.is_finite():
        raise ValidationError(f"Cannot convert '{value}' to Decimal")
    return result


def to_decimal(value: Union[Decimal, int, str]) -> Decimal:
    """Coerce an int, str or Decimal to Decimal. Floats are rejected."""
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"Monetary values must not be {type(value).__name__}")
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValidationError(f"Invalid monetary value: {value}")
        return value
    if isinstance(value, int):
        return Decimal(value)
    return decimal_from_string(value)


def require_positive(value: Union[Decimal, int, str], field: str = "amount") -> Decimal:
    """Parse a monetary value and require it to be strictly positive"""
    amount = to_decimal(value)
    if amount <= ZERO:
        raise ValidationError(f"{field} must be positive, got {amount}")
    return amount


def round_money(value: Decimal, currency: Currency = Currency.MZN) -> Decimal:
    """Round to currency precision at a presentation boundary"""
    return value.quantize(
        Decimal('0.1') ** currency.precision,
        rounding=ROUND_HALF_UP
    )


def format_money(value: Decimal, currency: Currency = Currency.MZN) -> str:
    """Format for display, e.g. 'MZN 12,600.00'"""
    rounded = round_money(value, currency)
    if currency.precision == 0:
        return f"{currency.code} {rounded:,.0f}"
    return f"{currency.code} {rounded:,.{currency.precision}f}"


def money_str(value: Decimal, currency: Currency = Currency.MZN) -> str:
    """Plain two-decimal string for JSON payloads"""
    return str(round_money(value, currency))
