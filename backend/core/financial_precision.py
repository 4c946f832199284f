"""
DECIMAL PRECISION & AMOUNT UTILITIES

This module provides:
1. Exact Decimal conversion for every numeric shape the ledger meets
   (request input, Decimal128 from MongoDB, plain numbers)
2. Amount validation (strictly positive, at most 2 decimal places)
3. Decimal128 conversion for storage, float conversion for JSON
"""

from decimal import Decimal, InvalidOperation
from typing import Union
import logging

from bson import Decimal128

from core.errors import ValidationError

logger = logging.getLogger(__name__)

# Precision configuration
DECIMAL_PLACES = 2
QUANTIZE_PATTERN = Decimal('0.01')

Numeric = Union[float, int, str, Decimal, Decimal128]


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert any numeric value to Decimal.
    Does NOT round - preserves full precision for intermediate calculations.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, bool):
        raise ValidationError(f"Cannot convert {type(value).__name__} to Decimal")
    if isinstance(value, (int, float)):
        # Convert via string to avoid float precision issues
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"Not a number: {value!r}")
    raise ValidationError(f"Cannot convert {type(value).__name__} to Decimal")


def parse_amount(value, field_name: str = "amount") -> Decimal:
    """
    Parse a client-supplied amount.

    Rejects missing, non-numeric, non-finite, non-positive values and values
    finer than the currency scale. Never clamps or rounds.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"'{field_name}' is required", field=field_name)

    try:
        amount = to_decimal(value)
    except ValidationError:
        raise ValidationError(f"'{field_name}' is not a valid number", field=field_name)

    if not amount.is_finite():
        raise ValidationError(f"'{field_name}' must be finite", field=field_name)

    validate_positive(amount, field_name)

    if amount != amount.quantize(QUANTIZE_PATTERN):
        raise ValidationError(
            f"'{field_name}' has more than {DECIMAL_PLACES} decimal places: {value}",
            field=field_name
        )

    return amount.quantize(QUANTIZE_PATTERN)


def validate_positive(value: Numeric, field_name: str) -> None:
    """
    Validate that a financial value is strictly positive (> 0).
    Raises ValidationError if validation fails.
    """
    if to_decimal(value) <= Decimal('0'):
        raise ValidationError(
            f"Financial value '{field_name}' must be positive: {value}",
            field=field_name
        )


def to_decimal128(value: Numeric) -> Decimal128:
    """Convert to Decimal128 for MongoDB storage"""
    return Decimal128(to_decimal(value))


def to_float(value) -> float:
    """Convert Decimal128/Decimal to float for JSON serialization"""
    if value is None:
        return 0.0
    if isinstance(value, Decimal128):
        return float(value.to_decimal())
    return float(value)
