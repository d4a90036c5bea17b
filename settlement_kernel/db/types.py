"""
Module: settlement_kernel.db.types
Responsibility: Annotated type aliases and utility functions for monetary
    columns.  Centralizes precision, rounding, and currency minor units so that
    every model and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - round_money() is the ONLY sanctioned rounding function for money.
    - to_money() refuses binary floats; amounts cross every boundary as
      Decimal or decimal strings.
    - to_money() refuses NaN, infinities and values that do not fit
      Numeric(14, 2), so every accepted amount can be stored as given.
    - decimal_places_for() is the canonical minor-unit lookup.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated

from sqlalchemy import Enum as SAEnum, Numeric, String

from settlement_kernel.exceptions import (
    FloatAmountError,
    InvalidAmountError,
    InvalidCurrencyError,
    ValidationError,
)

# Monetary amount: 14 digits total, 2 decimal places
Money = Annotated[Decimal, Numeric(14, 2)]

# Tax rates and other ratios
Rate = Annotated[Decimal, Numeric(9, 6)]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Free-text descriptions
Description = Annotated[str, String(200)]

MONEY_DECIMAL_PLACES = 2
MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)
# Numeric(14, 2) holds twelve integer digits
MONEY_LIMIT = Decimal(10) ** 12
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")

# Minor units per currency (ISO 4217 exponent).
CURRENCY_DECIMAL_PLACES: dict[str, int] = {
    "KRW": 0,
    "JPY": 0,
    "VND": 0,
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "CNY": 2,
    "SGD": 2,
    "AUD": 2,
    "CAD": 2,
    "BHD": 3,
    "KWD": 3,
}


def money_from_str(value: str) -> Decimal:
    """
    Create a Money value from string.

    Raises:
        ValidationError: If value cannot be converted to Decimal.
    """
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValidationError(f"Not a decimal amount: {value!r}") from exc


def check_money_column(value: Decimal, field: str = "amount") -> Decimal:
    """
    Ensure a finite Decimal fits Numeric(14, 2) without silent rounding.

    Raises:
        InvalidAmountError: Magnitude of 10**12 or more, or more than two
            decimal places.
    """
    if abs(value) >= MONEY_LIMIT:
        raise InvalidAmountError(field, str(value), f"must be below {MONEY_LIMIT:,}")
    if value != value.quantize(MONEY_QUANTUM):
        raise InvalidAmountError(
            field, str(value), f"has more than {MONEY_DECIMAL_PLACES} decimal places"
        )
    return value


def to_money(
    value: Decimal | int | str,
    field: str = "amount",
    *,
    bounded: bool = True,
) -> Decimal:
    """
    Coerce an incoming amount to Decimal.

    Accepts Decimal, int or decimal string.  Floats are rejected outright so
    that cent-level drift can never enter the ledger.  NaN and infinities are
    never money.  With ``bounded`` (the default) the value must also fit the
    money column; rates pass ``bounded=False``.

    Raises:
        FloatAmountError: If value is a float.
        InvalidAmountError: If value is not finite or does not fit the column.
        ValidationError: If value is not numeric.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be numeric, got {value!r}")
    if isinstance(value, float):
        raise FloatAmountError(field, repr(value))
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, str):
        amount = money_from_str(value.strip())
    else:
        raise ValidationError(f"{field} must be numeric, got {type(value).__name__}")

    if not amount.is_finite():
        raise InvalidAmountError(field, str(amount), "must be a finite number")
    if bounded:
        check_money_column(amount, field)
    return amount


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    This is the ONLY sanctioned rounding function for money in the kernel.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to (0 for KRW).
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    exponent = Decimal(1).scaleb(-decimal_places)
    return value.quantize(exponent, rounding=rounding)


def decimal_places_for(currency: str) -> int:
    """
    Minor-unit exponent for a currency code.

    Raises:
        InvalidCurrencyError: If the currency is unknown.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))
    normalized = currency.upper().strip()
    if normalized not in CURRENCY_DECIMAL_PLACES:
        raise InvalidCurrencyError(currency)
    return CURRENCY_DECIMAL_PLACES[normalized]


def enum_column(enum_cls: type[Enum], length: int = 20) -> SAEnum:
    """
    Column type storing a str-Enum by value and loading it back as a member.

    Stored as VARCHAR (no native DB enum) so adding a member needs no DDL.
    """
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
