"""
Module: wholesale_kernel.db.types
Responsibility: Annotated column type aliases and the money/currency helpers
    every model and service shares.
Architecture position: Kernel > DB.  May be imported by models/, domain/ and
    services/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Currency codes are validated against ISO 4217 before an order is
      persisted.
    - round_money() is the only rounding applied to order and shipment
      totals (2 places, half-up).
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

from wholesale_kernel.exceptions import InvalidCurrencyError

# Monetary amount: 38 digits, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# ISO 4217 currency code
Currency = Annotated[str, String(3)]

# SHA-256 hex digest
PayloadHash = Annotated[str, String(64)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value for storage or display.

    Preconditions: value is a Decimal (ints are accepted and converted).
    """
    quantizer = Decimal(10) ** -decimal_places
    return Decimal(value).quantize(quantizer, rounding=rounding)


def line_total(quantity: int, unit_price: Decimal) -> Decimal:
    """Extended price of a line: quantity x unit price, rounded."""
    return round_money(Decimal(quantity) * Decimal(unit_price))


# Currencies a wholesale account may be invoiced in
ISO_4217_CURRENCIES = frozenset({
    "AUD", "CAD", "CHF", "CNY", "DKK", "EUR", "GBP", "HKD", "JPY", "MXN",
    "NOK", "NZD", "SEK", "SGD", "USD",
})


def validate_currency(code: str) -> str:
    """
    Validate and normalise a currency code.

    Returns:
        The upper-cased code.

    Raises:
        InvalidCurrencyError: If the code is not recognised.
    """
    if not isinstance(code, str) or len(code.strip()) != 3:
        raise InvalidCurrencyError(str(code))
    normalized = code.strip().upper()
    if normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(code)
    return normalized
