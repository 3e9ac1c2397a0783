"""Decimal-string amount parsing and base-unit conversion.

Amounts typed by the user are decimal strings. Every comparison and every
on-chain amount is an integer in the token's base units; floats never
participate.
"""

from __future__ import annotations

import re
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Optional, Union

from .errors import InvalidAmountError

AMOUNT_PATTERN = re.compile(r'^\d*\.?\d*$')


def parse_amount(raw: Union[str, Decimal, int], decimals: int) -> Decimal:
    """Parse a user-entered amount, rejecting anything that is not a positive decimal.

    Raises:
        InvalidAmountError: empty, malformed, non-positive, or more precise
            than the token supports.
    """
    if isinstance(raw, Decimal):
        value = raw
    else:
        text = str(raw).strip()
        if not text or text == '.' or not AMOUNT_PATTERN.match(text):
            raise InvalidAmountError(f"Not a decimal amount: {raw!r}")
        if text.startswith('.'):
            text = '0' + text
        try:
            value = Decimal(text)
        except InvalidOperation as exc:
            raise InvalidAmountError(f"Not a decimal amount: {raw!r}") from exc

    if not value.is_finite() or value <= 0:
        raise InvalidAmountError(f"Amount must be greater than zero: {raw!r}")

    exponent = value.normalize().as_tuple().exponent
    if isinstance(exponent, int) and -exponent > decimals:
        raise InvalidAmountError(
            f"Amount {raw!r} has more than {decimals} decimal places",
            user_message=f"Use at most {decimals} decimal places.",
        )
    return value


def try_parse_amount(raw: Optional[str], decimals: int) -> Optional[Decimal]:
    """Like :func:`parse_amount` but returns ``None`` for partial input ("", "0.", "abc")."""
    if raw is None:
        return None
    try:
        return parse_amount(raw, decimals)
    except InvalidAmountError:
        return None


def to_base_units(amount: Union[str, Decimal], decimals: int) -> int:
    """Convert a human amount to integer base units (amount × 10^decimals, rounded down)."""
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    scaled = (value * (Decimal(10) ** decimals)).quantize(Decimal('1'), rounding=ROUND_DOWN)
    return int(scaled)


def from_base_units(units: Union[int, str], decimals: int) -> Decimal:
    return Decimal(int(units)) / (Decimal(10) ** decimals)


def balance_to_base_units(balance: Optional[str], decimals: int) -> int:
    """Convert a balance decimal string from a Balance Observer; unreadable balances count as zero."""
    if balance is None:
        return 0
    try:
        value = Decimal(str(balance).strip() or '0')
    except InvalidOperation:
        return 0
    if not value.is_finite() or value <= 0:
        return 0
    return to_base_units(value, decimals)


def decimal_to_str(value: Optional[Decimal], places: int = 6) -> str:
    if value is None:
        return '0'
    precision = max(0, min(places, 18))
    quant = Decimal('1') if precision == 0 else Decimal(1).scaleb(-precision)
    try:
        quantized = value.quantize(quant, rounding=ROUND_DOWN)
    except (InvalidOperation, TypeError):
        quantized = value
    formatted = format(quantized.normalize(), 'f')
    if '.' in formatted:
        formatted = formatted.rstrip('0').rstrip('.')
    return formatted or '0'


def format_units(units: Union[int, str], decimals: int, places: int = 6) -> str:
    """Base units to a trimmed display string (display only)."""
    return decimal_to_str(from_base_units(units, decimals), places)
