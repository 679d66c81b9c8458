# backend/doccost/domain/money.py
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union


class MoneyError(ValueError):
    """Raised when currency/money parsing or formatting fails."""


CURRENCY = "PHP"
CURRENCY_SYMBOL = "₱"

MAX_ABS_CENTS = 10_000_000_00  # 10,000,000.00 safety bound


@dataclass(frozen=True)
class Money:
    """
    Simple money value object using integer cents (PHP by default).
    No floats anywhere.
    """
    cents: int
    currency: str = CURRENCY

    def __post_init__(self) -> None:
        if not isinstance(self.cents, int) or isinstance(self.cents, bool):
            raise MoneyError("Money.cents must be an int")
        if not isinstance(self.currency, str) or not self.currency.strip():
            raise MoneyError("Money.currency must be a non-empty string")

    @property
    def amount(self) -> Decimal:
        return Decimal(self.cents) / Decimal(100)

    def format(self, symbol: str = CURRENCY_SYMBOL) -> str:
        """
        Format cents as a string like "₱1,234.50".
        """
        sign = "-" if self.cents < 0 else ""
        abs_cents = abs(self.cents)
        whole = abs_cents // 100
        cents = abs_cents % 100
        return f"{sign}{symbol}{whole:,}.{cents:02d}"


# Conservative amount-token parsing for typed prices and payments:
# - Optional ₱ / PHP prefix, decimal "." or ","
# - Rejects thousands separators to avoid guessing ("1,234.56")
# - Rejects signs; amounts entered by users are never negative
_AMOUNT_TOKEN_RE = re.compile(r"^\s*(?:₱|PHP)?\s*(\d{1,8})([.,](\d{1,2}))?\s*$", re.IGNORECASE)


def parse_amount_to_cents(token: str, *, max_abs_cents: int = MAX_ABS_CENTS) -> int:
    """
    Parse a user-typed amount into integer cents.

    Accepts examples:
      "2" -> 200
      "2.5" -> 250
      "₱12.34" -> 1234
      "12,34" -> 1234  (decimal comma)

    Rejects:
      "1,234.56" (thousands separator ambiguity)
      "12.345"
      "-5"
      "abc"
    """
    if not isinstance(token, str):
        raise MoneyError("token must be a string")

    s = token.strip()
    if s == "":
        raise MoneyError("token is empty")

    if re.search(r"\d,\d{3}", s):
        raise MoneyError(f"ambiguous thousands separator format: {token}")

    m = _AMOUNT_TOKEN_RE.match(s)
    if not m:
        raise MoneyError(f"invalid amount: {token}")

    whole = int(m.group(1))
    dec_digits = m.group(3)

    cents = 0
    if dec_digits is not None:
        cents = int(dec_digits) * 10 if len(dec_digits) == 1 else int(dec_digits)

    total = whole * 100 + cents
    if total > max_abs_cents:
        raise MoneyError("amount exceeds safety limit")

    return total


def decimal_to_cents(
    value: Union[str, int, float, Decimal],
    *,
    rounding=ROUND_HALF_UP,
    max_abs_cents: int = MAX_ABS_CENTS,
) -> int:
    """
    Convert a decimal-like value to cents with explicit rounding.

    Examples:
      "12.34" -> 1234
      "12.345" -> 1235 (half-up)
      2.0 -> 200
    """
    if isinstance(value, bool):
        raise MoneyError(f"invalid decimal value: {value}")
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise MoneyError(f"invalid decimal value: {value}") from e

    if not d.is_finite():
        raise MoneyError(f"invalid decimal value: {value}")

    cents = int((d * Decimal(100)).quantize(Decimal("1"), rounding=rounding))

    if abs(cents) > max_abs_cents:
        raise MoneyError("amount exceeds safety limit")

    return cents


def amount_to_cents(value: object, *, allow_zero: bool = True) -> int:
    """
    Convert a JSON amount (number or string) to non-negative cents.
    """
    if isinstance(value, str):
        cents = parse_amount_to_cents(value)
    elif isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        cents = decimal_to_cents(value)
    else:
        raise MoneyError("amount must be a number or a numeric string")

    if cents < 0:
        raise MoneyError("amount must be >= 0")
    if cents == 0 and not allow_zero:
        raise MoneyError("amount must be > 0")
    return cents


def cents_to_decimal(cents: int) -> Decimal:
    if not isinstance(cents, int):
        raise MoneyError("cents must be an int")
    return (Decimal(cents) / Decimal(100)).quantize(Decimal("0.01"))


def round_div_cents(total_cents: int, divisor: int) -> int:
    """
    Divide cents and round the quotient half-up to a whole cent.

    This is the 2-decimal rounding used for even splits:
      round_div_cents(7000, 3) -> 2333
      round_div_cents(100, 8) -> 13
    """
    if not isinstance(total_cents, int) or not isinstance(divisor, int):
        raise MoneyError("total_cents and divisor must be ints")
    if divisor <= 0:
        raise MoneyError("divisor must be > 0")
    quotient = Decimal(total_cents) / Decimal(divisor)
    return int(quotient.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_str(cents: int, *, symbol: str = CURRENCY_SYMBOL) -> str:
    """
    Convert integer cents to a display string like "₱12.34".
    """
    if not isinstance(cents, int):
        raise MoneyError("cents must be an int")
    return Money(cents=cents).format(symbol=symbol)


def safe_sum_cents(*values: int) -> int:
    """
    Sum cents with type checks (no floats).
    """
    total = 0
    for v in values:
        if not isinstance(v, int):
            raise MoneyError("all values must be int cents")
        total += v
    return total
