"""Exact decimal arithmetic and currency-tagged amounts.

Money never passes through binary floating point. Division is the only
operation that has to round; it uses banker's rounding (``ROUND_HALF_EVEN``)
to twelve fractional digits unless a caller asks for something else.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation, getcontext
from functools import total_ordering
from typing import Union

from folio.core.errors import CurrencyMismatchError, ValidationError

getcontext().prec = 28

DIVISION_PLACES = 12
ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, str, float]


def to_decimal(value: Number | None, *, default: Decimal | None = None) -> Decimal:
    """Coerce ``value`` into a Decimal, routing floats through ``str``."""

    if value is None:
        if default is None:
            raise ValidationError("a numeric value is required")
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"invalid decimal value: {value!r}") from exc


def quantize(value: Decimal, places: int = DIVISION_PLACES) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_EVEN)


def div(numerator: Number, denominator: Number, places: int = DIVISION_PLACES) -> Decimal:
    """Divide with banker's rounding to ``places`` fractional digits."""

    num = to_decimal(numerator)
    den = to_decimal(denominator)
    if den == 0:
        raise ValidationError("division by zero")
    return quantize(num / den, places)


def is_zero(value: Decimal) -> bool:
    return value == 0


def sign(value: Decimal) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def neg(value: Decimal) -> Decimal:
    return -value


def canonical(value: Decimal) -> Decimal:
    """Strip trailing zeros without switching to exponent notation."""

    if value == 0:
        return ZERO
    normalized = value.normalize()
    _, _, exponent = normalized.as_tuple()
    if isinstance(exponent, int) and exponent > 0:
        return normalized.quantize(ONE)
    return normalized


def percent(part: Decimal, whole: Decimal, places: int = 4) -> Decimal:
    """``part / whole * 100`` rounded to ``places``; zero when ``whole`` is zero."""

    if whole == 0:
        return ZERO
    return quantize(part * HUNDRED / whole, places)


@total_ordering
@dataclass(frozen=True)
class Money:
    """A decimal amount tagged with an ISO 4217 currency code."""

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        code = (self.currency or "").upper()
        if len(code) != 3:
            raise ValidationError(f"invalid currency code: {self.currency!r}")
        object.__setattr__(self, "currency", code)

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(ZERO, currency)

    def _check(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise TypeError(f"expected Money, got {type(other).__name__}")
        if other.currency != self.currency:
            raise CurrencyMismatchError(
                f"cannot combine {self.currency} with {other.currency} without a conversion"
            )

    def __add__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, factor: Number) -> "Money":
        if isinstance(factor, Money):
            raise TypeError("cannot multiply two money amounts")
        return Money(self.amount * to_decimal(factor), self.currency)

    __rmul__ = __mul__

    def __truediv__(self, divisor: Number) -> "Money":
        if isinstance(divisor, Money):
            raise TypeError("use div() on the amounts to compute a ratio")
        return Money(div(self.amount, divisor), self.currency)

    def __neg__(self) -> "Money":
        return Money(-self.amount, self.currency)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.currency == other.currency and self.amount == other.amount

    def __lt__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount < other.amount

    def __hash__(self) -> int:
        return hash((canonical(self.amount), self.currency))

    def neg(self) -> "Money":
        return -self

    def is_zero(self) -> bool:
        return self.amount == 0

    def sign(self) -> int:
        return sign(self.amount)

    def convert(self, rate: Number, currency: str) -> "Money":
        """Convert with an explicit exchange rate (units of ``currency`` per unit of ours)."""

        if currency.upper() == self.currency:
            return self
        factor = to_decimal(rate)
        if factor <= 0:
            raise ValidationError(f"invalid exchange rate {rate!r}")
        return Money(self.amount * factor, currency)

    def __str__(self) -> str:
        return f"{canonical(self.amount)} {self.currency}"


__all__ = [
    "DIVISION_PLACES",
    "HUNDRED",
    "Money",
    "ONE",
    "ZERO",
    "canonical",
    "div",
    "is_zero",
    "neg",
    "percent",
    "quantize",
    "sign",
    "to_decimal",
]
