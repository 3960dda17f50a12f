"""Market data types and the provider interface."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Protocol, Sequence


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Quote:
    symbol: str
    price: Decimal
    open: Decimal | None = None
    high: Decimal | None = None
    low: Decimal | None = None
    volume: int | None = None
    previous_close: Decimal | None = None
    change: Decimal | None = None
    change_percent: Decimal | None = None
    last_updated: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class PriceBar:
    date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    adj_close: Decimal | None = None
    volume: int | None = None


class MarketDataProvider(Protocol):
    async def get_quote(self, symbol: str) -> Quote: ...

    async def get_quotes(self, symbols: Sequence[str]) -> dict[str, Quote]: ...

    async def get_historical(self, symbol: str, start: date, end: date) -> list[PriceBar]: ...

    async def get_fx(self, from_currency: str, to_currency: str) -> Decimal: ...


__all__ = ["MarketDataProvider", "PriceBar", "Quote"]
