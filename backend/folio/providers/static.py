"""In-memory market data, for tests and offline runs."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from folio.core.errors import ExternalUnavailableError, NotFoundError
from folio.money import to_decimal
from folio.providers.base import PriceBar, Quote


class StaticMarketData:
    def __init__(
        self,
        prices: Mapping[str, Decimal | str] | None = None,
        *,
        history: Mapping[str, Iterable[tuple[date, Decimal | str]]] | None = None,
        fx: Mapping[tuple[str, str], Decimal | str] | None = None,
        unavailable: Iterable[str] = (),
    ) -> None:
        self.prices = {symbol.upper(): to_decimal(price) for symbol, price in (prices or {}).items()}
        self.history = {
            symbol.upper(): sorted((day, to_decimal(close)) for day, close in series)
            for symbol, series in (history or {}).items()
        }
        self.fx = {(a.upper(), b.upper()): to_decimal(rate) for (a, b), rate in (fx or {}).items()}
        self.unavailable = {symbol.upper() for symbol in unavailable}
        self.calls: list[tuple[str, str]] = []

    async def get_quote(self, symbol: str) -> Quote:
        symbol = symbol.upper()
        self.calls.append(("quote", symbol))
        if symbol in self.unavailable:
            raise ExternalUnavailableError(f"quote {symbol}: provider unavailable")
        price = self.prices.get(symbol)
        if price is None:
            raise NotFoundError(f"no quote data found for symbol {symbol}")
        return Quote(symbol=symbol, price=price)

    async def get_quotes(self, symbols: Sequence[str]) -> dict[str, Quote]:
        result: dict[str, Quote] = {}
        for symbol in symbols:
            try:
                quote = await self.get_quote(symbol)
            except (ExternalUnavailableError, NotFoundError):
                continue
            result[quote.symbol] = quote
        return result

    async def get_historical(self, symbol: str, start: date, end: date) -> list[PriceBar]:
        symbol = symbol.upper()
        self.calls.append(("historical", symbol))
        if symbol in self.unavailable:
            raise ExternalUnavailableError(f"historical {symbol}: provider unavailable")
        return [
            PriceBar(date=day, open=close, high=close, low=close, close=close, adj_close=close)
            for day, close in self.history.get(symbol, [])
            if start <= day <= end
        ]

    async def get_fx(self, from_currency: str, to_currency: str) -> Decimal:
        pair = (from_currency.upper(), to_currency.upper())
        self.calls.append(("fx", f"{pair[0]}/{pair[1]}"))
        if pair[0] == pair[1]:
            return Decimal("1")
        if pair in self.fx:
            return self.fx[pair]
        inverse = self.fx.get((pair[1], pair[0]))
        if inverse:
            return Decimal("1") / inverse
        raise ExternalUnavailableError(f"exchange rate {pair[0]}/{pair[1]}: not available")


__all__ = ["StaticMarketData"]
