"""Cache-through access to the configured market data provider."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence

from folio.config import FolioSettings, get_settings
from folio.core.errors import ExternalUnavailableError, FolioError, ValidationError
from folio.core.telemetry import record_market_data_failure
from folio.providers.base import MarketDataProvider, PriceBar, Quote

logger = logging.getLogger(__name__)


class QuoteCache:
    """Quotes keyed by symbol, each valid for ``ttl`` seconds after it was stored."""

    def __init__(self, ttl: float, *, clock=time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[Quote, float]] = {}

    def get(self, symbol: str) -> Quote | None:
        key = symbol.upper()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            quote, stored_at = entry
            if self._clock() - stored_at >= self.ttl:
                del self._entries[key]
                return None
            return quote

    def put(self, quote: Quote) -> None:
        with self._lock:
            self._entries[quote.symbol.upper()] = (quote, self._clock())

    def invalidate(self, symbol: str) -> None:
        with self._lock:
            self._entries.pop(symbol.upper(), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_shared_cache: QuoteCache | None = None
_shared_lock = threading.Lock()


def get_quote_cache(settings: FolioSettings | None = None) -> QuoteCache:
    """Return the process-wide quote cache, creating it on first use."""

    global _shared_cache  # noqa: PLW0603 - process-wide singleton
    with _shared_lock:
        if _shared_cache is None:
            settings = settings or get_settings()
            _shared_cache = QuoteCache(settings.quote_cache_ttl_seconds)
        return _shared_cache


class MarketDataService:
    def __init__(
        self,
        provider: MarketDataProvider,
        *,
        cache: QuoteCache | None = None,
        settings: FolioSettings | None = None,
    ) -> None:
        self.provider = provider
        self.settings = settings or get_settings()
        self.cache = cache or get_quote_cache(self.settings)

    async def get_quote(self, symbol: str) -> Quote:
        symbol = symbol.strip().upper()
        if not symbol:
            raise ValidationError("symbol is required")
        cached = self.cache.get(symbol)
        if cached is not None:
            return cached
        quote = await self._with_timeout(
            self.provider.get_quote(symbol), self.settings.quote_timeout_seconds, f"quote {symbol}"
        )
        self.cache.put(quote)
        return quote

    async def get_quotes(self, symbols: Iterable[str]) -> dict[str, Quote]:
        """Quotes for ``symbols``; only uncached ones hit the provider, failures are dropped."""

        result: dict[str, Quote] = {}
        missing: list[str] = []
        for symbol in dict.fromkeys(s.strip().upper() for s in symbols if s and s.strip()):
            cached = self.cache.get(symbol)
            if cached is not None:
                result[symbol] = cached
            else:
                missing.append(symbol)
        if not missing:
            return result

        try:
            fetched = await self._with_timeout(
                self.provider.get_quotes(missing),
                self.settings.historical_timeout_seconds,
                f"quotes {', '.join(missing)}",
            )
        except ExternalUnavailableError as exc:
            logger.warning("Could not fetch quotes for %s: %s", ", ".join(missing), exc)
            return result
        for symbol, quote in fetched.items():
            self.cache.put(quote)
            result[symbol.upper()] = quote
        dropped = [symbol for symbol in missing if symbol not in result]
        if dropped:
            logger.warning("No quotes returned for %s", ", ".join(dropped))
        return result

    async def get_historical(self, symbol: str, start: date, end: date) -> list[PriceBar]:
        if start > end:
            raise ValidationError("start date must not be after end date")
        symbol = symbol.strip().upper()
        return await self._with_timeout(
            self.provider.get_historical(symbol, start, end),
            self.settings.historical_timeout_seconds,
            f"historical prices {symbol}",
        )

    async def get_fx(self, from_currency: str, to_currency: str) -> Decimal:
        if from_currency.upper() == to_currency.upper():
            return Decimal("1")
        return await self._with_timeout(
            self.provider.get_fx(from_currency, to_currency),
            self.settings.quote_timeout_seconds,
            f"exchange rate {from_currency}/{to_currency}",
        )

    async def refresh(self, symbols: Sequence[str]) -> dict[str, Quote]:
        """Drop cached quotes for ``symbols`` and fetch them again."""

        for symbol in symbols:
            self.cache.invalidate(symbol)
        return await self.get_quotes(symbols)

    def clear_cache(self) -> None:
        self.cache.clear()

    @staticmethod
    async def _with_timeout(awaitable, timeout: float, context: str):
        operation = context.split(" ", 1)[0]
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as exc:
            record_market_data_failure(operation)
            raise ExternalUnavailableError(f"{context}: timed out after {timeout:g}s") from exc
        except ExternalUnavailableError:
            record_market_data_failure(operation)
            raise
        except FolioError:
            raise
        except Exception as exc:
            record_market_data_failure(operation)
            logger.exception("Market data provider failed for %s", context)
            raise ExternalUnavailableError(f"{context}: {exc}") from exc


__all__ = ["MarketDataService", "QuoteCache", "get_quote_cache"]
