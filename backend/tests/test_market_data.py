from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from folio.core.errors import ExternalUnavailableError, NotFoundError, ValidationError
from folio.providers.base import Quote
from folio.providers.static import StaticMarketData
from folio.services.market_data import MarketDataService, QuoteCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_quote_cache_expires_entries():
    clock = FakeClock()
    cache = QuoteCache(60, clock=clock)
    cache.put(Quote(symbol="AAPL", price=Decimal("1")))

    clock.now = 59.9
    assert cache.get("aapl").price == Decimal("1")
    clock.now = 60
    assert cache.get("AAPL") is None
    assert len(cache) == 0


def _service(provider, settings, clock=None) -> MarketDataService:
    return MarketDataService(provider, cache=QuoteCache(60, clock=clock or FakeClock()), settings=settings)


@pytest.mark.asyncio
async def test_quotes_are_served_from_cache(settings):
    provider = StaticMarketData({"AAPL": "190", "MSFT": "410"})
    service = _service(provider, settings)

    await service.get_quote(" aapl ")
    await service.get_quote("AAPL")
    quotes = await service.get_quotes(["AAPL", "msft", "MSFT"])

    assert {symbol: quote.price for symbol, quote in quotes.items()} == {
        "AAPL": Decimal("190"),
        "MSFT": Decimal("410"),
    }
    assert provider.calls == [("quote", "AAPL"), ("quote", "MSFT")]

    await service.refresh(["AAPL"])
    assert provider.calls[-1] == ("quote", "AAPL")


@pytest.mark.asyncio
async def test_batch_quotes_drop_failures(settings):
    provider = StaticMarketData({"AAPL": "190"}, unavailable=["MSFT"])
    quotes = await _service(provider, settings).get_quotes(["AAPL", "MSFT", "NOPE"])
    assert list(quotes) == ["AAPL"]


@pytest.mark.asyncio
async def test_single_quote_errors_propagate(settings):
    service = _service(StaticMarketData({}, unavailable=["MSFT"]), settings)
    with pytest.raises(NotFoundError):
        await service.get_quote("NOPE")
    with pytest.raises(ExternalUnavailableError):
        await service.get_quote("MSFT")
    with pytest.raises(ValidationError):
        await service.get_quote("  ")


@pytest.mark.asyncio
async def test_slow_provider_times_out(settings):
    class SlowProvider(StaticMarketData):
        async def get_quote(self, symbol: str) -> Quote:
            await asyncio.sleep(1)
            return await super().get_quote(symbol)

    settings.quote_timeout_seconds = 0.01
    service = _service(SlowProvider({"AAPL": "1"}), settings)
    with pytest.raises(ExternalUnavailableError) as excinfo:
        await service.get_quote("AAPL")
    assert "timed out" in str(excinfo.value)


@pytest.mark.asyncio
async def test_unexpected_provider_errors_are_wrapped(settings):
    class BrokenProvider(StaticMarketData):
        async def get_fx(self, from_currency: str, to_currency: str) -> Decimal:
            raise RuntimeError("boom")

    service = _service(BrokenProvider(), settings)
    with pytest.raises(ExternalUnavailableError) as excinfo:
        await service.get_fx("EUR", "USD")
    assert str(excinfo.value) == "exchange rate EUR/USD: boom"
    assert await service.get_fx("usd", "USD") == Decimal("1")


@pytest.mark.asyncio
async def test_historical_range_is_checked(settings):
    provider = StaticMarketData(history={"SPY": [(date(2024, 1, 2), "470"), (date(2024, 2, 1), "490")]})
    service = _service(provider, settings)
    bars = await service.get_historical("spy", date(2024, 1, 1), date(2024, 1, 31))
    assert [bar.close for bar in bars] == [Decimal("470")]
    with pytest.raises(ValidationError):
        await service.get_historical("SPY", date(2024, 2, 1), date(2024, 1, 1))
