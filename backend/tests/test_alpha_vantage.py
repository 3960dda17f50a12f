"""Alpha Vantage provider tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import httpx
import pytest

from folio.core.errors import ExternalUnavailableError, NotFoundError, RateLimitedError
from folio.providers.alpha_vantage import AlphaVantageProvider


class StubResponse:
    def __init__(self, payload: object, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def json(self) -> object:
        return self._payload


class StubClient:
    def __init__(self, *responses: StubResponse) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, object]] = []

    async def get(self, url: str, params: dict[str, object], timeout: float) -> StubResponse:
        self.calls.append(params)
        return self.responses.pop(0)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


QUOTE = {
    "Global Quote": {
        "01. symbol": "AAPL",
        "02. open": "189.10",
        "03. high": "191.00",
        "04. low": "188.50",
        "05. price": "190.25",
        "06. volume": "51234567",
        "08. previous close": "188.00",
        "09. change": "2.25",
        "10. change percent": "1.1968%",
    }
}


def _provider(settings, *responses: StubResponse, clock=None) -> AlphaVantageProvider:
    return AlphaVantageProvider(
        "test", settings=settings, client=StubClient(*responses), clock=clock or FakeClock()
    )


@pytest.mark.asyncio
async def test_quote_injects_api_key_and_parses_fields(settings):
    provider = _provider(settings, StubResponse(QUOTE))
    quote = await provider.get_quote("aapl")

    call = provider._client.calls[0]
    assert call["apikey"] == "test"
    assert call["function"] == "GLOBAL_QUOTE"
    assert call["symbol"] == "AAPL"
    assert quote.price == Decimal("190.25")
    assert quote.volume == 51234567
    assert quote.change_percent == Decimal("1.1968")


@pytest.mark.asyncio
async def test_empty_quote_is_not_found(settings):
    provider = _provider(settings, StubResponse({"Global Quote": {}}))
    with pytest.raises(NotFoundError):
        await provider.get_quote("ZZZZ")


@pytest.mark.asyncio
async def test_note_blocks_symbol_until_backoff_passes(settings):
    clock = FakeClock()
    provider = _provider(settings, StubResponse({"Note": "limit"}), StubResponse(QUOTE), clock=clock)

    with pytest.raises(RateLimitedError) as first:
        await provider.get_quote("AAPL")
    assert first.value.retry_after == settings.rate_limit_backoff_seconds

    with pytest.raises(RateLimitedError):
        await provider.get_quote("AAPL")
    assert len(provider._client.calls) == 1

    clock.now += settings.rate_limit_backoff_seconds
    assert (await provider.get_quote("AAPL")).price == Decimal("190.25")


@pytest.mark.asyncio
async def test_errors_are_reported_as_unavailable(settings):
    provider = _provider(
        settings,
        StubResponse({"Error Message": "Invalid API call"}),
        StubResponse({}, status_code=503),
        StubResponse(["not", "a", "dict"]),
    )
    for _ in range(3):
        with pytest.raises(ExternalUnavailableError) as excinfo:
            await provider.get_quote("AAPL")
        assert not isinstance(excinfo.value, RateLimitedError)
        assert str(excinfo.value).startswith("GLOBAL_QUOTE AAPL: ")


@pytest.mark.asyncio
async def test_transport_failures_are_wrapped(settings):
    class BrokenClient(StubClient):
        async def get(self, url: str, params: dict[str, object], timeout: float) -> StubResponse:
            raise httpx.ConnectError("connection refused")

    provider = AlphaVantageProvider("test", settings=settings, client=BrokenClient())
    with pytest.raises(ExternalUnavailableError):
        await provider.get_historical("AAPL", date(2024, 1, 1), date(2024, 1, 31))


@pytest.mark.asyncio
async def test_missing_key_is_unavailable(settings):
    provider = AlphaVantageProvider(settings=settings, client=StubClient())
    assert not provider.is_available()
    with pytest.raises(ExternalUnavailableError):
        await provider.get_quote("AAPL")


@pytest.mark.asyncio
async def test_historical_bars_are_filtered_and_sorted(settings):
    series = {
        "Time Series (Daily)": {
            "2024-01-04": {"1. open": "10", "2. high": "11", "3. low": "9", "4. close": "10.5", "6. volume": "100"},
            "2024-01-02": {"1. open": "9", "2. high": "10", "3. low": "8", "4. close": "9.5", "6. volume": "200"},
            "2023-12-29": {"1. open": "8", "2. high": "9", "3. low": "7", "4. close": "8.5"},
            "bogus": {"4. close": "1"},
        }
    }
    provider = _provider(settings, StubResponse(series))
    bars = await provider.get_historical("AAPL", date(2024, 1, 1), date(2024, 1, 31))
    assert [(bar.date, bar.close) for bar in bars] == [
        (date(2024, 1, 2), Decimal("9.5")),
        (date(2024, 1, 4), Decimal("10.5")),
    ]
    assert bars[0].volume == 200


@pytest.mark.asyncio
async def test_exchange_rate(settings):
    payload = {"Realtime Currency Exchange Rate": {"5. Exchange Rate": "1.0850"}}
    provider = _provider(settings, StubResponse(payload), StubResponse({"Realtime Currency Exchange Rate": {}}))
    assert await provider.get_fx("eur", "usd") == Decimal("1.0850")
    assert await provider.get_fx("USD", "usd") == Decimal("1")
    with pytest.raises(ExternalUnavailableError):
        await provider.get_fx("GBP", "USD")
    assert provider._client.calls[0]["from_currency"] == "EUR"
