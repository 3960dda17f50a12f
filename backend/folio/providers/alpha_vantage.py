"""Alpha Vantage market data provider."""

from __future__ import annotations

import logging
import time
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Sequence

import httpx

from folio.config import FolioSettings, get_settings
from folio.core.errors import ExternalUnavailableError, NotFoundError, RateLimitedError
from folio.providers.base import PriceBar, Quote

logger = logging.getLogger(__name__)

FX_KEY = "__fx__"


def _decimal(raw: Any) -> Decimal | None:
    if raw is None:
        return None
    text = str(raw).strip().rstrip("%")
    if not text:
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def _integer(raw: Any) -> int | None:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


class AlphaVantageProvider:
    """Quotes, daily series and exchange rates from Alpha Vantage.

    A ``Note`` or ``Information`` payload means the free-tier quota is spent;
    the symbol is then blocked for ``rate_limit_backoff_seconds`` and further
    calls fail fast with ``RateLimitedError`` instead of hitting the API.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        settings: FolioSettings | None = None,
        client: httpx.AsyncClient | None = None,
        clock=time.monotonic,
    ) -> None:
        self.settings = settings or get_settings()
        self.api_key = api_key or self.settings.alphavantage_api_key
        self.base_url = self.settings.alphavantage_base_url
        self._client = client
        self._clock = clock
        self._blocked_until: dict[str, float] = {}

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def get_quote(self, symbol: str) -> Quote:
        symbol = symbol.strip().upper()
        payload = await self._query(
            symbol,
            {"function": "GLOBAL_QUOTE", "symbol": symbol},
            timeout=self.settings.quote_timeout_seconds,
        )
        data = payload.get("Global Quote") or {}
        price = _decimal(data.get("05. price"))
        if not data.get("01. symbol") or price is None:
            raise NotFoundError(f"no quote data found for symbol {symbol}")
        return Quote(
            symbol=symbol,
            price=price,
            open=_decimal(data.get("02. open")),
            high=_decimal(data.get("03. high")),
            low=_decimal(data.get("04. low")),
            volume=_integer(data.get("06. volume")),
            previous_close=_decimal(data.get("08. previous close")),
            change=_decimal(data.get("09. change")),
            change_percent=_decimal(data.get("10. change percent")),
        )

    async def get_quotes(self, symbols: Sequence[str]) -> dict[str, Quote]:
        """Fetch quotes one by one; symbols that fail are left out."""

        result: dict[str, Quote] = {}
        for symbol in symbols:
            try:
                quote = await self.get_quote(symbol)
            except (ExternalUnavailableError, NotFoundError) as exc:
                logger.warning("Skipping quote for %s: %s", symbol, exc)
                continue
            result[quote.symbol] = quote
        return result

    async def get_historical(self, symbol: str, start: date, end: date) -> list[PriceBar]:
        symbol = symbol.strip().upper()
        payload = await self._query(
            symbol,
            {"function": "TIME_SERIES_DAILY_ADJUSTED", "symbol": symbol, "outputsize": "full"},
            timeout=self.settings.historical_timeout_seconds,
        )
        series = payload.get("Time Series (Daily)") or {}
        bars: list[PriceBar] = []
        for day_str, values in series.items():
            try:
                day = datetime.strptime(day_str, "%Y-%m-%d").date()
            except ValueError:
                continue
            if day < start or day > end:
                continue
            close = _decimal(values.get("4. close"))
            if close is None:
                continue
            bars.append(
                PriceBar(
                    date=day,
                    open=_decimal(values.get("1. open")) or close,
                    high=_decimal(values.get("2. high")) or close,
                    low=_decimal(values.get("3. low")) or close,
                    close=close,
                    adj_close=_decimal(values.get("5. adjusted close")),
                    volume=_integer(values.get("6. volume") or values.get("5. volume")),
                )
            )
        bars.sort(key=lambda bar: bar.date)
        return bars

    async def get_fx(self, from_currency: str, to_currency: str) -> Decimal:
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return Decimal("1")
        payload = await self._query(
            FX_KEY,
            {
                "function": "CURRENCY_EXCHANGE_RATE",
                "from_currency": from_currency,
                "to_currency": to_currency,
            },
            timeout=self.settings.quote_timeout_seconds,
        )
        data = payload.get("Realtime Currency Exchange Rate") or {}
        rate = _decimal(data.get("5. Exchange Rate"))
        if rate is None or rate <= 0:
            raise ExternalUnavailableError(
                f"exchange rate {from_currency}/{to_currency}: unparseable response"
            )
        return rate

    async def _query(self, key: str, params: dict[str, str], *, timeout: float) -> dict[str, Any]:
        if not self.is_available():
            raise ExternalUnavailableError("Alpha Vantage API key not configured")
        blocked_until = self._blocked_until.get(key)
        now = self._clock()
        if blocked_until is not None:
            if now < blocked_until:
                raise RateLimitedError(
                    f"Alpha Vantage rate limit active for {key}", retry_after=blocked_until - now
                )
            del self._blocked_until[key]

        params = {**params, "apikey": self.api_key}
        context = f"{params['function']} {key}"
        try:
            if self._client is not None:
                response = await self._client.get(self.base_url, params=params, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.get(self.base_url, params=params)
        except httpx.HTTPError as exc:
            raise ExternalUnavailableError(f"{context}: {exc}") from exc

        if response.status_code != 200:
            raise ExternalUnavailableError(f"{context}: API returned status {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalUnavailableError(f"{context}: invalid JSON payload") from exc
        if not isinstance(payload, dict):
            raise ExternalUnavailableError(f"{context}: unexpected payload")

        if payload.get("Error Message"):
            raise ExternalUnavailableError(f"{context}: {payload['Error Message']}")
        note = payload.get("Note") or payload.get("Information")
        if note:
            backoff = self.settings.rate_limit_backoff_seconds
            self._blocked_until[key] = self._clock() + backoff
            logger.warning("Alpha Vantage rate limit hit for %s; backing off %.0fs", key, backoff)
            raise RateLimitedError(f"{context}: API rate limit exceeded: {note}", retry_after=backoff)
        return payload


__all__ = ["AlphaVantageProvider"]
