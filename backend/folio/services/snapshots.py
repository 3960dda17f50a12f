"""Portfolio valuation snapshots."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Mapping, Sequence

from folio.core.errors import FolioError, ValidationError
from folio.models import Holding, PerformanceSnapshot
from folio.money import Money, percent, quantize, to_decimal
from folio.repositories.base import Store, get_owned_portfolio
from folio.services.payloads import utc_today

logger = logging.getLogger(__name__)

AMOUNT_PLACES = 8


@dataclass(frozen=True)
class Valuation:
    total_value: Money
    total_cost_basis: Money
    priced_symbols: tuple[str, ...]
    unpriced_symbols: tuple[str, ...]

    @property
    def total_return(self) -> Money:
        return self.total_value - self.total_cost_basis

    @property
    def total_return_pct(self) -> Decimal:
        return percent(self.total_return.amount, self.total_cost_basis.amount)


def value_holdings(
    holdings: Sequence[Holding], prices: Mapping[str, Decimal], currency: str
) -> Valuation:
    """Mark holdings to ``prices``; unpriced holdings count at cost basis."""

    value = Money.zero(currency)
    cost = Money.zero(currency)
    priced: list[str] = []
    unpriced: list[str] = []
    for holding in holdings:
        cost += Money(holding.cost_basis, currency)
        price = prices.get(holding.symbol)
        if price is None:
            value += Money(holding.cost_basis, currency)
            unpriced.append(holding.symbol)
            continue
        price = to_decimal(price)
        if price < 0:
            raise ValidationError(f"price for {holding.symbol} must not be negative")
        value += Money(holding.quantity * price, currency)
        priced.append(holding.symbol)
    return Valuation(value, cost, tuple(priced), tuple(unpriced))


class SnapshotService:
    def __init__(self, store: Store, market_data=None) -> None:
        self.store = store
        self.market_data = market_data

    async def record(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        prices: Mapping[str, Decimal],
        *,
        as_of: date | None = None,
    ) -> PerformanceSnapshot:
        """Store today's valuation; a second call on the same day overwrites it."""

        day = as_of or utc_today()
        prices = {symbol.upper(): price for symbol, price in prices.items()}
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id, for_update=True)
            holdings = await uow.holdings.list_for_portfolio(portfolio.id)
            valuation = value_holdings(holdings, prices, portfolio.base_currency)

            total_value = quantize(valuation.total_value.amount, AMOUNT_PLACES)
            previous = await uow.snapshots.find_latest_snapshot(portfolio.id, before=day)
            day_change = day_change_pct = None
            if previous is not None:
                day_change = total_value - previous.total_value
                day_change_pct = percent(day_change, previous.total_value)

            snapshot = await uow.snapshots.find_by_date(portfolio.id, day)
            if snapshot is None:
                snapshot = PerformanceSnapshot(portfolio_id=portfolio.id, date=day)
                created = True
            else:
                created = False
            snapshot.total_value = total_value
            snapshot.total_cost_basis = quantize(valuation.total_cost_basis.amount, AMOUNT_PLACES)
            snapshot.total_return = quantize(valuation.total_return.amount, AMOUNT_PLACES)
            snapshot.total_return_pct = valuation.total_return_pct
            snapshot.day_change = day_change
            snapshot.day_change_pct = day_change_pct
            if created:
                await uow.snapshots.add(snapshot)

        if valuation.unpriced_symbols:
            logger.warning(
                "No price for %s; valued at cost basis in snapshot of portfolio %s",
                ", ".join(valuation.unpriced_symbols),
                portfolio_id,
            )
        logger.info("Recorded snapshot for portfolio %s on %s: %s", portfolio_id, day, total_value)
        return snapshot

    async def record_from_market(
        self, user_id: str, portfolio_id: uuid.UUID, *, as_of: date | None = None
    ) -> PerformanceSnapshot:
        """Record a snapshot priced with current quotes."""

        if self.market_data is None:
            raise ValidationError("no market data source configured")
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            symbols = [holding.symbol for holding in await uow.holdings.list_for_portfolio(portfolio.id)]
        quotes = await self.market_data.get_quotes(symbols) if symbols else {}
        prices = {symbol: quote.price for symbol, quote in quotes.items()}
        return await self.record(user_id, portfolio_id, prices, as_of=as_of)

    async def record_all_from_market(self, *, as_of: date | None = None) -> list[PerformanceSnapshot]:
        """Record a market-priced snapshot for every portfolio; failures are logged and skipped."""

        if self.market_data is None:
            raise ValidationError("no market data source configured")
        async with self.store.unit() as uow:
            owners = [(portfolio.user_id, portfolio.id) for portfolio in await uow.portfolios.list_all()]

        recorded: list[PerformanceSnapshot] = []
        for user_id, portfolio_id in owners:
            try:
                recorded.append(await self.record_from_market(user_id, portfolio_id, as_of=as_of))
            except FolioError as exc:
                logger.warning("Could not record snapshot for portfolio %s: %s", portfolio_id, exc)
        logger.info("Recorded %d of %d portfolio snapshots", len(recorded), len(owners))
        return recorded

    async def list_snapshots(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        start: date | None = None,
        end: date | None = None,
    ) -> list[PerformanceSnapshot]:
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            return await uow.snapshots.find_snapshots_in_range(portfolio.id, start, end)

    async def latest_snapshot(self, user_id: str, portfolio_id: uuid.UUID) -> PerformanceSnapshot | None:
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            return await uow.snapshots.find_latest_snapshot(portfolio.id)


__all__ = ["SnapshotService", "Valuation", "value_holdings"]
