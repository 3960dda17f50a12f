from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from conftest import OTHER_USER, USER, buy
from folio.core.errors import UnauthorizedError, ValidationError
from folio.providers.static import StaticMarketData
from folio.services.market_data import MarketDataService, QuoteCache
from folio.services.snapshots import SnapshotService, value_holdings


async def _portfolio(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 1, 2)))
    await engine.apply_transaction(USER, portfolio.id, buy("MSFT", 5, 200, date(2024, 1, 2)))
    return portfolio


@pytest.mark.asyncio
async def test_unpriced_holdings_are_valued_at_cost(engine, portfolios, store):
    portfolio = await _portfolio(engine, portfolios)
    snapshots = SnapshotService(store)

    snapshot = await snapshots.record(USER, portfolio.id, {"aapl": "110"}, as_of=date(2024, 1, 5))

    assert snapshot.total_value == Decimal("2100")
    assert snapshot.total_cost_basis == Decimal("2000")
    assert snapshot.total_return == Decimal("100")
    assert snapshot.total_return_pct == Decimal("5")
    assert snapshot.day_change is None


@pytest.mark.asyncio
async def test_day_change_is_measured_against_previous_snapshot(engine, portfolios, store):
    portfolio = await _portfolio(engine, portfolios)
    snapshots = SnapshotService(store)
    prices = {"AAPL": Decimal("110"), "MSFT": Decimal("200")}
    await snapshots.record(USER, portfolio.id, prices, as_of=date(2024, 1, 5))

    prices["AAPL"] = Decimal("120")
    snapshot = await snapshots.record(USER, portfolio.id, prices, as_of=date(2024, 1, 8))

    assert snapshot.total_value == Decimal("2200")
    assert snapshot.day_change == Decimal("100")
    assert snapshot.day_change_pct == Decimal("4.7619")
    latest = await snapshots.latest_snapshot(USER, portfolio.id)
    assert latest.date == date(2024, 1, 8)
    window = await snapshots.list_snapshots(USER, portfolio.id, start=date(2024, 1, 6))
    assert [s.date for s in window] == [date(2024, 1, 8)]


@pytest.mark.asyncio
async def test_recording_the_same_day_overwrites(engine, portfolios, store):
    portfolio = await _portfolio(engine, portfolios)
    snapshots = SnapshotService(store)
    first = await snapshots.record(USER, portfolio.id, {}, as_of=date(2024, 1, 5))
    second = await snapshots.record(USER, portfolio.id, {"MSFT": "300"}, as_of=date(2024, 1, 5))

    assert second.id == first.id
    assert second.total_value == Decimal("2500")
    assert len(await snapshots.list_snapshots(USER, portfolio.id)) == 1


@pytest.mark.asyncio
async def test_recording_checks_ownership_and_prices(engine, portfolios, store):
    portfolio = await _portfolio(engine, portfolios)
    snapshots = SnapshotService(store)
    with pytest.raises(UnauthorizedError):
        await snapshots.record(OTHER_USER, portfolio.id, {})
    with pytest.raises(ValidationError):
        await snapshots.record(USER, portfolio.id, {"AAPL": "-1"})
    assert await snapshots.latest_snapshot(USER, portfolio.id) is None


@pytest.mark.asyncio
async def test_record_from_market_prices_with_quotes(engine, portfolios, store, settings):
    portfolio = await _portfolio(engine, portfolios)
    provider = StaticMarketData({"AAPL": "150"}, unavailable=["MSFT"])
    market = MarketDataService(provider, cache=QuoteCache(60), settings=settings)

    snapshot = await SnapshotService(store, market).record_from_market(USER, portfolio.id, as_of=date(2024, 2, 1))

    assert snapshot.total_value == Decimal("2500")
    with pytest.raises(ValidationError):
        await SnapshotService(store).record_from_market(USER, portfolio.id)


@pytest.mark.asyncio
async def test_record_all_from_market_covers_every_owner(engine, portfolios, store, settings):
    mine = await _portfolio(engine, portfolios)
    theirs = await portfolios.create_portfolio(OTHER_USER, "Theirs")
    await engine.apply_transaction(OTHER_USER, theirs.id, buy("AAPL", 2, 120, date(2024, 1, 3)))
    provider = StaticMarketData({"AAPL": "150", "MSFT": "210"})
    market = MarketDataService(provider, cache=QuoteCache(60), settings=settings)

    snapshots = await SnapshotService(store, market).record_all_from_market(as_of=date(2024, 2, 1))

    values = {snapshot.portfolio_id: snapshot.total_value for snapshot in snapshots}
    assert values == {mine.id: Decimal("2550"), theirs.id: Decimal("300")}
    with pytest.raises(ValidationError):
        await SnapshotService(store).record_all_from_market()


def test_value_holdings_of_empty_portfolio():
    valuation = value_holdings([], {}, "USD")
    assert valuation.total_value.amount == Decimal("0")
    assert valuation.total_return_pct == Decimal("0")
