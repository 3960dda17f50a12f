"""Splits, dividends, mergers, spinoffs and ticker changes."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest

from conftest import OTHER_USER, USER, buy, sell
from folio.core.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from folio.models import TransactionType


async def _holdings(engine, portfolio_id) -> dict:
    return {h.symbol: (h.quantity, h.cost_basis) for h in await engine.list_holdings(USER, portfolio_id)}


@pytest.mark.asyncio
async def test_split_scales_quantity_and_keeps_cost(engine, corporate, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 100, 180, date(2020, 1, 2)))

    result = await corporate.apply_split(USER, portfolio.id, "aapl", "4", effective_date=date(2020, 8, 31))

    holding = result.holdings["AAPL"]
    assert holding.quantity == Decimal("400")
    assert holding.cost_basis == Decimal("18000")
    assert holding.average_cost == Decimal("45")
    lots = await engine.list_tax_lots(USER, portfolio.id, "AAPL")
    assert [(lot.quantity, lot.cost_basis) for lot in lots] == [(Decimal("400"), Decimal("18000"))]
    assert result.transaction.type == TransactionType.SPLIT.value
    assert result.transaction.quantity == Decimal("300")
    assert result.outcome.old_quantity == Decimal("100")


@pytest.mark.asyncio
async def test_split_is_replayed_for_later_trades(engine, corporate, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2020, 1, 2)))
    await corporate.apply_split(USER, portfolio.id, "AAPL", "2", effective_date=date(2020, 6, 1))
    result = await engine.apply_transaction(USER, portfolio.id, sell("AAPL", 20, 60, date(2020, 7, 1)))
    assert result.realized_gain == Decimal("200")
    assert result.holding is None


@pytest.mark.asyncio
async def test_split_validation_and_authorization(engine, corporate, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    with pytest.raises(UnauthorizedError):
        await corporate.apply_split(OTHER_USER, portfolio.id, "AAPL", "-1")
    with pytest.raises(ValidationError):
        await corporate.apply_split(USER, portfolio.id, "AAPL", "0")
    with pytest.raises(NotFoundError):
        await corporate.apply_split(USER, portfolio.id, "AAPL", "2", effective_date=date(2020, 1, 2))


@pytest.mark.asyncio
async def test_merger_moves_position_and_lot_dates(engine, corporate, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("FB", 100, 100, date(2019, 3, 1)))

    result = await corporate.apply_merger(USER, portfolio.id, "FB", "META", "1.0", effective_date=date(2021, 10, 28))

    assert await _holdings(engine, portfolio.id) == {"META": (Decimal("100"), Decimal("10000"))}
    lots = await engine.list_tax_lots(USER, portfolio.id)
    assert [(lot.symbol, lot.purchase_date) for lot in lots] == [("META", date(2019, 3, 1))]
    assert result.transaction.related_symbol == "FB"
    assert result.outcome.transferred_cost == Decimal("10000")


@pytest.mark.asyncio
async def test_spinoff_splits_cost_between_parent_and_child(engine, corporate, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("PARENT", 100, 100, date(2020, 1, 1)))

    result = await corporate.apply_spinoff(
        USER, portfolio.id, "PARENT", "CHILD", "0.5", "0.1", effective_date=date(2021, 1, 4)
    )

    holdings = await _holdings(engine, portfolio.id)
    assert holdings["CHILD"] == (Decimal("50"), Decimal("1000"))
    assert holdings["PARENT"] == (Decimal("100"), Decimal("9000"))
    child_lots = await engine.list_tax_lots(USER, portfolio.id, "CHILD")
    assert [lot.purchase_date for lot in child_lots] == [date(2020, 1, 1)]
    assert result.transaction.cost_allocation == Decimal("0.1")


@pytest.mark.asyncio
async def test_spinoff_defaults_to_configured_allocation(engine, corporate, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("PARENT", 10, 100, date(2020, 1, 1)))
    await corporate.apply_spinoff(USER, portfolio.id, "PARENT", "CHILD", "1", effective_date=date(2021, 1, 4))
    holdings = await _holdings(engine, portfolio.id)
    assert holdings["CHILD"][1] == Decimal("100")
    assert holdings["PARENT"][1] + holdings["CHILD"][1] == Decimal("1000")


@pytest.mark.asyncio
async def test_ticker_change_rewrites_history(engine, corporate, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("FB", 10, 100, date(2020, 1, 2)))
    await engine.apply_transaction(USER, portfolio.id, buy("FB", 10, 200, date(2021, 1, 2)))

    await corporate.apply_ticker_change(USER, portfolio.id, "FB", "META", effective_date=date(2022, 6, 9))

    assert await _holdings(engine, portfolio.id) == {"META": (Decimal("20"), Decimal("3000"))}
    assert {tx.symbol for tx in await engine.list_transactions(USER, portfolio.id)} == {"META"}
    with pytest.raises(ValidationError):
        await corporate.apply_ticker_change(USER, portfolio.id, "META", "meta")


@pytest.mark.asyncio
async def test_ticker_change_after_spinoff_keeps_child(engine, corporate, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("PARENT", 100, 100, date(2020, 1, 1)))
    await corporate.apply_spinoff(
        USER, portfolio.id, "PARENT", "CHILD", "0.5", "0.1", effective_date=date(2021, 1, 1)
    )

    await corporate.apply_ticker_change(USER, portfolio.id, "PARENT", "PNEW", effective_date=date(2022, 1, 1))

    assert await _holdings(engine, portfolio.id) == {
        "PNEW": (Decimal("100"), Decimal("9000")),
        "CHILD": (Decimal("50"), Decimal("1000")),
    }
    spinoff = [
        tx
        for tx in await engine.list_transactions(USER, portfolio.id)
        if tx.type == TransactionType.SPINOFF.value
    ]
    assert [(tx.symbol, tx.related_symbol) for tx in spinoff] == [("CHILD", "PNEW")]

    holdings = await engine.recalculate_portfolio(USER, portfolio.id)
    assert {h.symbol: h.quantity for h in holdings} == {"PNEW": Decimal("100"), "CHILD": Decimal("50")}


@pytest.mark.asyncio
async def test_ticker_change_of_symbol_bought_back_after_merger(engine, corporate, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("OLD", 10, 100, date(2020, 1, 2)))
    await corporate.apply_merger(USER, portfolio.id, "OLD", "BIG", "2", effective_date=date(2020, 6, 1))
    await engine.apply_transaction(USER, portfolio.id, buy("OLD", 5, 50, date(2021, 1, 4)))

    await corporate.apply_ticker_change(USER, portfolio.id, "OLD", "NEWCO", effective_date=date(2022, 1, 3))

    assert await _holdings(engine, portfolio.id) == {
        "BIG": (Decimal("20"), Decimal("1000")),
        "NEWCO": (Decimal("5"), Decimal("250")),
    }


@pytest.mark.asyncio
async def test_dividend_is_recorded_without_position_change(engine, corporate, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("KO", 200, 50, date(2020, 1, 2)))

    per_share = await corporate.apply_dividend(
        USER, portfolio.id, "KO", "0.5", per_share=True, effective_date=date(2020, 4, 1)
    )
    total = await corporate.apply_dividend(USER, portfolio.id, "KO", "80", effective_date=date(2020, 7, 1))

    assert per_share.transaction.cash_amount == Decimal("100.0")
    assert total.transaction.price == Decimal("0.4")
    assert await _holdings(engine, portfolio.id) == {"KO": (Decimal("200"), Decimal("10000"))}


@pytest.mark.asyncio
async def test_corporate_transactions_cannot_be_edited(engine, corporate, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2020, 1, 2)))
    result = await corporate.apply_split(USER, portfolio.id, "AAPL", "2", effective_date=date(2020, 6, 1))
    with pytest.raises(ValidationError):
        await engine.update_transaction(USER, result.transaction.id, {"notes": "edited"})


@pytest.mark.asyncio
async def test_revoking_a_merger_restores_the_old_symbol(engine, corporate, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("FB", 10, 100, date(2020, 1, 2)))
    result = await corporate.apply_merger(USER, portfolio.id, "FB", "META", "2", effective_date=date(2021, 1, 4))
    await engine.revoke_transaction(USER, result.transaction.id)
    assert await _holdings(engine, portfolio.id) == {"FB": (Decimal("10"), Decimal("1000"))}


@pytest.mark.asyncio
async def test_announcement_records_are_applied_once(engine, corporate, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("NVDA", 10, 400, date(2024, 1, 2)))
    action = await corporate.create_corporate_action(
        symbol="nvda", type="split", date="2024-06-10", ratio="10", description="10-for-1"
    )
    assert [a.id for a in await corporate.list_corporate_actions(unapplied_only=True)] == [action.id]

    result = await corporate.apply_corporate_action(USER, portfolio.id, action.id)
    assert result.holdings["NVDA"].quantity == Decimal("100")
    assert result.transaction.corporate_action_id == action.id
    with pytest.raises(ConflictError):
        await corporate.apply_corporate_action(USER, portfolio.id, action.id)


@pytest.mark.asyncio
async def test_announcement_records_are_validated(corporate):
    with pytest.raises(ValidationError):
        await corporate.create_corporate_action(symbol="AAPL", type="SPLIT", date="2024-01-02")
    with pytest.raises(ValidationError):
        await corporate.create_corporate_action(symbol="FB", type="MERGER", date="2024-01-02", ratio="1")
    with pytest.raises(ValidationError):
        await corporate.create_corporate_action(symbol="FB", type="BANKRUPTCY", date="2024-01-02")
    with pytest.raises(NotFoundError):
        await corporate.get_corporate_action(uuid.uuid4())
