"""Position engine behaviour against the in-memory store."""

from __future__ import annotations

import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import OTHER_USER, USER, buy, sell
from folio.core.errors import (
    ConflictError,
    InsufficientSharesError,
    InternalError,
    NotFoundError,
    SpecificLotUnknownError,
    UnauthorizedError,
    ValidationError,
)
from folio.models import Transaction, TransactionType
from folio.providers import StaticMarketData
from folio.repositories.memory import (
    MemoryPortfolioRepository,
    MemoryTaxLotRepository,
    MemoryTransactionRepository,
)
from folio.services.engine import PositionEngine


async def _lot_state(engine, portfolio_id):
    lots = await engine.list_tax_lots(USER, portfolio_id)
    holdings = await engine.list_holdings(USER, portfolio_id)
    return (
        sorted((str(l.id), l.symbol, l.purchase_date, l.quantity, l.cost_basis) for l in lots),
        sorted((h.symbol, h.quantity, h.cost_basis) for h in holdings),
    )


async def _assert_lot_sums(engine, portfolio_id):
    for holding in await engine.list_holdings(USER, portfolio_id):
        lots = await engine.list_tax_lots(USER, portfolio_id, holding.symbol)
        assert sum(lot.quantity for lot in lots) == holding.quantity
        assert abs(sum(lot.cost_basis for lot in lots) - holding.cost_basis) < Decimal("0.000001")
        assert holding.quantity > 0


@pytest.mark.asyncio
async def test_fifo_sell_allocates_oldest_lots(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("MSFT", 100, 100, date(2023, 1, 1)))
    await engine.apply_transaction(USER, portfolio.id, buy("MSFT", 50, 200, date(2023, 6, 1)))
    result = await engine.apply_transaction(USER, portfolio.id, sell("msft", 120, 150, date(2023, 12, 1)))

    assert [(g.quantity, g.cost_basis) for g in result.gains] == [
        (Decimal("100"), Decimal("10000")),
        (Decimal("20"), Decimal("4000")),
    ]
    assert result.realized_gain == Decimal("4000")
    assert result.holding.quantity == Decimal("30")
    assert result.holding.cost_basis == Decimal("6000")

    lots = await engine.list_tax_lots(USER, portfolio.id, "MSFT")
    assert len(lots) == 1
    assert lots[0].purchase_date == date(2023, 6, 1)
    assert lots[0].cost_basis == Decimal("6000")
    await _assert_lot_sums(engine, portfolio.id)


@pytest.mark.asyncio
async def test_buy_then_sell_everything_round_trip(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 1, 2), commission=1))
    result = await engine.apply_transaction(
        USER, portfolio.id, sell("AAPL", 10, 120, date(2024, 2, 2), commission=1)
    )
    assert result.realized_gain == Decimal("198")
    assert result.holding is None
    assert await engine.list_holdings(USER, portfolio.id) == []
    assert await engine.list_tax_lots(USER, portfolio.id) == []
    with pytest.raises(NotFoundError):
        await engine.get_holding(USER, portfolio.id, "AAPL")


@pytest.mark.asyncio
async def test_oversell_is_rejected_without_writing(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 1, 2)))
    with pytest.raises(InsufficientSharesError):
        await engine.apply_transaction(USER, portfolio.id, sell("AAPL", 11, 120, date(2024, 2, 2)))
    assert len(await engine.list_transactions(USER, portfolio.id)) == 1
    holding = await engine.get_holding(USER, portfolio.id, "AAPL")
    assert holding.quantity == Decimal("10")


@pytest.mark.asyncio
async def test_backdated_sell_cannot_precede_its_lots(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 3, 1)))
    with pytest.raises(InsufficientSharesError):
        await engine.apply_transaction(USER, portfolio.id, sell("AAPL", 5, 120, date(2024, 2, 1)))


@pytest.mark.asyncio
async def test_payload_validation(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    tomorrow_plus = date.today() + timedelta(days=10)
    bad_payloads = [
        {"type": "BUY", "symbol": "AAPL", "quantity": 1, "date": date(2024, 1, 2)},
        buy("AAPL", 0, 10, date(2024, 1, 2)),
        buy("AAPL", 1, 10, tomorrow_plus),
        buy("AAPL", 1, 10, date(2024, 1, 2), commission=-1),
        buy("", 1, 10, date(2024, 1, 2)),
        buy("AAPL", 1, 10, date(2024, 1, 2), currency="EURO"),
        {"type": "SPLIT", "symbol": "AAPL", "quantity": 1, "date": date(2024, 1, 2)},
        {"type": "DIVIDEND", "symbol": "AAPL", "date": date(2024, 1, 2)},
        sell("AAPL", 1, 10, date(2024, 1, 2), lot_ids=["abc"]),
    ]
    for payload in bad_payloads:
        with pytest.raises(ValidationError):
            await engine.apply_transaction(USER, portfolio.id, payload)
    assert await engine.list_transactions(USER, portfolio.id) == []


@pytest.mark.asyncio
async def test_dividend_records_cash_without_touching_positions(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("KO", 10, 50, date(2024, 1, 2)))
    result = await engine.apply_transaction(
        USER, portfolio.id, {"type": "DIVIDEND", "symbol": "KO", "quantity": 10, "price": "0.46", "date": date(2024, 4, 1)}
    )
    assert result.transaction.cash_amount == Decimal("4.60")
    assert result.holding.quantity == Decimal("10")
    assert result.holding.cost_basis == Decimal("500")


@pytest.mark.asyncio
async def test_other_users_are_unauthorized(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    applied = await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 1, 2)))
    with pytest.raises(UnauthorizedError):
        await engine.apply_transaction(OTHER_USER, portfolio.id, buy("AAPL", 1, 1, date(2024, 1, 2)))
    with pytest.raises(UnauthorizedError):
        # rejected before the payload is even looked at
        await engine.apply_transaction(OTHER_USER, portfolio.id, {"type": "nonsense"})
    with pytest.raises(UnauthorizedError):
        await engine.revoke_transaction(OTHER_USER, applied.transaction.id)
    with pytest.raises(UnauthorizedError):
        await engine.update_transaction(OTHER_USER, applied.transaction.id, {"quantity": 1})
    with pytest.raises(UnauthorizedError):
        await engine.recalculate(OTHER_USER, portfolio.id, "AAPL")
    with pytest.raises(UnauthorizedError):
        await engine.list_holdings(OTHER_USER, portfolio.id)


@pytest.mark.asyncio
async def test_recalculate_matches_incremental_state(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    payloads = [
        buy("AAPL", 100, 150, date(2023, 1, 10)),
        buy("AAPL", 50, 160, date(2023, 6, 1)),
        buy("MSFT", 20, 300, date(2023, 7, 1), commission=2),
        sell("AAPL", 70, 170, date(2023, 9, 1)),
        sell("MSFT", 5, 310, date(2023, 9, 2), commission=1),
    ]
    for payload in payloads:
        await engine.apply_transaction(USER, portfolio.id, payload)
        incremental = await _lot_state(engine, portfolio.id)
        await engine.recalculate(USER, portfolio.id, payload["symbol"])
        assert await _lot_state(engine, portfolio.id) == incremental
    holdings = await engine.recalculate_portfolio(USER, portfolio.id)
    assert sorted(h.symbol for h in holdings) == ["AAPL", "MSFT"]
    assert await _lot_state(engine, portfolio.id) == incremental
    await _assert_lot_sums(engine, portfolio.id)


@pytest.mark.asyncio
async def test_revoke_rebuilds_positions(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    first = await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 1, 2)))
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 5, 110, date(2024, 1, 3)))
    await engine.revoke_transaction(USER, first.transaction.id)

    holding = await engine.get_holding(USER, portfolio.id, "AAPL")
    assert holding.quantity == Decimal("5")
    assert holding.cost_basis == Decimal("550")
    with pytest.raises(NotFoundError):
        await engine.get_transaction(USER, first.transaction.id)


@pytest.mark.asyncio
async def test_revoking_a_buy_needed_by_a_sell_fails(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    first = await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 1, 2)))
    await engine.apply_transaction(USER, portfolio.id, sell("AAPL", 8, 110, date(2024, 2, 2)))
    with pytest.raises(InsufficientSharesError):
        await engine.revoke_transaction(USER, first.transaction.id)
    assert len(await engine.list_transactions(USER, portfolio.id)) == 2


@pytest.mark.asyncio
async def test_update_transaction_replays_history(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    applied = await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 1, 2)))
    result = await engine.update_transaction(USER, applied.transaction.id, {"quantity": "12", "price": "90"})
    assert result.transaction.quantity == Decimal("12")
    assert result.holding.quantity == Decimal("12")
    assert result.holding.cost_basis == Decimal("1080")

    with pytest.raises(ValidationError):
        await engine.update_transaction(USER, applied.transaction.id, {"type": "SELL"})


@pytest.mark.asyncio
async def test_update_moving_transaction_to_other_symbol(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    applied = await engine.apply_transaction(USER, portfolio.id, buy("APPL", 10, 100, date(2024, 1, 2)))
    await engine.update_transaction(USER, applied.transaction.id, {"symbol": "aapl"})
    holdings = await engine.list_holdings(USER, portfolio.id)
    assert [h.symbol for h in holdings] == ["AAPL"]
    assert [lot.symbol for lot in await engine.list_tax_lots(USER, portfolio.id)] == ["AAPL"]


@pytest.mark.asyncio
async def test_specific_lot_sell(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main", cost_basis_method="SPECIFIC_LOT")
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 1, 2)))
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 200, date(2024, 1, 3)))
    lots = await engine.list_tax_lots(USER, portfolio.id, "AAPL")
    expensive = next(lot for lot in lots if lot.cost_basis == Decimal("2000"))

    result = await engine.apply_transaction(
        USER, portfolio.id, sell("AAPL", 5, 150, date(2024, 2, 1), lot_ids=[str(expensive.id)])
    )
    assert [g.lot_id for g in result.gains] == [expensive.id]
    assert result.realized_gain == Decimal("-250")

    with pytest.raises(SpecificLotUnknownError):
        await engine.apply_transaction(
            USER, portfolio.id, sell("AAPL", 1, 150, date(2024, 2, 1), lot_ids=["00000000-0000-0000-0000-000000000000"])
        )

    # without a selection the oldest lot goes first
    fallback = await engine.apply_transaction(USER, portfolio.id, sell("AAPL", 1, 150, date(2024, 2, 2)))
    assert fallback.gains[0].cost_basis == Decimal("100")


@pytest.mark.asyncio
async def test_foreign_currency_rate_is_captured(store, settings, portfolios):
    market = StaticMarketData(fx={("EUR", "USD"): "1.1"})
    engine = PositionEngine(store, market, settings)
    portfolio = await portfolios.create_portfolio(USER, "Main")

    result = await engine.apply_transaction(USER, portfolio.id, buy("SAP", 10, 100, date(2024, 1, 2), currency="eur"))
    assert result.transaction.fx_rate == Decimal("1.1")
    assert result.holding.cost_basis == Decimal("1100.0")

    explicit = await engine.apply_transaction(
        USER, portfolio.id, buy("SAP", 10, 100, date(2024, 1, 3), currency="EUR", fx_rate="1.2")
    )
    assert explicit.transaction.fx_rate == Decimal("1.2")
    assert ("fx", "EUR/USD") in market.calls


@pytest.mark.asyncio
async def test_foreign_currency_without_rate_source_is_rejected(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    with pytest.raises(ValidationError):
        await engine.apply_transaction(USER, portfolio.id, buy("SAP", 10, 100, date(2024, 1, 2), currency="EUR"))


@pytest.mark.asyncio
async def test_failed_derivation_removes_transaction(engine, portfolios, monkeypatch):
    portfolio = await portfolios.create_portfolio(USER, "Main")

    async def broken_add(self, lot):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(MemoryTaxLotRepository, "add", broken_add)
    with pytest.raises(InternalError) as excinfo:
        await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 1, 2)))
    assert "disk full" in str(excinfo.value)
    assert await engine.list_transactions(USER, portfolio.id) == []
    assert await engine.list_holdings(USER, portfolio.id) == []


@pytest.mark.asyncio
async def test_failed_compensation_reports_both_causes(engine, portfolios, monkeypatch):
    portfolio = await portfolios.create_portfolio(USER, "Main")

    async def broken_add(self, lot):
        raise SQLAlchemyError("disk full")

    async def broken_delete(self, transaction_id):
        raise SQLAlchemyError("connection reset")

    monkeypatch.setattr(MemoryTaxLotRepository, "add", broken_add)
    monkeypatch.setattr(MemoryTransactionRepository, "delete_by_id", broken_delete)
    with pytest.raises(InternalError) as excinfo:
        await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 1, 2)))

    assert len(excinfo.value.causes) == 2
    assert [str(cause) for cause in excinfo.value.causes] == ["disk full", "connection reset"]
    assert "disk full" in str(excinfo.value)
    assert "connection reset" in str(excinfo.value)


@pytest.mark.asyncio
async def test_mutations_lock_the_portfolio_row(engine, portfolios, monkeypatch):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    requests: list[bool] = []
    original_get = MemoryPortfolioRepository.get

    async def recording_get(self, portfolio_id, *, for_update=False):
        requests.append(for_update)
        return await original_get(self, portfolio_id, for_update=for_update)

    monkeypatch.setattr(MemoryPortfolioRepository, "get", recording_get)

    result = await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 1, 2)))
    assert requests == [False, True]

    requests.clear()
    await engine.revoke_transaction(USER, result.transaction.id)
    assert requests == [True]

    requests.clear()
    await engine.list_transactions(USER, portfolio.id)
    assert requests == [False]


@pytest.mark.asyncio
async def test_sequence_numbers_are_unique_per_portfolio(engine, portfolios, store):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    first = await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 1, 2)))
    second = await engine.apply_transaction(USER, portfolio.id, buy("MSFT", 10, 100, date(2024, 1, 2)))
    assert (first.transaction.sequence, second.transaction.sequence) == (1, 2)

    duplicate = Transaction(
        id=uuid.uuid4(),
        portfolio_id=portfolio.id,
        sequence=second.transaction.sequence,
        type=TransactionType.BUY.value,
        symbol="AAPL",
        date=date(2024, 1, 3),
        quantity=Decimal("1"),
        price=Decimal("100"),
    )
    with pytest.raises(ConflictError):
        async with store.unit() as uow:
            await uow.transactions.add(duplicate)
    assert len(await engine.list_transactions(USER, portfolio.id)) == 2


@pytest.mark.asyncio
async def test_transaction_filters(engine, portfolios):
    portfolio = await portfolios.create_portfolio(USER, "Main")
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 1, 100, date(2024, 1, 2)))
    await engine.apply_transaction(USER, portfolio.id, buy("MSFT", 1, 100, date(2024, 2, 2)))
    await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 1, 100, date(2024, 3, 2)))

    assert len(await engine.list_transactions(USER, portfolio.id, symbol="aapl")) == 2
    in_range = await engine.list_transactions(USER, portfolio.id, start=date(2024, 2, 1), end=date(2024, 2, 28))
    assert [tx.symbol for tx in in_range] == ["MSFT"]
