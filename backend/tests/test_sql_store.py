"""The services running on the SQLAlchemy store (SQLite through aiosqlite)."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from conftest import OTHER_USER, USER, buy, sell
from folio.core.errors import ConflictError, InsufficientSharesError, UnauthorizedError, ValidationError
from folio.db import Database
from folio.models import Transaction, TransactionType
from folio.repositories import SqlStore
from folio.services.corporate_actions import CorporateActionService
from folio.services.engine import PositionEngine
from folio.services.imports import ImportService
from folio.services.portfolios import PortfolioService
from folio.services.snapshots import SnapshotService


async def _database(tmp_path: Path) -> Database:
    database = Database(url=f"sqlite+aiosqlite:///{tmp_path / 'folio.db'}")
    await database.create_all()
    return database


@pytest.mark.asyncio
async def test_transactions_round_trip_through_sql(tmp_path, settings):
    database = await _database(tmp_path)
    try:
        store = SqlStore(database)
        engine = PositionEngine(store, settings=settings)
        portfolio = await PortfolioService(store, settings).create_portfolio(USER, "Main")

        await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 100, 10, date(2023, 1, 2)))
        await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 50, 20, date(2023, 6, 1)))
        result = await engine.apply_transaction(USER, portfolio.id, sell("AAPL", 120, 15, date(2023, 12, 1)))

        assert result.realized_gain == Decimal("400")
        holding = await engine.get_holding(USER, portfolio.id, "AAPL")
        assert holding.quantity == Decimal("30")
        assert holding.cost_basis == Decimal("600")
        lots = await engine.list_tax_lots(USER, portfolio.id, "AAPL")
        assert [(lot.purchase_date, lot.quantity) for lot in lots] == [(date(2023, 6, 1), Decimal("30"))]

        with pytest.raises(InsufficientSharesError):
            await engine.apply_transaction(USER, portfolio.id, sell("AAPL", 31, 15, date(2023, 12, 2)))
        assert len(await engine.list_transactions(USER, portfolio.id)) == 3

        await engine.revoke_transaction(USER, result.transaction.id)
        holding = await engine.get_holding(USER, portfolio.id, "AAPL")
        assert holding.quantity == Decimal("150")
        assert holding.cost_basis == Decimal("2000")
    finally:
        await database.dispose()


@pytest.mark.asyncio
async def test_portfolio_rules_hold_in_sql(tmp_path, settings):
    database = await _database(tmp_path)
    try:
        service = PortfolioService(SqlStore(database), settings)
        portfolio = await service.create_portfolio(USER, "Main", base_currency="eur")
        assert portfolio.base_currency == "EUR"
        with pytest.raises(ValidationError):
            await service.create_portfolio(USER, "Main")
        await service.create_portfolio(OTHER_USER, "Main")
        with pytest.raises(UnauthorizedError):
            await service.get_portfolio(OTHER_USER, portfolio.id)

        await service.delete_portfolio(USER, portfolio.id)
        assert await service.list_portfolios(USER) == []
    finally:
        await database.dispose()


@pytest.mark.asyncio
async def test_split_and_ticker_change_in_sql(tmp_path, settings):
    database = await _database(tmp_path)
    try:
        store = SqlStore(database)
        engine = PositionEngine(store, settings=settings)
        corporate = CorporateActionService(engine)
        portfolio = await PortfolioService(store, settings).create_portfolio(USER, "Main")
        await engine.apply_transaction(USER, portfolio.id, buy("FB", 10, 100, date(2022, 1, 3)))

        await corporate.apply_split(USER, portfolio.id, "FB", "2", effective_date=date(2022, 6, 1))
        await corporate.apply_ticker_change(USER, portfolio.id, "FB", "META", effective_date=date(2022, 6, 9))

        holdings = await engine.list_holdings(USER, portfolio.id)
        assert [(h.symbol, h.quantity, h.cost_basis) for h in holdings] == [
            ("META", Decimal("20"), Decimal("1000"))
        ]
        symbols = {tx.symbol for tx in await engine.list_transactions(USER, portfolio.id)}
        assert symbols == {"META"}
    finally:
        await database.dispose()


@pytest.mark.asyncio
async def test_snapshots_and_import_batches_in_sql(tmp_path, settings):
    database = await _database(tmp_path)
    try:
        store = SqlStore(database)
        engine = PositionEngine(store, settings=settings)
        portfolio = await PortfolioService(store, settings).create_portfolio(USER, "Main")
        imports = ImportService(engine)

        result = await imports.import_csv(
            USER,
            portfolio.id,
            "date,type,symbol,quantity,price\n2024-01-02,BUY,AAPL,10,100\n2024-01-03,BUY,MSFT,5,200\n",
        )
        assert result.success_count == 2
        batches = await imports.list_batches(USER, portfolio.id)
        assert [(b.batch_id, b.transaction_count) for b in batches] == [(result.batch_id, 2)]

        snapshots = SnapshotService(store)
        await snapshots.record(USER, portfolio.id, {"AAPL": Decimal("110")}, as_of=date(2024, 1, 5))
        again = await snapshots.record(USER, portfolio.id, {"AAPL": Decimal("120")}, as_of=date(2024, 1, 5))
        assert again.total_value == Decimal("2200")
        assert len(await snapshots.list_snapshots(USER, portfolio.id)) == 1

        assert await imports.delete_batch(USER, portfolio.id, result.batch_id) == 2
        assert await engine.list_holdings(USER, portfolio.id) == []
    finally:
        await database.dispose()


@pytest.mark.asyncio
async def test_duplicate_sequence_is_a_conflict_in_sql(tmp_path, settings):
    database = await _database(tmp_path)
    try:
        store = SqlStore(database)
        engine = PositionEngine(store, settings=settings)
        portfolio = await PortfolioService(store, settings).create_portfolio(USER, "Main")
        applied = await engine.apply_transaction(USER, portfolio.id, buy("AAPL", 10, 100, date(2024, 1, 2)))

        with pytest.raises(ConflictError):
            async with store.unit() as uow:
                await uow.transactions.add(
                    Transaction(
                        portfolio_id=portfolio.id,
                        sequence=applied.transaction.sequence,
                        type=TransactionType.BUY.value,
                        symbol="AAPL",
                        date=date(2024, 1, 3),
                        quantity=Decimal("1"),
                        price=Decimal("100"),
                    )
                )
        assert len(await engine.list_transactions(USER, portfolio.id)) == 1
    finally:
        await database.dispose()


@pytest.mark.asyncio
async def test_ticker_change_after_spinoff_in_sql(tmp_path, settings):
    database = await _database(tmp_path)
    try:
        store = SqlStore(database)
        engine = PositionEngine(store, settings=settings)
        corporate = CorporateActionService(engine)
        portfolio = await PortfolioService(store, settings).create_portfolio(USER, "Main")
        await engine.apply_transaction(USER, portfolio.id, buy("PARENT", 100, 100, date(2020, 1, 1)))
        await corporate.apply_spinoff(
            USER, portfolio.id, "PARENT", "CHILD", "0.5", "0.1", effective_date=date(2021, 1, 1)
        )

        await corporate.apply_ticker_change(USER, portfolio.id, "PARENT", "PNEW", effective_date=date(2022, 1, 1))

        holdings = {h.symbol: (h.quantity, h.cost_basis) for h in await engine.list_holdings(USER, portfolio.id)}
        assert holdings == {
            "PNEW": (Decimal("100"), Decimal("9000")),
            "CHILD": (Decimal("50"), Decimal("1000")),
        }
    finally:
        await database.dispose()
