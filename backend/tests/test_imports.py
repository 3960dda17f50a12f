from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest

from conftest import OTHER_USER, USER, buy
from folio.core.errors import NotFoundError, UnauthorizedError, ValidationError
from folio.services.imports import ImportService

HEADER = "date,type,symbol,quantity,price,commission\n"


@pytest.fixture
def imports(engine) -> ImportService:
    return ImportService(engine)


async def _portfolio(portfolios):
    return await portfolios.create_portfolio(USER, "Main")


@pytest.mark.asyncio
async def test_import_applies_rows_in_date_order(engine, portfolios, imports):
    portfolio = await _portfolio(portfolios)
    content = HEADER + "2024-02-01,SELL,AAPL,5,120,1\n2024-01-02,BUY,AAPL,10,100,1\n2024-01-03,BUY,MSFT,2,300,0\n"

    result = await imports.import_csv(USER, portfolio.id, content)

    assert result.success_count == 3
    assert result.errors == []
    assert all(tx.import_batch_id == result.batch_id for tx in result.transactions)
    holdings = {h.symbol: h.quantity for h in await engine.list_holdings(USER, portfolio.id)}
    assert holdings == {"AAPL": Decimal("5"), "MSFT": Decimal("2")}


@pytest.mark.asyncio
async def test_dry_run_validates_without_writing(engine, portfolios, imports):
    portfolio = await _portfolio(portfolios)
    result = await imports.import_csv(
        USER, portfolio.id, HEADER + "2024-01-02,BUY,AAPL,10,100,0\n", dry_run=True
    )
    assert result.dry_run
    assert result.validated == 1
    assert result.success_count == 1
    assert result.transactions == []
    assert await engine.list_transactions(USER, portfolio.id) == []


@pytest.mark.asyncio
async def test_invalid_rows_abort_unless_skipped(engine, portfolios, imports):
    portfolio = await _portfolio(portfolios)
    content = (
        HEADER
        + "2024-01-02,BUY,AAPL,10,100,0\n"
        + "2024-01-03,BUY,AAPL,-1,100,0\n"
        + "2999-01-01,BUY,AAPL,1,100,0\n"
        + "garbage,BUY,AAPL,1,100,0\n"
    )

    aborted = await imports.import_csv(USER, portfolio.id, content)
    assert [error.line for error in aborted.errors] == [3, 4, 5]
    assert aborted.success_count == 0
    assert await engine.list_transactions(USER, portfolio.id) == []

    skipped = await imports.import_csv(USER, portfolio.id, content, skip_invalid=True)
    assert skipped.success_count == 1
    assert skipped.skipped == 3
    assert skipped.total_rows == 4
    assert (await engine.get_holding(USER, portfolio.id, "AAPL")).quantity == Decimal("10")


@pytest.mark.asyncio
async def test_engine_rejection_undoes_the_batch(engine, portfolios, imports):
    portfolio = await _portfolio(portfolios)
    await engine.apply_transaction(USER, portfolio.id, buy("MSFT", 1, 100, date(2023, 1, 2)))
    content = HEADER + "2024-01-02,BUY,AAPL,10,100,0\n2024-01-03,SELL,AAPL,20,100,0\n"

    result = await imports.import_csv(USER, portfolio.id, content)

    assert result.transactions == []
    assert [error.line for error in result.errors] == [3]
    assert "insufficient" in result.errors[0].message.lower()
    assert [tx.symbol for tx in await engine.list_transactions(USER, portfolio.id)] == ["MSFT"]
    with pytest.raises(NotFoundError):
        await engine.get_holding(USER, portfolio.id, "AAPL")

    partial = await imports.import_csv(USER, portfolio.id, content, skip_invalid=True)
    assert partial.success_count == 1
    assert partial.skipped == 1


@pytest.mark.asyncio
async def test_batches_are_listed_and_deleted(engine, portfolios, imports):
    portfolio = await _portfolio(portfolios)
    first = await imports.import_csv(USER, portfolio.id, HEADER + "2024-01-02,BUY,AAPL,10,100,0\n")
    second = await imports.import_csv(USER, portfolio.id, HEADER + "2024-01-05,BUY,AAPL,5,110,0\n")

    batches = await imports.list_batches(USER, portfolio.id)
    assert {b.batch_id for b in batches} == {first.batch_id, second.batch_id}

    assert await imports.delete_batch(USER, portfolio.id, first.batch_id) == 1
    holding = await engine.get_holding(USER, portfolio.id, "AAPL")
    assert holding.quantity == Decimal("5")
    assert holding.cost_basis == Decimal("550")

    with pytest.raises(NotFoundError):
        await imports.delete_batch(USER, portfolio.id, uuid.uuid4())
    with pytest.raises(UnauthorizedError):
        await imports.list_batches(OTHER_USER, portfolio.id)


@pytest.mark.asyncio
async def test_unreadable_file_raises(portfolios, imports):
    portfolio = await _portfolio(portfolios)
    with pytest.raises(ValidationError):
        await imports.import_csv(USER, portfolio.id, "symbol,quantity\nAAPL,1\n")
    with pytest.raises(UnauthorizedError):
        await imports.import_csv(OTHER_USER, portfolio.id, HEADER)
