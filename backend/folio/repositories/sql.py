"""SQLAlchemy-backed repositories."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Iterable, Sequence

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from folio.core.errors import ConflictError
from folio.db.session import Database
from folio.models import (
    CorporateAction,
    Holding,
    PerformanceSnapshot,
    Portfolio,
    PortfolioAction,
    TaxLot,
    Transaction,
    TransactionType,
)
from folio.repositories.base import ImportBatch

logger = logging.getLogger(__name__)


class _SessionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _all(self, stmt: Select) -> list:
        return list((await self.session.execute(stmt)).scalars().all())

    async def _first(self, stmt: Select):
        return (await self.session.execute(stmt)).scalars().first()


class SqlPortfolioRepository(_SessionRepository):
    async def add(self, portfolio: Portfolio) -> Portfolio:
        self.session.add(portfolio)
        return portfolio

    async def get(self, portfolio_id: uuid.UUID, *, for_update: bool = False) -> Portfolio | None:
        if for_update:
            return await self.session.get(Portfolio, portfolio_id, with_for_update=True)
        return await self.session.get(Portfolio, portfolio_id)

    async def find_by_owner_and_name(self, user_id: str, name: str) -> Portfolio | None:
        return await self._first(
            select(Portfolio).where(Portfolio.user_id == user_id, Portfolio.name == name)
        )

    async def list_by_owner(self, user_id: str) -> list[Portfolio]:
        return await self._all(
            select(Portfolio).where(Portfolio.user_id == user_id).order_by(Portfolio.created_at, Portfolio.name)
        )

    async def list_all(self) -> list[Portfolio]:
        return await self._all(select(Portfolio).order_by(Portfolio.created_at))

    async def delete(self, portfolio: Portfolio) -> None:
        # Children are removed explicitly so the cascade does not depend on
        # the backend enforcing foreign keys (SQLite does not by default).
        for model in (PortfolioAction, PerformanceSnapshot, TaxLot, Holding, Transaction):
            await self.session.execute(delete(model).where(model.portfolio_id == portfolio.id))
        await self.session.delete(portfolio)


class SqlTransactionRepository(_SessionRepository):
    def _ordered(self, portfolio_id: uuid.UUID) -> Select:
        return (
            select(Transaction)
            .where(Transaction.portfolio_id == portfolio_id)
            .order_by(Transaction.date, Transaction.sequence)
        )

    async def add(self, transaction: Transaction) -> Transaction:
        self.session.add(transaction)
        return transaction

    async def get(self, transaction_id: uuid.UUID) -> Transaction | None:
        return await self.session.get(Transaction, transaction_id)

    async def list_for_portfolio(self, portfolio_id: uuid.UUID) -> list[Transaction]:
        return await self._all(self._ordered(portfolio_id))

    async def find_by_portfolio_and_symbol(self, portfolio_id: uuid.UUID, symbol: str) -> list[Transaction]:
        return await self._all(self._ordered(portfolio_id).where(Transaction.symbol == symbol))

    async def find_by_portfolio_symbol_daterange(
        self,
        portfolio_id: uuid.UUID,
        symbol: str | None,
        start: date | None,
        end: date | None,
        types: Sequence[str] | None = None,
    ) -> list[Transaction]:
        stmt = self._ordered(portfolio_id)
        if symbol:
            stmt = stmt.where(Transaction.symbol == symbol)
        if start is not None:
            stmt = stmt.where(Transaction.date >= start)
        if end is not None:
            stmt = stmt.where(Transaction.date <= end)
        if types:
            stmt = stmt.where(Transaction.type.in_([str(getattr(t, "value", t)) for t in types]))
        return await self._all(stmt)

    async def find_by_batch(self, portfolio_id: uuid.UUID, batch_id: uuid.UUID) -> list[Transaction]:
        return await self._all(self._ordered(portfolio_id).where(Transaction.import_batch_id == batch_id))

    async def list_batches(self, portfolio_id: uuid.UUID) -> list[ImportBatch]:
        stmt = (
            select(
                Transaction.import_batch_id,
                func.count(Transaction.id),
                func.min(Transaction.date),
                func.max(Transaction.date),
                func.min(Transaction.created_at),
            )
            .where(Transaction.portfolio_id == portfolio_id, Transaction.import_batch_id.is_not(None))
            .group_by(Transaction.import_batch_id)
            .order_by(func.min(Transaction.created_at).desc())
        )
        rows = (await self.session.execute(stmt)).all()
        return [
            ImportBatch(
                batch_id=row[0],
                transaction_count=int(row[1]),
                first_date=row[2],
                last_date=row[3],
                created_at=row[4],
            )
            for row in rows
        ]

    async def next_sequence(self, portfolio_id: uuid.UUID) -> int:
        stmt = select(func.max(Transaction.sequence)).where(Transaction.portfolio_id == portfolio_id)
        current = (await self.session.execute(stmt)).scalar()
        return int(current or 0) + 1

    async def rename_symbol(self, portfolio_id: uuid.UUID, old_symbol: str, new_symbol: str) -> int:
        result = await self.session.execute(
            update(Transaction)
            .where(Transaction.portfolio_id == portfolio_id, Transaction.symbol == old_symbol)
            .values(symbol=new_symbol)
            .execution_options(synchronize_session="fetch")
        )
        # merger and spinoff rows name the old symbol as their source
        await self.session.execute(
            update(Transaction)
            .where(
                Transaction.portfolio_id == portfolio_id,
                Transaction.related_symbol == old_symbol,
                Transaction.type != TransactionType.TICKER_CHANGE.value,
            )
            .values(related_symbol=new_symbol)
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)

    async def delete(self, transaction: Transaction) -> None:
        await self.session.execute(delete(TaxLot).where(TaxLot.transaction_id == transaction.id))
        await self.session.delete(transaction)

    async def delete_by_id(self, transaction_id: uuid.UUID) -> bool:
        await self.session.execute(delete(TaxLot).where(TaxLot.transaction_id == transaction_id))
        result = await self.session.execute(delete(Transaction).where(Transaction.id == transaction_id))
        return bool(result.rowcount)


class SqlHoldingRepository(_SessionRepository):
    async def add(self, holding: Holding) -> Holding:
        self.session.add(holding)
        return holding

    async def find_by_portfolio_and_symbol(
        self, portfolio_id: uuid.UUID, symbol: str, *, for_update: bool = False
    ) -> Holding | None:
        stmt = select(Holding).where(Holding.portfolio_id == portfolio_id, Holding.symbol == symbol)
        if for_update:
            stmt = stmt.with_for_update()
        return await self._first(stmt)

    async def lock(self, portfolio_id: uuid.UUID, symbols: Iterable[str]) -> list[Holding]:
        wanted = sorted(set(symbols))
        if not wanted:
            return []
        stmt = (
            select(Holding)
            .where(Holding.portfolio_id == portfolio_id, Holding.symbol.in_(wanted))
            .order_by(Holding.symbol)
            .with_for_update()
        )
        return await self._all(stmt)

    async def list_for_portfolio(self, portfolio_id: uuid.UUID) -> list[Holding]:
        return await self._all(
            select(Holding).where(Holding.portfolio_id == portfolio_id).order_by(Holding.symbol)
        )

    async def find_by_symbol(self, symbol: str) -> list[Holding]:
        return await self._all(
            select(Holding).where(Holding.symbol == symbol, Holding.quantity > 0).order_by(Holding.portfolio_id)
        )

    async def delete(self, holding: Holding) -> None:
        await self.session.delete(holding)


class SqlTaxLotRepository(_SessionRepository):
    def _ordered(self, portfolio_id: uuid.UUID) -> Select:
        return (
            select(TaxLot)
            .where(TaxLot.portfolio_id == portfolio_id)
            .order_by(TaxLot.symbol, TaxLot.purchase_date, TaxLot.sequence)
        )

    async def add(self, lot: TaxLot) -> TaxLot:
        self.session.add(lot)
        return lot

    async def get(self, lot_id: uuid.UUID) -> TaxLot | None:
        return await self.session.get(TaxLot, lot_id)

    async def find_by_portfolio_and_symbol(self, portfolio_id: uuid.UUID, symbol: str) -> list[TaxLot]:
        return await self._all(self._ordered(portfolio_id).where(TaxLot.symbol == symbol))

    async def find_by_portfolio_and_symbols(
        self, portfolio_id: uuid.UUID, symbols: Iterable[str]
    ) -> list[TaxLot]:
        wanted = sorted(set(symbols))
        if not wanted:
            return []
        return await self._all(self._ordered(portfolio_id).where(TaxLot.symbol.in_(wanted)))

    async def list_for_portfolio(self, portfolio_id: uuid.UUID) -> list[TaxLot]:
        return await self._all(self._ordered(portfolio_id))

    async def delete(self, lot: TaxLot) -> None:
        await self.session.delete(lot)


class SqlCorporateActionRepository(_SessionRepository):
    async def add(self, action: CorporateAction) -> CorporateAction:
        self.session.add(action)
        return action

    async def get(self, action_id: uuid.UUID) -> CorporateAction | None:
        return await self.session.get(CorporateAction, action_id)

    async def find_by_symbol(self, symbol: str) -> list[CorporateAction]:
        return await self._all(
            select(CorporateAction).where(CorporateAction.symbol == symbol).order_by(CorporateAction.date)
        )

    async def list_all(self) -> list[CorporateAction]:
        return await self._all(select(CorporateAction).order_by(CorporateAction.date, CorporateAction.symbol))

    async def find_unapplied_corporate_actions(self) -> list[CorporateAction]:
        return await self._all(
            select(CorporateAction)
            .where(CorporateAction.applied.is_(False))
            .order_by(CorporateAction.date, CorporateAction.created_at)
        )


class SqlPortfolioActionRepository(_SessionRepository):
    async def add(self, action: PortfolioAction) -> PortfolioAction:
        self.session.add(action)
        return action

    async def get(self, action_id: uuid.UUID) -> PortfolioAction | None:
        return await self.session.get(PortfolioAction, action_id)

    async def list_for_portfolio(
        self, portfolio_id: uuid.UUID, status: str | None = None
    ) -> list[PortfolioAction]:
        stmt = select(PortfolioAction).where(PortfolioAction.portfolio_id == portfolio_id)
        if status:
            stmt = stmt.where(PortfolioAction.status == status)
        return await self._all(stmt.order_by(PortfolioAction.detected_at))

    async def find_for_corporate_action(
        self, corporate_action_id: uuid.UUID, portfolio_id: uuid.UUID | None = None
    ) -> list[PortfolioAction]:
        stmt = select(PortfolioAction).where(PortfolioAction.corporate_action_id == corporate_action_id)
        if portfolio_id is not None:
            stmt = stmt.where(PortfolioAction.portfolio_id == portfolio_id)
        return await self._all(stmt.order_by(PortfolioAction.detected_at))


class SqlSnapshotRepository(_SessionRepository):
    async def add(self, snapshot: PerformanceSnapshot) -> PerformanceSnapshot:
        self.session.add(snapshot)
        return snapshot

    async def find_by_date(self, portfolio_id: uuid.UUID, on: date) -> PerformanceSnapshot | None:
        return await self._first(
            select(PerformanceSnapshot).where(
                PerformanceSnapshot.portfolio_id == portfolio_id, PerformanceSnapshot.date == on
            )
        )

    async def find_latest_snapshot(
        self, portfolio_id: uuid.UUID, before: date | None = None
    ) -> PerformanceSnapshot | None:
        stmt = select(PerformanceSnapshot).where(PerformanceSnapshot.portfolio_id == portfolio_id)
        if before is not None:
            stmt = stmt.where(PerformanceSnapshot.date < before)
        return await self._first(stmt.order_by(PerformanceSnapshot.date.desc()).limit(1))

    async def find_snapshots_in_range(
        self, portfolio_id: uuid.UUID, start: date | None, end: date | None
    ) -> list[PerformanceSnapshot]:
        stmt = select(PerformanceSnapshot).where(PerformanceSnapshot.portfolio_id == portfolio_id)
        if start is not None:
            stmt = stmt.where(PerformanceSnapshot.date >= start)
        if end is not None:
            stmt = stmt.where(PerformanceSnapshot.date <= end)
        return await self._all(stmt.order_by(PerformanceSnapshot.date))


class SqlUnitOfWork:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.portfolios = SqlPortfolioRepository(session)
        self.transactions = SqlTransactionRepository(session)
        self.holdings = SqlHoldingRepository(session)
        self.lots = SqlTaxLotRepository(session)
        self.corporate_actions = SqlCorporateActionRepository(session)
        self.portfolio_actions = SqlPortfolioActionRepository(session)
        self.snapshots = SqlSnapshotRepository(session)

    async def flush(self) -> None:
        await self.session.flush()


class SqlStore:
    """Store whose units are database transactions on ``database``."""

    def __init__(self, database: Database) -> None:
        self.database = database

    @asynccontextmanager
    async def unit(self) -> AsyncIterator[SqlUnitOfWork]:
        async with self.database.session() as session:
            try:
                async with session.begin():
                    yield SqlUnitOfWork(session)
            except IntegrityError as exc:
                logger.warning("Unique or check constraint violated: %s", exc.orig)
                raise ConflictError(f"constraint violation: {exc.orig}") from exc


__all__ = ["SqlStore", "SqlUnitOfWork"]
