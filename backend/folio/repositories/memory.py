"""In-memory store used by tests and offline tooling.

Entities are the same mapped classes the SQL store persists, kept as
transient instances. A unit records the column values of every entity when it
starts and restores them if the block raises, so a failed operation leaves
the store as it found it.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Iterable, Sequence

from sqlalchemy import inspect

from folio.core.errors import ConflictError
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


def _columns(model: type) -> list[str]:
    return [attr.key for attr in inspect(model).column_attrs]


def _apply_defaults(entity: Any) -> None:
    """Fill unset columns from their Python-side defaults, as a flush would."""

    mapper = inspect(type(entity))
    for attr in mapper.column_attrs:
        column = attr.columns[0]
        if getattr(entity, attr.key) is not None or column.default is None:
            continue
        default = column.default
        if default.is_callable:
            value = default.arg(None)  # type: ignore[operator]
        elif default.is_scalar:
            value = default.arg
        else:
            continue
        setattr(entity, attr.key, value)


class _Table:
    def __init__(self, model: type) -> None:
        self.model = model
        self.rows: dict[uuid.UUID, Any] = {}
        self.columns = _columns(model)

    def put(self, entity: Any) -> Any:
        _apply_defaults(entity)
        if entity.id is None:
            entity.id = uuid.uuid4()
        if entity.id in self.rows and self.rows[entity.id] is not entity:
            raise ConflictError(f"duplicate {self.model.__tablename__} id {entity.id}")
        self.rows[entity.id] = entity
        return entity

    def values(self) -> list[Any]:
        return list(self.rows.values())

    def snapshot(self) -> dict[uuid.UUID, tuple[Any, dict[str, Any]]]:
        return {
            key: (entity, {name: getattr(entity, name) for name in self.columns})
            for key, entity in self.rows.items()
        }

    def restore(self, saved: dict[uuid.UUID, tuple[Any, dict[str, Any]]]) -> None:
        self.rows = {}
        for key, (entity, values) in saved.items():
            for name, value in values.items():
                setattr(entity, name, value)
            self.rows[key] = entity


class _Repository:
    def __init__(self, table: _Table, store: "MemoryStore") -> None:
        self.table = table
        self.store = store

    async def add(self, entity):
        return self.table.put(entity)

    async def get(self, entity_id: uuid.UUID):
        return self.table.rows.get(entity_id)

    async def delete(self, entity) -> None:
        self.table.rows.pop(entity.id, None)


class MemoryPortfolioRepository(_Repository):
    async def get(self, portfolio_id: uuid.UUID, *, for_update: bool = False) -> Portfolio | None:
        return self.table.rows.get(portfolio_id)

    async def add(self, portfolio: Portfolio) -> Portfolio:
        for other in self.table.values():
            if other is not portfolio and other.user_id == portfolio.user_id and other.name == portfolio.name:
                raise ConflictError("portfolio name already exists for this owner")
        return self.table.put(portfolio)

    async def find_by_owner_and_name(self, user_id: str, name: str) -> Portfolio | None:
        for portfolio in self.table.values():
            if portfolio.user_id == user_id and portfolio.name == name:
                return portfolio
        return None

    async def list_by_owner(self, user_id: str) -> list[Portfolio]:
        owned = [p for p in self.table.values() if p.user_id == user_id]
        return sorted(owned, key=lambda p: (p.created_at, p.name))

    async def list_all(self) -> list[Portfolio]:
        return sorted(self.table.values(), key=lambda p: p.created_at)

    async def delete(self, portfolio: Portfolio) -> None:
        for name in ("transactions", "holdings", "lots", "snapshots", "portfolio_actions"):
            table = self.store.tables[name]
            table.rows = {k: v for k, v in table.rows.items() if v.portfolio_id != portfolio.id}
        self.table.rows.pop(portfolio.id, None)


class MemoryTransactionRepository(_Repository):
    async def add(self, transaction: Transaction) -> Transaction:
        for other in self.table.values():
            if (
                other is not transaction
                and other.portfolio_id == transaction.portfolio_id
                and other.sequence == transaction.sequence
            ):
                raise ConflictError(f"sequence {transaction.sequence} already used in this portfolio")
        return self.table.put(transaction)

    def _for(self, portfolio_id: uuid.UUID) -> list[Transaction]:
        rows = [tx for tx in self.table.values() if tx.portfolio_id == portfolio_id]
        return sorted(rows, key=lambda tx: (tx.date, tx.sequence))

    async def list_for_portfolio(self, portfolio_id: uuid.UUID) -> list[Transaction]:
        return self._for(portfolio_id)

    async def find_by_portfolio_and_symbol(self, portfolio_id: uuid.UUID, symbol: str) -> list[Transaction]:
        return [tx for tx in self._for(portfolio_id) if tx.symbol == symbol]

    async def find_by_portfolio_symbol_daterange(
        self,
        portfolio_id: uuid.UUID,
        symbol: str | None,
        start: date | None,
        end: date | None,
        types: Sequence[str] | None = None,
    ) -> list[Transaction]:
        wanted = {str(getattr(t, "value", t)) for t in types} if types else None
        result = []
        for tx in self._for(portfolio_id):
            if symbol and tx.symbol != symbol:
                continue
            if start is not None and tx.date < start:
                continue
            if end is not None and tx.date > end:
                continue
            if wanted is not None and tx.type not in wanted:
                continue
            result.append(tx)
        return result

    async def find_by_batch(self, portfolio_id: uuid.UUID, batch_id: uuid.UUID) -> list[Transaction]:
        return [tx for tx in self._for(portfolio_id) if tx.import_batch_id == batch_id]

    async def list_batches(self, portfolio_id: uuid.UUID) -> list[ImportBatch]:
        grouped: dict[uuid.UUID, list[Transaction]] = defaultdict(list)
        for tx in self._for(portfolio_id):
            if tx.import_batch_id is not None:
                grouped[tx.import_batch_id].append(tx)
        batches = [
            ImportBatch(
                batch_id=batch_id,
                transaction_count=len(rows),
                first_date=min(tx.date for tx in rows),
                last_date=max(tx.date for tx in rows),
                created_at=min(tx.created_at for tx in rows),
            )
            for batch_id, rows in grouped.items()
        ]
        return sorted(batches, key=lambda b: b.created_at, reverse=True)

    async def next_sequence(self, portfolio_id: uuid.UUID) -> int:
        sequences = [tx.sequence for tx in self.table.values() if tx.portfolio_id == portfolio_id]
        return max(sequences, default=0) + 1

    async def rename_symbol(self, portfolio_id: uuid.UUID, old_symbol: str, new_symbol: str) -> int:
        count = 0
        for tx in self.table.values():
            if tx.portfolio_id != portfolio_id:
                continue
            if tx.symbol == old_symbol:
                tx.symbol = new_symbol
                count += 1
            if tx.related_symbol == old_symbol and tx.type != TransactionType.TICKER_CHANGE.value:
                tx.related_symbol = new_symbol
        return count

    async def delete(self, transaction: Transaction) -> None:
        await self.delete_by_id(transaction.id)

    async def delete_by_id(self, transaction_id: uuid.UUID) -> bool:
        lots = self.store.tables["lots"]
        lots.rows = {k: v for k, v in lots.rows.items() if v.transaction_id != transaction_id}
        return self.table.rows.pop(transaction_id, None) is not None


class MemoryHoldingRepository(_Repository):
    async def add(self, holding: Holding) -> Holding:
        for other in self.table.values():
            if other is not holding and other.portfolio_id == holding.portfolio_id and other.symbol == holding.symbol:
                raise ConflictError(f"holding for {holding.symbol} already exists")
        return self.table.put(holding)

    async def find_by_portfolio_and_symbol(
        self, portfolio_id: uuid.UUID, symbol: str, *, for_update: bool = False
    ) -> Holding | None:
        for holding in self.table.values():
            if holding.portfolio_id == portfolio_id and holding.symbol == symbol:
                return holding
        return None

    async def lock(self, portfolio_id: uuid.UUID, symbols: Iterable[str]) -> list[Holding]:
        wanted = set(symbols)
        rows = [h for h in self.table.values() if h.portfolio_id == portfolio_id and h.symbol in wanted]
        return sorted(rows, key=lambda h: h.symbol)

    async def list_for_portfolio(self, portfolio_id: uuid.UUID) -> list[Holding]:
        rows = [h for h in self.table.values() if h.portfolio_id == portfolio_id]
        return sorted(rows, key=lambda h: h.symbol)

    async def find_by_symbol(self, symbol: str) -> list[Holding]:
        return [h for h in self.table.values() if h.symbol == symbol and h.quantity > 0]


class MemoryTaxLotRepository(_Repository):
    @staticmethod
    def _sorted(rows: Iterable[TaxLot]) -> list[TaxLot]:
        return sorted(rows, key=lambda lot: (lot.symbol, lot.purchase_date, lot.sequence))

    async def find_by_portfolio_and_symbol(self, portfolio_id: uuid.UUID, symbol: str) -> list[TaxLot]:
        return self._sorted(
            lot for lot in self.table.values() if lot.portfolio_id == portfolio_id and lot.symbol == symbol
        )

    async def find_by_portfolio_and_symbols(
        self, portfolio_id: uuid.UUID, symbols: Iterable[str]
    ) -> list[TaxLot]:
        wanted = set(symbols)
        return self._sorted(
            lot for lot in self.table.values() if lot.portfolio_id == portfolio_id and lot.symbol in wanted
        )

    async def list_for_portfolio(self, portfolio_id: uuid.UUID) -> list[TaxLot]:
        return self._sorted(lot for lot in self.table.values() if lot.portfolio_id == portfolio_id)


class MemoryCorporateActionRepository(_Repository):
    async def find_by_symbol(self, symbol: str) -> list[CorporateAction]:
        return sorted((a for a in self.table.values() if a.symbol == symbol), key=lambda a: a.date)

    async def list_all(self) -> list[CorporateAction]:
        return sorted(self.table.values(), key=lambda a: (a.date, a.symbol))

    async def find_unapplied_corporate_actions(self) -> list[CorporateAction]:
        return sorted(
            (a for a in self.table.values() if not a.applied), key=lambda a: (a.date, a.created_at)
        )


class MemoryPortfolioActionRepository(_Repository):
    async def add(self, action: PortfolioAction) -> PortfolioAction:
        for other in self.table.values():
            if (
                other is not action
                and other.portfolio_id == action.portfolio_id
                and other.corporate_action_id == action.corporate_action_id
                and other.affected_symbol == action.affected_symbol
            ):
                raise ConflictError("action already suggested for this portfolio")
        return self.table.put(action)

    async def list_for_portfolio(
        self, portfolio_id: uuid.UUID, status: str | None = None
    ) -> list[PortfolioAction]:
        rows = [
            a
            for a in self.table.values()
            if a.portfolio_id == portfolio_id and (status is None or a.status == status)
        ]
        return sorted(rows, key=lambda a: a.detected_at)

    async def find_for_corporate_action(
        self, corporate_action_id: uuid.UUID, portfolio_id: uuid.UUID | None = None
    ) -> list[PortfolioAction]:
        rows = [
            a
            for a in self.table.values()
            if a.corporate_action_id == corporate_action_id
            and (portfolio_id is None or a.portfolio_id == portfolio_id)
        ]
        return sorted(rows, key=lambda a: a.detected_at)


class MemorySnapshotRepository(_Repository):
    def _for(self, portfolio_id: uuid.UUID) -> list[PerformanceSnapshot]:
        return sorted(
            (s for s in self.table.values() if s.portfolio_id == portfolio_id), key=lambda s: s.date
        )

    async def add(self, snapshot: PerformanceSnapshot) -> PerformanceSnapshot:
        for other in self._for(snapshot.portfolio_id):
            if other is not snapshot and other.date == snapshot.date:
                raise ConflictError(f"snapshot for {snapshot.date} already exists")
        return self.table.put(snapshot)

    async def find_by_date(self, portfolio_id: uuid.UUID, on: date) -> PerformanceSnapshot | None:
        for snapshot in self._for(portfolio_id):
            if snapshot.date == on:
                return snapshot
        return None

    async def find_latest_snapshot(
        self, portfolio_id: uuid.UUID, before: date | None = None
    ) -> PerformanceSnapshot | None:
        rows = [s for s in self._for(portfolio_id) if before is None or s.date < before]
        return rows[-1] if rows else None

    async def find_snapshots_in_range(
        self, portfolio_id: uuid.UUID, start: date | None, end: date | None
    ) -> list[PerformanceSnapshot]:
        return [
            s
            for s in self._for(portfolio_id)
            if (start is None or s.date >= start) and (end is None or s.date <= end)
        ]


class MemoryUnitOfWork:
    def __init__(self, store: "MemoryStore") -> None:
        tables = store.tables
        self.portfolios = MemoryPortfolioRepository(tables["portfolios"], store)
        self.transactions = MemoryTransactionRepository(tables["transactions"], store)
        self.holdings = MemoryHoldingRepository(tables["holdings"], store)
        self.lots = MemoryTaxLotRepository(tables["lots"], store)
        self.corporate_actions = MemoryCorporateActionRepository(tables["corporate_actions"], store)
        self.portfolio_actions = MemoryPortfolioActionRepository(tables["portfolio_actions"], store)
        self.snapshots = MemorySnapshotRepository(tables["snapshots"], store)

    async def flush(self) -> None:
        return None


class MemoryStore:
    """Dictionary-backed store with rollback on failed units."""

    def __init__(self) -> None:
        self.tables: dict[str, _Table] = {
            "portfolios": _Table(Portfolio),
            "transactions": _Table(Transaction),
            "holdings": _Table(Holding),
            "lots": _Table(TaxLot),
            "corporate_actions": _Table(CorporateAction),
            "portfolio_actions": _Table(PortfolioAction),
            "snapshots": _Table(PerformanceSnapshot),
        }

    @asynccontextmanager
    async def unit(self) -> AsyncIterator[MemoryUnitOfWork]:
        saved = {name: table.snapshot() for name, table in self.tables.items()}
        try:
            yield MemoryUnitOfWork(self)
        except BaseException:
            for name, table in self.tables.items():
                table.restore(saved[name])
            raise


__all__ = ["MemoryStore", "MemoryUnitOfWork"]
