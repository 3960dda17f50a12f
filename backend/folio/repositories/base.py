"""Repository capabilities used by the services.

Services only talk to these protocols. ``SqlStore`` implements them over an
async SQLAlchemy session and ``MemoryStore`` keeps everything in dictionaries
for tests and offline tooling. A ``Store.unit()`` block is one database
transaction: it commits when the block exits normally and rolls back when it
raises.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import AsyncContextManager, Iterable, Protocol, Sequence

from folio.core.errors import NotFoundError, UnauthorizedError
from folio.models import (
    CorporateAction,
    Holding,
    PerformanceSnapshot,
    Portfolio,
    PortfolioAction,
    TaxLot,
    Transaction,
)


@dataclass(frozen=True)
class ImportBatch:
    batch_id: uuid.UUID
    transaction_count: int
    first_date: date
    last_date: date
    created_at: datetime


class PortfolioRepository(Protocol):
    async def add(self, portfolio: Portfolio) -> Portfolio: ...

    async def get(self, portfolio_id: uuid.UUID, *, for_update: bool = False) -> Portfolio | None: ...

    async def find_by_owner_and_name(self, user_id: str, name: str) -> Portfolio | None: ...

    async def list_by_owner(self, user_id: str) -> list[Portfolio]: ...

    async def list_all(self) -> list[Portfolio]: ...

    async def delete(self, portfolio: Portfolio) -> None: ...


class TransactionRepository(Protocol):
    async def add(self, transaction: Transaction) -> Transaction: ...

    async def get(self, transaction_id: uuid.UUID) -> Transaction | None: ...

    async def list_for_portfolio(self, portfolio_id: uuid.UUID) -> list[Transaction]: ...

    async def find_by_portfolio_and_symbol(self, portfolio_id: uuid.UUID, symbol: str) -> list[Transaction]: ...

    async def find_by_portfolio_symbol_daterange(
        self,
        portfolio_id: uuid.UUID,
        symbol: str | None,
        start: date | None,
        end: date | None,
        types: Sequence[str] | None = None,
    ) -> list[Transaction]: ...

    async def find_by_batch(self, portfolio_id: uuid.UUID, batch_id: uuid.UUID) -> list[Transaction]: ...

    async def list_batches(self, portfolio_id: uuid.UUID) -> list[ImportBatch]: ...

    async def next_sequence(self, portfolio_id: uuid.UUID) -> int: ...

    async def rename_symbol(self, portfolio_id: uuid.UUID, old_symbol: str, new_symbol: str) -> int: ...

    async def delete(self, transaction: Transaction) -> None: ...

    async def delete_by_id(self, transaction_id: uuid.UUID) -> bool: ...


class HoldingRepository(Protocol):
    async def add(self, holding: Holding) -> Holding: ...

    async def find_by_portfolio_and_symbol(
        self, portfolio_id: uuid.UUID, symbol: str, *, for_update: bool = False
    ) -> Holding | None: ...

    async def lock(self, portfolio_id: uuid.UUID, symbols: Iterable[str]) -> list[Holding]: ...

    async def list_for_portfolio(self, portfolio_id: uuid.UUID) -> list[Holding]: ...

    async def find_by_symbol(self, symbol: str) -> list[Holding]: ...

    async def delete(self, holding: Holding) -> None: ...


class TaxLotRepository(Protocol):
    async def add(self, lot: TaxLot) -> TaxLot: ...

    async def get(self, lot_id: uuid.UUID) -> TaxLot | None: ...

    async def find_by_portfolio_and_symbol(self, portfolio_id: uuid.UUID, symbol: str) -> list[TaxLot]: ...

    async def find_by_portfolio_and_symbols(
        self, portfolio_id: uuid.UUID, symbols: Iterable[str]
    ) -> list[TaxLot]: ...

    async def list_for_portfolio(self, portfolio_id: uuid.UUID) -> list[TaxLot]: ...

    async def delete(self, lot: TaxLot) -> None: ...


class CorporateActionRepository(Protocol):
    async def add(self, action: CorporateAction) -> CorporateAction: ...

    async def get(self, action_id: uuid.UUID) -> CorporateAction | None: ...

    async def find_by_symbol(self, symbol: str) -> list[CorporateAction]: ...

    async def list_all(self) -> list[CorporateAction]: ...

    async def find_unapplied_corporate_actions(self) -> list[CorporateAction]: ...


class PortfolioActionRepository(Protocol):
    async def add(self, action: PortfolioAction) -> PortfolioAction: ...

    async def get(self, action_id: uuid.UUID) -> PortfolioAction | None: ...

    async def list_for_portfolio(
        self, portfolio_id: uuid.UUID, status: str | None = None
    ) -> list[PortfolioAction]: ...

    async def find_for_corporate_action(
        self, corporate_action_id: uuid.UUID, portfolio_id: uuid.UUID | None = None
    ) -> list[PortfolioAction]: ...


class SnapshotRepository(Protocol):
    async def add(self, snapshot: PerformanceSnapshot) -> PerformanceSnapshot: ...

    async def find_by_date(self, portfolio_id: uuid.UUID, on: date) -> PerformanceSnapshot | None: ...

    async def find_latest_snapshot(
        self, portfolio_id: uuid.UUID, before: date | None = None
    ) -> PerformanceSnapshot | None: ...

    async def find_snapshots_in_range(
        self, portfolio_id: uuid.UUID, start: date | None, end: date | None
    ) -> list[PerformanceSnapshot]: ...


class UnitOfWork(Protocol):
    portfolios: PortfolioRepository
    transactions: TransactionRepository
    holdings: HoldingRepository
    lots: TaxLotRepository
    corporate_actions: CorporateActionRepository
    portfolio_actions: PortfolioActionRepository
    snapshots: SnapshotRepository

    async def flush(self) -> None: ...


class Store(Protocol):
    def unit(self) -> AsyncContextManager[UnitOfWork]: ...


async def get_owned_portfolio(
    uow: UnitOfWork, portfolio_id: uuid.UUID, user_id: str, *, for_update: bool = False
) -> Portfolio:
    """Load a portfolio and check that ``user_id`` owns it.

    Mutations pass ``for_update`` so that writers of one portfolio take its row
    lock first and run one after another; sequence numbers and holdings are
    derived from the history they read under that lock.
    """

    portfolio = await uow.portfolios.get(portfolio_id, for_update=for_update)
    if portfolio is None:
        raise NotFoundError(f"portfolio {portfolio_id} not found")
    if portfolio.user_id != user_id:
        raise UnauthorizedError("portfolio belongs to another user")
    return portfolio


__all__ = [
    "CorporateActionRepository",
    "HoldingRepository",
    "ImportBatch",
    "PortfolioActionRepository",
    "PortfolioRepository",
    "SnapshotRepository",
    "Store",
    "TaxLotRepository",
    "TransactionRepository",
    "UnitOfWork",
    "get_owned_portfolio",
]
