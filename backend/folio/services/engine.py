"""Position engine: transactions in, holdings and tax lots out.

Every mutation follows the same path. The portfolio history is loaded inside
one unit, the change is added to it, the whole history is replayed through a
``PositionBook`` and the holdings and lots of the affected symbols are
rewritten from the replayed state. Domain errors (insufficient shares, an
unknown lot) are raised by the replay, before anything has been written.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping, NoReturn, Protocol

from sqlalchemy.exc import SQLAlchemyError

from folio.config import FolioSettings, get_settings
from folio.core.errors import ConflictError, FolioError, InternalError, NotFoundError, ValidationError
from folio.core.telemetry import record_transaction
from folio.models import Holding, Portfolio, TaxLot, Transaction, TransactionType
from folio.money import ONE, div, quantize
from folio.repositories.base import Store, UnitOfWork, get_owned_portfolio
from folio.services.book import LotState, PositionBook, RealizedGain, replay, symbol_family
from folio.services.payloads import TransactionInput, validate_transaction

logger = logging.getLogger(__name__)

STORAGE_PLACES = 8


class FxSource(Protocol):
    async def get_fx(self, from_currency: str, to_currency: str) -> Decimal: ...


@dataclass
class ApplyResult:
    transaction: Transaction
    holding: Holding | None
    gains: list[RealizedGain] = field(default_factory=list)

    @property
    def realized_gain(self) -> Decimal:
        return sum((gain.gain for gain in self.gains), Decimal("0"))


class PositionEngine:
    """Applies, revokes and replays transactions of owned portfolios."""

    def __init__(
        self,
        store: Store,
        market_data: FxSource | None = None,
        settings: FolioSettings | None = None,
    ) -> None:
        self.store = store
        self.market_data = market_data
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def apply_transaction(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        payload: TransactionInput | Mapping[str, Any],
    ) -> ApplyResult:
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            base_currency = portfolio.base_currency
            method = portfolio.method

        data = payload if isinstance(payload, TransactionInput) else TransactionInput.from_mapping(payload)
        data = validate_transaction(
            data,
            base_currency=base_currency,
            method=method,
            max_future_days=self.settings.max_future_days,
        )
        fx_rate = await self.fx_rate(data.currency, base_currency, data.fx_rate)

        transaction_id: uuid.UUID | None = None
        derivation_error: SQLAlchemyError | None = None
        try:
            async with self.store.unit() as uow:
                portfolio = await get_owned_portfolio(uow, portfolio_id, user_id, for_update=True)
                await uow.holdings.lock(portfolio.id, [data.symbol])
                history = await uow.transactions.list_for_portfolio(portfolio.id)
                sequence = await uow.transactions.next_sequence(portfolio.id)
                tx = data.to_transaction(portfolio.id, sequence=sequence, fx_rate=fx_rate)
                transaction_id = tx.id
                book, gains = self._replay(portfolio, [*history, tx])

                await uow.transactions.add(tx)
                await uow.flush()
                try:
                    family = symbol_family([*history, tx], [tx.symbol])
                    holdings = await self._write_positions(uow, portfolio, book, family)
                except SQLAlchemyError as exc:
                    derivation_error = exc
                    raise
        except (SQLAlchemyError, ConflictError) as exc:
            if derivation_error is None or transaction_id is None:
                if isinstance(exc, ConflictError):
                    raise
                logger.exception("Failed to record transaction for portfolio %s", portfolio_id)
                raise InternalError("failed to record transaction", causes=(exc,)) from exc
            await self._compensate(transaction_id, derivation_error)

        logger.info("Applied %s %s for portfolio %s", tx.type, tx.symbol, portfolio_id)
        record_transaction(tx.type, "apply")
        return ApplyResult(
            transaction=tx,
            holding=holdings.get(tx.symbol),
            gains=[gain for gain in gains if gain.transaction_id == tx.id],
        )

    async def revoke_transaction(self, user_id: str, transaction_id: uuid.UUID) -> None:
        """Delete a transaction and rebuild the positions it touched."""

        async with self.store.unit() as uow:
            tx, portfolio = await self._owned_transaction(uow, user_id, transaction_id, for_update=True)
            history = await uow.transactions.list_for_portfolio(portfolio.id)
            family = symbol_family(history, _touched(tx))
            await uow.transactions.delete(tx)
            await uow.flush()
            await self._rebuild(uow, portfolio, family)
        logger.info("Revoked %s %s for portfolio %s", tx.type, tx.symbol, portfolio.id)
        record_transaction(tx.type, "revoke")

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: uuid.UUID,
        changes: Mapping[str, Any],
    ) -> ApplyResult:
        """Edit a user transaction in place and replay the affected symbols."""

        async with self.store.unit() as uow:
            tx, portfolio = await self._owned_transaction(uow, user_id, transaction_id)
            base_currency = portfolio.base_currency
            method = portfolio.method
            current = TransactionInput.from_transaction(tx)

        if TransactionType(current.type).is_corporate_action:
            raise ValidationError("corporate action transactions cannot be edited")
        data = validate_transaction(
            current.with_changes(changes),
            base_currency=base_currency,
            method=method,
            max_future_days=self.settings.max_future_days,
        )
        if "fx_rate" not in changes and data.currency != current.currency:
            data.fx_rate = None
        fx_rate = await self.fx_rate(data.currency, base_currency, data.fx_rate)

        async with self.store.unit() as uow:
            tx, portfolio = await self._owned_transaction(uow, user_id, transaction_id, for_update=True)
            old_symbol = tx.symbol
            history = await uow.transactions.list_for_portfolio(portfolio.id)
            family = symbol_family(history, {old_symbol, data.symbol})
            await uow.holdings.lock(portfolio.id, family)

            tx.symbol = data.symbol
            tx.date = data.date
            tx.quantity = data.quantity
            tx.price = data.price
            tx.commission = data.commission
            tx.currency = data.currency
            tx.fx_rate = fx_rate
            tx.cash_amount = data.cash_amount
            tx.lot_ids = data.lot_ids
            tx.notes = data.notes
            await uow.flush()

            _, gains = await self._rebuild(uow, portfolio, family)
            holding = await uow.holdings.find_by_portfolio_and_symbol(portfolio.id, tx.symbol)

        logger.info("Updated %s %s for portfolio %s", tx.type, tx.symbol, portfolio.id)
        record_transaction(tx.type, "update")
        return ApplyResult(
            transaction=tx,
            holding=holding,
            gains=[gain for gain in gains if gain.transaction_id == tx.id],
        )

    async def recalculate(self, user_id: str, portfolio_id: uuid.UUID, symbol: str) -> Holding | None:
        """Rebuild one symbol (and its corporate-action relatives) from history."""

        symbol = symbol.strip().upper()
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id, for_update=True)
            await self._rebuild(uow, portfolio, [symbol])
            holding = await uow.holdings.find_by_portfolio_and_symbol(portfolio.id, symbol)
        logger.info("Recalculated %s for portfolio %s", symbol, portfolio_id)
        return holding

    async def recalculate_portfolio(self, user_id: str, portfolio_id: uuid.UUID) -> list[Holding]:
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id, for_update=True)
            symbols = await self._known_symbols(uow, portfolio.id)
            await self._rebuild(uow, portfolio, symbols)
            holdings = await uow.holdings.list_for_portfolio(portfolio.id)
        logger.info("Recalculated %d symbols for portfolio %s", len(symbols), portfolio_id)
        return holdings

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def list_transactions(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        *,
        symbol: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Transaction]:
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            return await uow.transactions.find_by_portfolio_symbol_daterange(
                portfolio.id, symbol.upper() if symbol else None, start, end
            )

    async def get_transaction(self, user_id: str, transaction_id: uuid.UUID) -> Transaction:
        async with self.store.unit() as uow:
            tx, _ = await self._owned_transaction(uow, user_id, transaction_id)
            return tx

    async def list_holdings(self, user_id: str, portfolio_id: uuid.UUID) -> list[Holding]:
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            return await uow.holdings.list_for_portfolio(portfolio.id)

    async def get_holding(self, user_id: str, portfolio_id: uuid.UUID, symbol: str) -> Holding:
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            holding = await uow.holdings.find_by_portfolio_and_symbol(portfolio.id, symbol.upper())
        if holding is None:
            raise NotFoundError(f"no holding found for symbol {symbol.upper()}")
        return holding

    async def list_tax_lots(
        self, user_id: str, portfolio_id: uuid.UUID, symbol: str | None = None
    ) -> list[TaxLot]:
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            if symbol:
                return await uow.lots.find_by_portfolio_and_symbol(portfolio.id, symbol.upper())
            return await uow.lots.list_for_portfolio(portfolio.id)

    # ------------------------------------------------------------------
    # Shared with the corporate-action applier and the importer
    # ------------------------------------------------------------------
    def replay_history(
        self, portfolio: Portfolio, history: Iterable[Transaction], *, until: date | None = None
    ) -> tuple[PositionBook, list[RealizedGain]]:
        return self._replay(portfolio, history, until=until)

    async def rebuild(
        self, uow: UnitOfWork, portfolio: Portfolio, symbols: Iterable[str]
    ) -> tuple[PositionBook, list[RealizedGain]]:
        return await self._rebuild(uow, portfolio, symbols)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _replay(
        self, portfolio: Portfolio, history: Iterable[Transaction], *, until: date | None = None
    ) -> tuple[PositionBook, list[RealizedGain]]:
        return replay(
            history,
            method=portfolio.method,
            spinoff_cost_allocation=self.settings.spinoff_cost_allocation,
            until=until,
        )

    async def _rebuild(
        self, uow: UnitOfWork, portfolio: Portfolio, symbols: Iterable[str]
    ) -> tuple[PositionBook, list[RealizedGain]]:
        history = await uow.transactions.list_for_portfolio(portfolio.id)
        family = symbol_family(history, symbols)
        await uow.holdings.lock(portfolio.id, family)
        book, gains = self._replay(portfolio, history)
        await self._write_positions(uow, portfolio, book, family)
        return book, gains

    async def _write_positions(
        self,
        uow: UnitOfWork,
        portfolio: Portfolio,
        book: PositionBook,
        symbols: Iterable[str],
    ) -> dict[str, Holding]:
        """Make the stored lots and holdings of ``symbols`` match ``book``."""

        family = set(symbols)
        desired: dict[uuid.UUID, LotState] = {}
        for symbol in family:
            for lot in book.lots(symbol):
                quantity = quantize(lot.quantity, STORAGE_PLACES)
                if quantity > 0:
                    desired[lot.id] = LotState(
                        id=lot.id,
                        symbol=lot.symbol,
                        purchase_date=lot.purchase_date,
                        quantity=quantity,
                        cost_basis=quantize(lot.cost_basis, STORAGE_PLACES),
                        transaction_id=lot.transaction_id,
                        sequence=lot.sequence,
                    )

        stored = {lot.id: lot for lot in await uow.lots.find_by_portfolio_and_symbols(portfolio.id, family)}
        for lot_id, row in stored.items():
            if lot_id not in desired:
                await uow.lots.delete(row)
        await uow.flush()

        for lot_id, state in desired.items():
            row = stored.get(lot_id) or await uow.lots.get(lot_id)
            if row is None:
                await uow.lots.add(
                    TaxLot(
                        id=state.id,
                        portfolio_id=portfolio.id,
                        symbol=state.symbol,
                        purchase_date=state.purchase_date,
                        quantity=state.quantity,
                        cost_basis=state.cost_basis,
                        transaction_id=state.transaction_id,
                        sequence=state.sequence,
                    )
                )
                continue
            row.symbol = state.symbol
            row.purchase_date = state.purchase_date
            row.quantity = state.quantity
            row.cost_basis = state.cost_basis
            row.transaction_id = state.transaction_id
            row.sequence = state.sequence

        totals: dict[str, tuple[Decimal, Decimal]] = {}
        for state in desired.values():
            quantity, cost = totals.get(state.symbol, (Decimal("0"), Decimal("0")))
            totals[state.symbol] = (quantity + state.quantity, cost + state.cost_basis)

        existing = {holding.symbol: holding for holding in await uow.holdings.lock(portfolio.id, family)}
        result: dict[str, Holding] = {}
        for symbol in sorted(family):
            holding = existing.get(symbol)
            quantity, cost = totals.get(symbol, (Decimal("0"), Decimal("0")))
            if quantity <= 0:
                if holding is not None:
                    await uow.holdings.delete(holding)
                continue
            average = quantize(div(cost, quantity), STORAGE_PLACES)
            if holding is None:
                holding = await uow.holdings.add(
                    Holding(
                        portfolio_id=portfolio.id,
                        symbol=symbol,
                        quantity=quantity,
                        cost_basis=cost,
                        average_cost=average,
                    )
                )
            else:
                holding.quantity = quantity
                holding.cost_basis = cost
                holding.average_cost = average
            result[symbol] = holding
        await uow.flush()
        return result

    async def _compensate(self, transaction_id: uuid.UUID, cause: BaseException) -> NoReturn:
        """Remove a transaction whose positions could not be derived, then raise."""

        logger.error("Deriving holdings failed for transaction %s: %s", transaction_id, cause)
        try:
            async with self.store.unit() as uow:
                await uow.transactions.delete_by_id(transaction_id)
        except (SQLAlchemyError, FolioError) as exc:
            logger.exception("Compensating delete of transaction %s failed", transaction_id)
            raise InternalError(
                f"failed to derive holdings for transaction {transaction_id}; compensation failed",
                causes=(cause, exc),
            ) from exc
        raise InternalError(
            f"failed to derive holdings for transaction {transaction_id}", causes=(cause,)
        ) from cause

    async def fx_rate(self, currency: str, base_currency: str, explicit: Decimal | None = None) -> Decimal:
        """Rate converting ``currency`` into ``base_currency`` at transaction time."""

        if currency == base_currency:
            return ONE
        if explicit is not None:
            return explicit
        if self.market_data is None:
            raise ValidationError(f"an fx rate is required to convert {currency} into {base_currency}")
        rate = await self.market_data.get_fx(currency, base_currency)
        if rate <= 0:
            raise ValidationError(f"invalid fx rate {rate} for {currency}/{base_currency}")
        return rate

    @staticmethod
    async def _owned_transaction(
        uow: UnitOfWork, user_id: str, transaction_id: uuid.UUID, *, for_update: bool = False
    ) -> tuple[Transaction, Portfolio]:
        tx = await uow.transactions.get(transaction_id)
        if tx is None:
            raise NotFoundError(f"transaction {transaction_id} not found")
        portfolio = await get_owned_portfolio(uow, tx.portfolio_id, user_id, for_update=for_update)
        return tx, portfolio

    @staticmethod
    async def _known_symbols(uow: UnitOfWork, portfolio_id: uuid.UUID) -> set[str]:
        symbols = {tx.symbol for tx in await uow.transactions.list_for_portfolio(portfolio_id)}
        symbols.update(holding.symbol for holding in await uow.holdings.list_for_portfolio(portfolio_id))
        symbols.update(lot.symbol for lot in await uow.lots.list_for_portfolio(portfolio_id))
        return symbols


def _touched(tx: Transaction) -> set[str]:
    symbols = {tx.symbol}
    if tx.related_symbol:
        symbols.add(tx.related_symbol)
    return symbols


__all__ = ["ApplyResult", "FxSource", "PositionEngine", "STORAGE_PLACES"]
