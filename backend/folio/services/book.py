"""In-memory position book.

The book is the pure state machine behind the position engine: it owns the
open tax lots of one portfolio, derives holdings from them, and applies
transactions one at a time. It performs no I/O. The engine loads a history,
replays it through a book and writes the resulting lots and holdings back to
the store, so applying transactions one by one and recalculating from scratch
go through exactly the same code.

Lot identifiers are derived from the transaction that created the lot (and,
for lots produced by a merger or spinoff, from the source lot as well), which
keeps them stable across replays. Specific-lot selections stored on sells stay
valid after a recalculation.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence

from folio.core.errors import InsufficientSharesError, NotFoundError, ValidationError
from folio.models import CostBasisMethod, Transaction, TransactionType
from folio.money import ZERO, div
from folio.services.allocator import allocate, slice_cost_basis

LOT_NAMESPACE = uuid.UUID("6f1d0b8e-4c57-4d0c-9a44-2f7c3c1e9b10")
DEFAULT_SPINOFF_ALLOCATION = Decimal("0.10")


def lot_id_for(transaction_id: uuid.UUID, source_lot_id: uuid.UUID | None = None) -> uuid.UUID:
    name = str(transaction_id) if source_lot_id is None else f"{transaction_id}:{source_lot_id}"
    return uuid.uuid5(LOT_NAMESPACE, name)


@dataclass
class LotState:
    id: uuid.UUID
    symbol: str
    purchase_date: date
    quantity: Decimal
    cost_basis: Decimal
    transaction_id: uuid.UUID
    sequence: int

    @property
    def cost_per_share(self) -> Decimal:
        return div(self.cost_basis, self.quantity) if self.quantity else ZERO


@dataclass(frozen=True)
class HoldingState:
    symbol: str
    quantity: Decimal
    cost_basis: Decimal

    @property
    def average_cost(self) -> Decimal:
        if self.quantity <= 0:
            return ZERO
        return div(self.cost_basis, self.quantity)


@dataclass(frozen=True)
class RealizedGain:
    transaction_id: uuid.UUID
    symbol: str
    lot_id: uuid.UUID
    purchase_date: date
    sale_date: date
    quantity: Decimal
    cost_basis: Decimal
    proceeds: Decimal
    is_long_term: bool

    @property
    def gain(self) -> Decimal:
        return self.proceeds - self.cost_basis


@dataclass
class CorporateOutcome:
    """Share counts before and after a corporate-action transformation."""

    symbol: str
    old_quantity: Decimal
    new_quantity: Decimal
    transferred_cost: Decimal = ZERO


@dataclass
class PositionBook:
    method: CostBasisMethod = CostBasisMethod.FIFO
    spinoff_cost_allocation: Decimal = DEFAULT_SPINOFF_ALLOCATION
    _lots: dict[str, list[LotState]] = field(default_factory=lambda: defaultdict(list))

    @classmethod
    def from_lots(cls, lots: Iterable[LotState], **options) -> "PositionBook":
        book = cls(**options)
        for lot in lots:
            book._lots[lot.symbol].append(lot)
        return book

    def lots(self, symbol: str | None = None) -> list[LotState]:
        if symbol is None:
            return [lot for sym in sorted(self._lots) for lot in self._lots[sym]]
        return list(self._lots.get(symbol, []))

    def symbols(self) -> list[str]:
        return sorted(sym for sym, lots in self._lots.items() if lots)

    def holding(self, symbol: str) -> HoldingState | None:
        lots = self._lots.get(symbol)
        if not lots:
            return None
        quantity = sum((lot.quantity for lot in lots), ZERO)
        cost_basis = sum((lot.cost_basis for lot in lots), ZERO)
        return HoldingState(symbol=symbol, quantity=quantity, cost_basis=cost_basis)

    def holdings(self) -> dict[str, HoldingState]:
        result = {}
        for symbol in self.symbols():
            state = self.holding(symbol)
            if state is not None:
                result[symbol] = state
        return result

    def quantity(self, symbol: str) -> Decimal:
        state = self.holding(symbol)
        return state.quantity if state else ZERO

    def apply(self, tx: Transaction) -> list[RealizedGain]:
        """Apply one transaction; returns the gains realized by a sale."""

        kind = TransactionType(tx.type)
        if kind.is_buy:
            self.buy(tx)
            return []
        if kind is TransactionType.SELL:
            return self.sell(tx)
        if kind is TransactionType.DIVIDEND:
            return []
        if kind is TransactionType.SPLIT:
            self.split(tx.symbol, _required(tx.ratio, "split ratio"))
            return []
        if kind is TransactionType.MERGER:
            self.merge(
                _required(tx.related_symbol, "merger source symbol"),
                tx.symbol,
                _required(tx.ratio, "merger ratio"),
                action_id=tx.id,
            )
            return []
        if kind is TransactionType.SPINOFF:
            self.spin_off(
                _required(tx.related_symbol, "spinoff parent symbol"),
                tx.symbol,
                _required(tx.ratio, "spinoff ratio"),
                tx.cost_allocation,
                action_id=tx.id,
            )
            return []
        if kind is TransactionType.TICKER_CHANGE:
            if tx.related_symbol:
                self.rename(tx.related_symbol, tx.symbol)
            return []
        raise ValidationError(f"unsupported transaction type {tx.type}")

    def buy(self, tx: Transaction) -> LotState:
        lot = LotState(
            id=lot_id_for(tx.id),
            symbol=tx.symbol,
            purchase_date=tx.date,
            quantity=tx.quantity,
            cost_basis=tx.base_total_cost,
            transaction_id=tx.id,
            sequence=tx.sequence,
        )
        self._lots[tx.symbol].append(lot)
        return lot

    def sell(self, tx: Transaction) -> list[RealizedGain]:
        lots = self._lots.get(tx.symbol, [])
        available = sum((lot.quantity for lot in lots), ZERO)
        if available < tx.quantity:
            raise InsufficientSharesError(tx.symbol, tx.quantity, available)
        if tx.lot_ids:
            method = CostBasisMethod.SPECIFIC_LOT
        elif self.method is CostBasisMethod.SPECIFIC_LOT:
            # No explicit selection recorded on the sale: consume oldest first.
            method = CostBasisMethod.FIFO
        else:
            method = self.method
        allocations = allocate(lots, tx.quantity, method, sale_date=tx.date, lot_ids=tx.lot_ids)

        total_proceeds = tx.base_proceeds
        gains: list[RealizedGain] = []
        assigned = ZERO
        for index, allocation in enumerate(allocations):
            if index == len(allocations) - 1:
                proceeds = total_proceeds - assigned
            else:
                proceeds = div(total_proceeds * allocation.quantity, tx.quantity)
            assigned += proceeds
            lot = allocation.lot
            gains.append(
                RealizedGain(
                    transaction_id=tx.id,
                    symbol=tx.symbol,
                    lot_id=lot.id,
                    purchase_date=lot.purchase_date,
                    sale_date=tx.date,
                    quantity=allocation.quantity,
                    cost_basis=allocation.cost_basis,
                    proceeds=proceeds,
                    is_long_term=allocation.is_long_term,
                )
            )
            self._reduce(lot, allocation.quantity, allocation.cost_basis)  # type: ignore[arg-type]
        return gains

    def _reduce(self, lot: LotState, quantity: Decimal, cost_basis: Decimal) -> None:
        if quantity >= lot.quantity:
            self._lots[lot.symbol].remove(lot)
            return
        lot.quantity -= quantity
        lot.cost_basis -= cost_basis

    def require(self, symbol: str) -> HoldingState:
        state = self.holding(symbol)
        if state is None:
            raise NotFoundError(f"no holding found for symbol {symbol}")
        return state

    def split(self, symbol: str, ratio: Decimal) -> CorporateOutcome:
        if ratio <= 0:
            raise ValidationError("split ratio must be positive")
        before = self.require(symbol)
        for lot in self._lots[symbol]:
            lot.quantity = lot.quantity * ratio
        after = self.require(symbol)
        return CorporateOutcome(symbol, before.quantity, after.quantity)

    def merge(self, old_symbol: str, new_symbol: str, ratio: Decimal, *, action_id: uuid.UUID) -> CorporateOutcome:
        if ratio <= 0:
            raise ValidationError("merger ratio must be positive")
        if old_symbol == new_symbol:
            raise ValidationError("merger must change the symbol")
        before = self.require(old_symbol)
        moved = self._lots.pop(old_symbol)
        for lot in moved:
            self._lots[new_symbol].append(
                LotState(
                    id=lot_id_for(action_id, lot.id),
                    symbol=new_symbol,
                    purchase_date=lot.purchase_date,
                    quantity=lot.quantity * ratio,
                    cost_basis=lot.cost_basis,
                    transaction_id=lot.transaction_id,
                    sequence=lot.sequence,
                )
            )
        return CorporateOutcome(
            new_symbol, before.quantity, before.quantity * ratio, transferred_cost=before.cost_basis
        )

    def spin_off(
        self,
        parent: str,
        child: str,
        ratio: Decimal,
        cost_allocation: Decimal | None = None,
        *,
        action_id: uuid.UUID,
    ) -> CorporateOutcome:
        """Distribute ``ratio`` child shares per parent share.

        The child receives ``cost_allocation`` of the parent's cost basis,
        spread over the parent lots in proportion to their share counts. If
        that would push any parent lot below zero cost, each lot contributes
        ``cost_allocation`` of its own cost instead.
        """

        alpha = self.spinoff_cost_allocation if cost_allocation is None else cost_allocation
        if ratio <= 0:
            raise ValidationError("spinoff ratio must be positive")
        if not (0 < alpha < 1):
            raise ValidationError("spinoff cost allocation must be between 0 and 1")
        if parent == child:
            raise ValidationError("spinoff child must differ from the parent")
        before = self.require(parent)
        child_cost = before.cost_basis * alpha
        parent_lots = self._lots[parent]

        transfers = [
            div(child_cost * lot.quantity, before.quantity) for lot in parent_lots
        ]
        if any(transfer > lot.cost_basis for transfer, lot in zip(transfers, parent_lots)):
            transfers = [lot.cost_basis * alpha for lot in parent_lots]
        transfers[-1] = child_cost - sum(transfers[:-1], ZERO)

        for lot, transfer in zip(parent_lots, transfers):
            self._lots[child].append(
                LotState(
                    id=lot_id_for(action_id, lot.id),
                    symbol=child,
                    purchase_date=lot.purchase_date,
                    quantity=lot.quantity * ratio,
                    cost_basis=transfer,
                    transaction_id=lot.transaction_id,
                    sequence=lot.sequence,
                )
            )
            lot.cost_basis -= transfer
        return CorporateOutcome(child, before.quantity, before.quantity * ratio, transferred_cost=child_cost)

    def rename(self, old_symbol: str, new_symbol: str) -> CorporateOutcome:
        lots = self._lots.pop(old_symbol, [])
        quantity = sum((lot.quantity for lot in lots), ZERO)
        for lot in lots:
            lot.symbol = new_symbol
            self._lots[new_symbol].append(lot)
        return CorporateOutcome(new_symbol, quantity, quantity)

    def preview_sale(
        self,
        symbol: str,
        quantity: Decimal,
        sale_date: date,
        *,
        lot_ids: Sequence[uuid.UUID | str] | None = None,
    ):
        """Allocation a sale would use, without consuming anything."""

        method = CostBasisMethod.SPECIFIC_LOT if lot_ids else self.method
        if method is CostBasisMethod.SPECIFIC_LOT and not lot_ids:
            method = CostBasisMethod.FIFO
        lots = self._lots.get(symbol, [])
        available = sum((lot.quantity for lot in lots), ZERO)
        if available < quantity:
            raise InsufficientSharesError(symbol, quantity, available)
        return allocate(lots, quantity, method, sale_date=sale_date, lot_ids=lot_ids)


def _required(value, label: str):
    if value is None or value == "":
        raise ValidationError(f"{label} is required")
    return value


def history_key(tx: Transaction) -> tuple[date, int]:
    return (tx.date, tx.sequence)


def replay(
    transactions: Iterable[Transaction],
    *,
    method: CostBasisMethod = CostBasisMethod.FIFO,
    spinoff_cost_allocation: Decimal = DEFAULT_SPINOFF_ALLOCATION,
    until: date | None = None,
) -> tuple[PositionBook, list[RealizedGain]]:
    """Rebuild a book from scratch by applying ``transactions`` in date order.

    Ties on the trade date are broken by the insertion sequence. When
    ``until`` is given only transactions dated on or before it are applied.
    """

    book = PositionBook(method=method, spinoff_cost_allocation=spinoff_cost_allocation)
    gains: list[RealizedGain] = []
    for tx in sorted(transactions, key=history_key):
        if until is not None and tx.date > until:
            continue
        gains.extend(book.apply(tx))
    return book, gains


def symbol_family(transactions: Iterable[Transaction], symbols: Iterable[str]) -> set[str]:
    """Symbols linked to ``symbols`` through merger, spinoff or ticker-change history."""

    links: dict[str, set[str]] = defaultdict(set)
    for tx in transactions:
        if tx.related_symbol and TransactionType(tx.type).is_corporate_action:
            links[tx.symbol].add(tx.related_symbol)
            links[tx.related_symbol].add(tx.symbol)
    family = set(symbols)
    frontier = list(family)
    while frontier:
        current = frontier.pop()
        for linked in links.get(current, ()):
            if linked not in family:
                family.add(linked)
                frontier.append(linked)
    return family


__all__ = [
    "CorporateOutcome",
    "DEFAULT_SPINOFF_ALLOCATION",
    "HoldingState",
    "LotState",
    "PositionBook",
    "RealizedGain",
    "history_key",
    "lot_id_for",
    "replay",
    "slice_cost_basis",
    "symbol_family",
]
