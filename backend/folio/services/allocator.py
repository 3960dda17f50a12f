"""Cost-basis allocation of a sale against open tax lots.

The allocator never mutates the lots it is given; it only decides which lots
a sale consumes, in which order, and how much cost basis each slice carries.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Protocol, Sequence

from folio.core.errors import InsufficientSharesError, SpecificLotUnknownError, ValidationError
from folio.models.enums import CostBasisMethod
from folio.money import div

LONG_TERM_DAYS = 365


class LotLike(Protocol):
    id: uuid.UUID
    symbol: str
    purchase_date: date
    quantity: Decimal
    cost_basis: Decimal
    sequence: int


@dataclass(frozen=True)
class Allocation:
    lot: LotLike
    quantity: Decimal
    cost_basis: Decimal
    is_long_term: bool

    @property
    def lot_id(self) -> uuid.UUID:
        return self.lot.id


def is_long_term(purchase_date: date, sale_date: date) -> bool:
    """Holding period of at least 365 days, counted inclusively."""

    return (sale_date - purchase_date).days >= LONG_TERM_DAYS


def order_lots(lots: Iterable[LotLike], method: CostBasisMethod) -> list[LotLike]:
    key = lambda lot: (lot.purchase_date, lot.sequence, str(lot.id))  # noqa: E731
    if method is CostBasisMethod.LIFO:
        return sorted(lots, key=key, reverse=True)
    return sorted(lots, key=key)


def _select_specific(lots: Sequence[LotLike], lot_ids: Sequence[uuid.UUID | str]) -> list[LotLike]:
    by_id = {str(lot.id): lot for lot in lots}
    selected: list[LotLike] = []
    seen: set[str] = set()
    for raw in lot_ids:
        key = str(raw)
        if key in seen:
            continue
        lot = by_id.get(key)
        if lot is None:
            raise SpecificLotUnknownError(f"tax lot {key} is not an open lot of this position")
        seen.add(key)
        selected.append(lot)
    return selected


def slice_cost_basis(lot: LotLike, quantity: Decimal) -> Decimal:
    """Cost basis carried by ``quantity`` shares of ``lot``."""

    if quantity == lot.quantity:
        return lot.cost_basis
    return div(lot.cost_basis * quantity, lot.quantity)


def allocate(
    lots: Iterable[LotLike],
    quantity: Decimal,
    method: CostBasisMethod | str,
    *,
    sale_date: date,
    lot_ids: Sequence[uuid.UUID | str] | None = None,
) -> list[Allocation]:
    """Allocate ``quantity`` shares against ``lots`` following ``method``.

    Returns allocations whose quantities sum to ``quantity``. Raises
    ``InsufficientSharesError`` when the open lots cannot cover the sale and
    ``SpecificLotUnknownError`` when a requested lot is unknown or the chosen
    lots are too small.
    """

    method = CostBasisMethod(method)
    if quantity <= 0:
        raise ValidationError("quantity to allocate must be positive")
    candidates = [lot for lot in lots if lot.quantity > 0]
    available = sum((lot.quantity for lot in candidates), Decimal("0"))
    symbol = candidates[0].symbol if candidates else ""

    if method is CostBasisMethod.SPECIFIC_LOT:
        if not lot_ids:
            raise SpecificLotUnknownError("specific lot allocation requires at least one lot id")
        ordered = _select_specific(candidates, lot_ids)
        selected = sum((lot.quantity for lot in ordered), Decimal("0"))
        if selected < quantity:
            raise SpecificLotUnknownError(
                f"selected lots hold {selected} shares, {quantity} requested"
            )
    else:
        if available < quantity:
            raise InsufficientSharesError(symbol, quantity, available)
        ordered = order_lots(candidates, method)

    allocations: list[Allocation] = []
    remaining = quantity
    for lot in ordered:
        if remaining <= 0:
            break
        take = min(lot.quantity, remaining)
        allocations.append(
            Allocation(
                lot=lot,
                quantity=take,
                cost_basis=slice_cost_basis(lot, take),
                is_long_term=is_long_term(lot.purchase_date, sale_date),
            )
        )
        remaining -= take
    return allocations


__all__ = [
    "Allocation",
    "LONG_TERM_DAYS",
    "allocate",
    "is_long_term",
    "order_lots",
    "slice_cost_basis",
]
