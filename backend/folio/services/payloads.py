"""User-entered transaction payloads and their validation rules."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Mapping

from folio.core.errors import ValidationError
from folio.models import CostBasisMethod, Transaction, TransactionType
from folio.money import ZERO, to_decimal

USER_TRANSACTION_TYPES = frozenset(
    {
        TransactionType.BUY,
        TransactionType.SELL,
        TransactionType.DIVIDEND,
        TransactionType.DIVIDEND_REINVEST,
    }
)

EDITABLE_FIELDS = (
    "symbol",
    "date",
    "quantity",
    "price",
    "commission",
    "currency",
    "fx_rate",
    "cash_amount",
    "lot_ids",
    "notes",
)


def parse_type(value: Any) -> TransactionType:
    if isinstance(value, TransactionType):
        return value
    try:
        return TransactionType(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"unknown transaction type: {value!r}") from exc


def parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as exc:
            raise ValidationError(f"invalid date: {value!r}") from exc
    raise ValidationError("transaction date is required")


def _optional_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return to_decimal(value)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass
class TransactionInput:
    type: TransactionType
    symbol: str
    date: date
    quantity: Decimal = ZERO
    price: Decimal | None = None
    commission: Decimal = ZERO
    currency: str | None = None
    fx_rate: Decimal | None = None
    cash_amount: Decimal | None = None
    lot_ids: list[str] | None = None
    notes: str | None = None
    import_batch_id: uuid.UUID | None = field(default=None, compare=False)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TransactionInput":
        lot_ids = data.get("lot_ids")
        return cls(
            type=parse_type(data.get("type")),
            symbol=str(data.get("symbol") or ""),
            date=parse_date(data.get("date")),
            quantity=to_decimal(data.get("quantity"), default=ZERO),
            price=_optional_decimal(data.get("price")),
            commission=to_decimal(data.get("commission"), default=ZERO),
            currency=data.get("currency") or None,
            fx_rate=_optional_decimal(data.get("fx_rate")),
            cash_amount=_optional_decimal(data.get("cash_amount")),
            lot_ids=[str(item) for item in lot_ids] if lot_ids else None,
            notes=data.get("notes") or None,
            import_batch_id=data.get("import_batch_id"),
        )

    @classmethod
    def from_transaction(cls, tx: Transaction) -> "TransactionInput":
        return cls(
            type=parse_type(tx.type),
            symbol=tx.symbol,
            date=tx.date,
            quantity=tx.quantity,
            price=tx.price,
            commission=tx.commission,
            currency=tx.currency,
            fx_rate=tx.fx_rate,
            cash_amount=tx.cash_amount,
            lot_ids=list(tx.lot_ids) if tx.lot_ids else None,
            notes=tx.notes,
            import_batch_id=tx.import_batch_id,
        )

    def with_changes(self, changes: Mapping[str, Any]) -> "TransactionInput":
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"fields cannot be changed: {', '.join(sorted(unknown))}")
        merged = {
            "type": self.type,
            "symbol": self.symbol,
            "date": self.date,
            "quantity": self.quantity,
            "price": self.price,
            "commission": self.commission,
            "currency": self.currency,
            "fx_rate": self.fx_rate,
            "cash_amount": self.cash_amount,
            "lot_ids": self.lot_ids,
            "notes": self.notes,
            "import_batch_id": self.import_batch_id,
        }
        merged.update(changes)
        return TransactionInput.from_mapping(merged)

    def to_transaction(self, portfolio_id: uuid.UUID, *, sequence: int, fx_rate: Decimal) -> Transaction:
        return Transaction(
            id=uuid.uuid4(),
            portfolio_id=portfolio_id,
            sequence=sequence,
            type=self.type.value,
            symbol=self.symbol,
            date=self.date,
            quantity=self.quantity,
            price=self.price,
            commission=self.commission,
            currency=self.currency,
            fx_rate=fx_rate,
            cash_amount=self.cash_amount,
            lot_ids=self.lot_ids,
            notes=self.notes,
            import_batch_id=self.import_batch_id,
        )


def validate_transaction(
    data: TransactionInput,
    *,
    base_currency: str,
    method: CostBasisMethod,
    today: date | None = None,
    max_future_days: int = 1,
) -> TransactionInput:
    """Check the field rules of a user transaction and return it normalised.

    Symbols and currencies are upper-cased, a missing currency defaults to the
    portfolio base currency and a dividend's cash amount is derived from
    quantity and price when only those are given.
    """

    kind = data.type
    if kind not in USER_TRANSACTION_TYPES:
        raise ValidationError(f"{kind.value} transactions are created by corporate actions only")

    symbol = data.symbol.strip().upper()
    if not symbol:
        raise ValidationError("symbol is required")

    today = today or utc_today()
    if data.date > today + timedelta(days=max_future_days):
        raise ValidationError(f"transaction date {data.date} is in the future")

    if data.commission < 0:
        raise ValidationError("commission must not be negative")

    currency = (data.currency or base_currency).strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValidationError(f"invalid currency code: {currency!r}")

    if data.fx_rate is not None and data.fx_rate <= 0:
        raise ValidationError("fx rate must be positive")

    cash_amount = data.cash_amount
    if kind is TransactionType.DIVIDEND:
        if data.quantity < 0:
            raise ValidationError("quantity must not be negative")
        if data.price is not None and data.price < 0:
            raise ValidationError("price must not be negative")
        if cash_amount is None and data.price is not None:
            cash_amount = data.quantity * data.price
        if cash_amount is None or cash_amount <= 0:
            raise ValidationError("dividend requires a positive cash amount")
    else:
        if data.quantity <= 0:
            raise ValidationError("quantity must be positive")
        if data.price is None or data.price <= 0:
            raise ValidationError(f"{kind.value} requires a positive price")

    lot_ids = data.lot_ids
    if lot_ids:
        if kind is not TransactionType.SELL:
            raise ValidationError("lot selection is only allowed on sells")
        if method is not CostBasisMethod.SPECIFIC_LOT:
            raise ValidationError("lot selection requires the SPECIFIC_LOT cost basis method")
        lot_ids = list(dict.fromkeys(str(item) for item in lot_ids))

    return replace(
        data,
        symbol=symbol,
        currency=currency,
        cash_amount=cash_amount,
        lot_ids=lot_ids or None,
        notes=data.notes.strip() if data.notes else None,
    )


__all__ = [
    "EDITABLE_FIELDS",
    "TransactionInput",
    "USER_TRANSACTION_TYPES",
    "parse_date",
    "parse_type",
    "utc_today",
    "validate_transaction",
]
