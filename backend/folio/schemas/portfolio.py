"""Pydantic schemas for portfolios, transactions, holdings and lots."""

from __future__ import annotations

import datetime as dt
import uuid

from pydantic import BaseModel, Field

from folio.schemas.common import DecimalStr, ORMSchema

COST_BASIS_PATTERN = "^(FIFO|LIFO|SPECIFIC_LOT)$"


class PortfolioCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["Retirement"])
    description: str | None = None
    base_currency: str | None = Field(default=None, min_length=3, max_length=3, examples=["USD"])
    cost_basis_method: str | None = Field(default=None, pattern=COST_BASIS_PATTERN)


class PortfolioUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    cost_basis_method: str | None = Field(default=None, pattern=COST_BASIS_PATTERN)


class PortfolioSchema(ORMSchema):
    id: uuid.UUID
    user_id: str
    name: str
    description: str | None = None
    base_currency: str
    cost_basis_method: str
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class TransactionCreateRequest(BaseModel):
    type: str = Field(..., examples=["BUY"])
    symbol: str = Field(..., examples=["AAPL"])
    date: dt.date
    quantity: DecimalStr | None = Field(default=None, examples=["100"])
    price: DecimalStr | None = Field(default=None, examples=["150.25"])
    commission: DecimalStr | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    fx_rate: DecimalStr | None = None
    cash_amount: DecimalStr | None = None
    lot_ids: list[uuid.UUID] | None = None
    notes: str | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "type": "BUY",
                "symbol": "AAPL",
                "date": "2024-01-15",
                "quantity": "100",
                "price": "150.00",
                "commission": "1.00",
                "currency": "USD",
            }
        }


class TransactionUpdateRequest(BaseModel):
    symbol: str | None = None
    date: dt.date | None = None
    quantity: DecimalStr | None = None
    price: DecimalStr | None = None
    commission: DecimalStr | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    fx_rate: DecimalStr | None = None
    cash_amount: DecimalStr | None = None
    lot_ids: list[uuid.UUID] | None = None
    notes: str | None = None


class TransactionSchema(ORMSchema):
    id: uuid.UUID
    portfolio_id: uuid.UUID
    sequence: int
    type: str
    symbol: str
    date: dt.date
    quantity: DecimalStr
    price: DecimalStr | None = None
    commission: DecimalStr
    currency: str
    fx_rate: DecimalStr
    cash_amount: DecimalStr | None = None
    ratio: DecimalStr | None = None
    related_symbol: str | None = None
    cost_allocation: DecimalStr | None = None
    lot_ids: list[str] | None = None
    corporate_action_id: uuid.UUID | None = None
    notes: str | None = None
    import_batch_id: uuid.UUID | None = None
    created_at: dt.datetime | None = None


class HoldingSchema(ORMSchema):
    symbol: str
    quantity: DecimalStr
    cost_basis: DecimalStr
    average_cost: DecimalStr
    updated_at: dt.datetime | None = None


class TaxLotSchema(ORMSchema):
    id: uuid.UUID
    symbol: str
    purchase_date: dt.date
    quantity: DecimalStr
    cost_basis: DecimalStr
    cost_per_share: DecimalStr
    transaction_id: uuid.UUID


class RealizedGainSchema(ORMSchema):
    transaction_id: uuid.UUID
    symbol: str
    lot_id: uuid.UUID
    purchase_date: dt.date
    sale_date: dt.date
    quantity: DecimalStr
    cost_basis: DecimalStr
    proceeds: DecimalStr
    gain: DecimalStr
    is_long_term: bool


class TransactionResultSchema(ORMSchema):
    transaction: TransactionSchema
    holding: HoldingSchema | None = None
    realized_gain: DecimalStr
    gains: list[RealizedGainSchema] = Field(default_factory=list)


__all__ = [
    "HoldingSchema",
    "PortfolioCreateRequest",
    "PortfolioSchema",
    "PortfolioUpdateRequest",
    "RealizedGainSchema",
    "TaxLotSchema",
    "TransactionCreateRequest",
    "TransactionResultSchema",
    "TransactionSchema",
    "TransactionUpdateRequest",
]
