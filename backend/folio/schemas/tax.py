"""Pydantic schemas for tax reporting and CSV imports."""

from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from pydantic import BaseModel, Field

from folio.schemas.common import DecimalStr, ORMSchema
from folio.schemas.portfolio import RealizedGainSchema, TransactionSchema


class TaxReportSchema(ORMSchema):
    year: int
    short_term_gains: list[RealizedGainSchema]
    long_term_gains: list[RealizedGainSchema]
    total_short_term_gain: DecimalStr
    total_long_term_gain: DecimalStr
    total_gain: DecimalStr


class SalePreviewRequest(BaseModel):
    symbol: str
    quantity: Decimal = Field(..., gt=0)
    price: Decimal = Field(..., gt=0)
    commission: Decimal = Field(default=Decimal("0"), ge=0)
    sale_date: dt.date | None = None
    lot_ids: list[uuid.UUID] | None = None


class SaleAllocationSchema(ORMSchema):
    lot_id: uuid.UUID
    purchase_date: dt.date
    quantity: DecimalStr
    cost_basis: DecimalStr
    proceeds: DecimalStr
    gain: DecimalStr
    is_long_term: bool


class TaxLossRequest(BaseModel):
    prices: dict[str, Decimal] | None = None
    min_loss_pct: Decimal = Field(default=Decimal("0"), ge=0)


class TaxLossOpportunitySchema(ORMSchema):
    symbol: str
    current_quantity: DecimalStr
    cost_basis: DecimalStr
    current_value: DecimalStr
    unrealized_loss: DecimalStr
    loss_percent: DecimalStr


class ImportRequest(BaseModel):
    csv_data: str = Field(..., min_length=1)
    dry_run: bool = False
    skip_invalid: bool = False


class ImportErrorSchema(BaseModel):
    line: int
    field: str | None = None
    message: str
    raw: str


class ImportResultSchema(BaseModel):
    batch_id: uuid.UUID
    success: bool
    dry_run: bool
    total_rows: int
    success_count: int
    error_count: int
    skipped: int
    errors: list[ImportErrorSchema]
    transactions: list[TransactionSchema]


class ImportBatchSchema(ORMSchema):
    batch_id: uuid.UUID
    transaction_count: int
    first_date: dt.date
    last_date: dt.date
    created_at: dt.datetime | None = None


__all__ = [
    "ImportBatchSchema",
    "ImportErrorSchema",
    "ImportRequest",
    "ImportResultSchema",
    "SaleAllocationSchema",
    "SalePreviewRequest",
    "TaxLossOpportunitySchema",
    "TaxLossRequest",
    "TaxReportSchema",
]
