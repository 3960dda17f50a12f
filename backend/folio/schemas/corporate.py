"""Pydantic schemas for corporate actions and portfolio suggestions."""

from __future__ import annotations

import datetime as dt
import uuid

from pydantic import BaseModel, Field

from folio.schemas.common import DecimalStr, ORMSchema
from folio.schemas.portfolio import HoldingSchema, TransactionSchema

ACTION_TYPE_PATTERN = "^(SPLIT|DIVIDEND|MERGER|SPINOFF|TICKER_CHANGE)$"


class CorporateActionCreateRequest(BaseModel):
    symbol: str = Field(..., examples=["AAPL"])
    type: str = Field(..., pattern=ACTION_TYPE_PATTERN)
    date: dt.date
    ratio: DecimalStr | None = Field(default=None, examples=["4"])
    amount: DecimalStr | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    new_symbol: str | None = None
    cost_allocation: DecimalStr | None = None
    description: str | None = None


class CorporateActionSchema(ORMSchema):
    id: uuid.UUID
    symbol: str
    type: str
    date: dt.date
    ratio: DecimalStr | None = None
    amount: DecimalStr | None = None
    currency: str | None = None
    new_symbol: str | None = None
    cost_allocation: DecimalStr | None = None
    description: str | None = None
    applied: bool


class PortfolioActionSchema(ORMSchema):
    id: uuid.UUID
    portfolio_id: uuid.UUID
    corporate_action_id: uuid.UUID
    status: str
    affected_symbol: str
    shares_affected: DecimalStr
    description: str | None = None
    detected_at: dt.datetime | None = None
    reviewed_at: dt.datetime | None = None
    applied_at: dt.datetime | None = None
    reviewed_by_user_id: str | None = None
    notes: str | None = None


class RejectActionRequest(BaseModel):
    reason: str | None = None


class CorporateOutcomeSchema(ORMSchema):
    symbol: str
    old_quantity: DecimalStr
    new_quantity: DecimalStr
    transferred_cost: DecimalStr


class CorporateActionResultSchema(BaseModel):
    transaction: TransactionSchema
    outcome: CorporateOutcomeSchema
    holdings: list[HoldingSchema]


__all__ = [
    "CorporateActionCreateRequest",
    "CorporateActionResultSchema",
    "CorporateActionSchema",
    "CorporateOutcomeSchema",
    "PortfolioActionSchema",
    "RejectActionRequest",
]
