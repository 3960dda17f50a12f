"""Pydantic schemas for snapshots and return analytics."""

from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from pydantic import BaseModel

from folio.schemas.common import DecimalStr, ORMSchema


class SnapshotRecordRequest(BaseModel):
    prices: dict[str, Decimal] | None = None
    date: dt.date | None = None

    class Config:
        json_schema_extra = {"example": {"prices": {"AAPL": "189.50", "MSFT": "410.10"}}}


class SnapshotSchema(ORMSchema):
    id: uuid.UUID
    portfolio_id: uuid.UUID
    date: dt.date
    total_value: DecimalStr
    total_cost_basis: DecimalStr
    total_return: DecimalStr
    total_return_pct: DecimalStr
    day_change: DecimalStr | None = None
    day_change_pct: DecimalStr | None = None


class TWRSchema(ORMSchema):
    start_date: dt.date
    end_date: dt.date
    twr: DecimalStr
    twr_percent: DecimalStr
    annualized_twr: DecimalStr
    annualized_twr_percent: DecimalStr
    num_periods: int
    starting_value: DecimalStr
    ending_value: DecimalStr


class MWRSchema(ORMSchema):
    start_date: dt.date
    end_date: dt.date
    mwr: DecimalStr
    mwr_percent: DecimalStr
    annualized_mwr: DecimalStr
    annualized_mwr_percent: DecimalStr
    total_cash_flow: DecimalStr
    starting_value: DecimalStr
    ending_value: DecimalStr


class AnnualizedReturnSchema(ORMSchema):
    start_date: dt.date
    end_date: dt.date
    starting_value: DecimalStr
    ending_value: DecimalStr
    total_return: DecimalStr
    total_return_pct: DecimalStr
    annualized_return: DecimalStr
    annualized_return_pct: DecimalStr
    years: DecimalStr


class BenchmarkComparisonSchema(ORMSchema):
    start_date: dt.date
    end_date: dt.date
    benchmark_symbol: str
    portfolio_return: DecimalStr
    benchmark_return: DecimalStr
    portfolio_annualized: DecimalStr
    benchmark_annualized: DecimalStr
    alpha: DecimalStr
    outperformance: DecimalStr


class PerformanceMetricsSchema(ORMSchema):
    start_date: dt.date
    end_date: dt.date
    starting_value: DecimalStr
    ending_value: DecimalStr
    total_return: DecimalStr
    total_return_pct: DecimalStr
    time_weighted_return: DecimalStr
    money_weighted_return: DecimalStr
    annualized_return: DecimalStr
    total_deposits: DecimalStr
    total_withdrawals: DecimalStr
    net_cash_flow: DecimalStr
    years: DecimalStr


__all__ = [
    "AnnualizedReturnSchema",
    "BenchmarkComparisonSchema",
    "MWRSchema",
    "PerformanceMetricsSchema",
    "SnapshotRecordRequest",
    "SnapshotSchema",
    "TWRSchema",
]
