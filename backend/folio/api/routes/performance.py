"""Snapshot and return analytics endpoints."""

from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, status

from folio.api.dependencies import Services, get_services, get_user_id
from folio.schemas import (
    AnnualizedReturnSchema,
    BenchmarkComparisonSchema,
    MWRSchema,
    PerformanceMetricsSchema,
    SnapshotRecordRequest,
    SnapshotSchema,
    TWRSchema,
)

router = APIRouter()


@router.post(
    "/portfolios/{portfolio_id}/snapshots",
    response_model=SnapshotSchema,
    status_code=status.HTTP_201_CREATED,
)
async def record_snapshot(
    portfolio_id: uuid.UUID,
    payload: SnapshotRecordRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> SnapshotSchema:
    if payload.prices is None:
        snapshot = await services.snapshots.record_from_market(user_id, portfolio_id, as_of=payload.date)
    else:
        snapshot = await services.snapshots.record(user_id, portfolio_id, payload.prices, as_of=payload.date)
    return SnapshotSchema.model_validate(snapshot)


@router.get("/portfolios/{portfolio_id}/snapshots", response_model=list[SnapshotSchema])
async def list_snapshots(
    portfolio_id: uuid.UUID,
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> list[SnapshotSchema]:
    snapshots = await services.snapshots.list_snapshots(user_id, portfolio_id, start, end)
    return [SnapshotSchema.model_validate(item) for item in snapshots]


@router.get("/portfolios/{portfolio_id}/analytics/twr", response_model=TWRSchema)
async def time_weighted_return(
    portfolio_id: uuid.UUID,
    start: date = Query(...),
    end: date = Query(...),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> TWRSchema:
    result = await services.analytics.time_weighted_return(user_id, portfolio_id, start, end)
    return TWRSchema.model_validate(result)


@router.get("/portfolios/{portfolio_id}/analytics/mwr", response_model=MWRSchema)
async def money_weighted_return(
    portfolio_id: uuid.UUID,
    start: date = Query(...),
    end: date = Query(...),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> MWRSchema:
    result = await services.analytics.money_weighted_return(user_id, portfolio_id, start, end)
    return MWRSchema.model_validate(result)


@router.get("/portfolios/{portfolio_id}/analytics/annualized", response_model=AnnualizedReturnSchema)
async def annualized_return(
    portfolio_id: uuid.UUID,
    start: date = Query(...),
    end: date = Query(...),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> AnnualizedReturnSchema:
    result = await services.analytics.annualized_return(user_id, portfolio_id, start, end)
    return AnnualizedReturnSchema.model_validate(result)


@router.get("/portfolios/{portfolio_id}/analytics/benchmark", response_model=BenchmarkComparisonSchema)
async def compare_to_benchmark(
    portfolio_id: uuid.UUID,
    symbol: str = Query(..., min_length=1),
    start: date = Query(...),
    end: date = Query(...),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> BenchmarkComparisonSchema:
    result = await services.analytics.compare_to_benchmark(user_id, portfolio_id, symbol, start, end)
    return BenchmarkComparisonSchema.model_validate(result)


@router.get("/portfolios/{portfolio_id}/analytics/metrics", response_model=PerformanceMetricsSchema)
async def performance_metrics(
    portfolio_id: uuid.UUID,
    start: date = Query(...),
    end: date = Query(...),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> PerformanceMetricsSchema:
    result = await services.analytics.performance_metrics(user_id, portfolio_id, start, end)
    return PerformanceMetricsSchema.model_validate(result)


__all__ = ["router"]
