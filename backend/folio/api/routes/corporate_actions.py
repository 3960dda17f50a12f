"""Corporate-action records and per-portfolio suggestions."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status

from folio.api.dependencies import Services, get_services, get_user_id
from folio.schemas import (
    CorporateActionCreateRequest,
    CorporateActionResultSchema,
    CorporateActionSchema,
    CorporateOutcomeSchema,
    HoldingSchema,
    PortfolioActionSchema,
    RejectActionRequest,
    TransactionSchema,
)
from folio.services.corporate_actions import CorporateActionResult

router = APIRouter()


def _result(result: CorporateActionResult) -> CorporateActionResultSchema:
    return CorporateActionResultSchema(
        transaction=TransactionSchema.model_validate(result.transaction),
        outcome=CorporateOutcomeSchema.model_validate(result.outcome),
        holdings=[HoldingSchema.model_validate(item) for item in result.holdings.values()],
    )


@router.post("/corporate-actions", response_model=CorporateActionSchema, status_code=status.HTTP_201_CREATED)
async def create_corporate_action(
    payload: CorporateActionCreateRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> CorporateActionSchema:
    action = await services.corporate_actions.create_corporate_action(**payload.model_dump())
    return CorporateActionSchema.model_validate(action)


@router.get("/corporate-actions", response_model=list[CorporateActionSchema])
async def list_corporate_actions(
    symbol: str | None = Query(default=None),
    unapplied_only: bool = Query(default=False),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> list[CorporateActionSchema]:
    actions = await services.corporate_actions.list_corporate_actions(symbol=symbol, unapplied_only=unapplied_only)
    return [CorporateActionSchema.model_validate(item) for item in actions]


@router.get("/corporate-actions/{corporate_action_id}", response_model=CorporateActionSchema)
async def get_corporate_action(
    corporate_action_id: uuid.UUID,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> CorporateActionSchema:
    action = await services.corporate_actions.get_corporate_action(corporate_action_id)
    return CorporateActionSchema.model_validate(action)


@router.post("/corporate-actions/detect", response_model=list[PortfolioActionSchema])
async def detect_corporate_actions(
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> list[PortfolioActionSchema]:
    created = await services.monitor.detect_and_suggest_actions()
    return [PortfolioActionSchema.model_validate(item) for item in created]


@router.post(
    "/portfolios/{portfolio_id}/corporate-actions/{corporate_action_id}/apply",
    response_model=CorporateActionResultSchema,
)
async def apply_corporate_action(
    portfolio_id: uuid.UUID,
    corporate_action_id: uuid.UUID,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> CorporateActionResultSchema:
    result = await services.corporate_actions.apply_corporate_action(user_id, portfolio_id, corporate_action_id)
    return _result(result)


@router.get("/portfolios/{portfolio_id}/actions", response_model=list[PortfolioActionSchema])
async def list_portfolio_actions(
    portfolio_id: uuid.UUID,
    status_filter: str | None = Query(default=None, alias="status"),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> list[PortfolioActionSchema]:
    items = await services.monitor.list_portfolio_actions(user_id, portfolio_id, status_filter)
    return [PortfolioActionSchema.model_validate(item) for item in items]


@router.post("/portfolio-actions/{action_id}/approve", response_model=PortfolioActionSchema)
async def approve_action(
    action_id: uuid.UUID,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> PortfolioActionSchema:
    return PortfolioActionSchema.model_validate(await services.monitor.approve(user_id, action_id))


@router.post("/portfolio-actions/{action_id}/reject", response_model=PortfolioActionSchema)
async def reject_action(
    action_id: uuid.UUID,
    payload: RejectActionRequest | None = None,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> PortfolioActionSchema:
    reason = payload.reason if payload else None
    return PortfolioActionSchema.model_validate(await services.monitor.reject(user_id, action_id, reason))


@router.post("/portfolio-actions/{action_id}/apply", response_model=CorporateActionResultSchema)
async def apply_action(
    action_id: uuid.UUID,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> CorporateActionResultSchema:
    return _result(await services.monitor.apply(user_id, action_id))


__all__ = ["router"]
