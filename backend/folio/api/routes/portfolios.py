"""Portfolio, transaction and position endpoints."""

from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status

from folio.api.dependencies import Services, get_services, get_user_id
from folio.schemas import (
    HoldingSchema,
    PortfolioCreateRequest,
    PortfolioSchema,
    PortfolioUpdateRequest,
    TaxLotSchema,
    TransactionCreateRequest,
    TransactionResultSchema,
    TransactionSchema,
    TransactionUpdateRequest,
)

router = APIRouter()


@router.post("/portfolios", response_model=PortfolioSchema, status_code=status.HTTP_201_CREATED)
async def create_portfolio(
    payload: PortfolioCreateRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> PortfolioSchema:
    portfolio = await services.portfolios.create_portfolio(
        user_id,
        payload.name,
        description=payload.description,
        base_currency=payload.base_currency,
        cost_basis_method=payload.cost_basis_method,
    )
    return PortfolioSchema.model_validate(portfolio)


@router.get("/portfolios", response_model=list[PortfolioSchema])
async def list_portfolios(
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> list[PortfolioSchema]:
    portfolios = await services.portfolios.list_portfolios(user_id)
    return [PortfolioSchema.model_validate(item) for item in portfolios]


@router.get("/portfolios/{portfolio_id}", response_model=PortfolioSchema)
async def get_portfolio(
    portfolio_id: uuid.UUID,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> PortfolioSchema:
    return PortfolioSchema.model_validate(await services.portfolios.get_portfolio(user_id, portfolio_id))


@router.patch("/portfolios/{portfolio_id}", response_model=PortfolioSchema)
async def update_portfolio(
    portfolio_id: uuid.UUID,
    payload: PortfolioUpdateRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> PortfolioSchema:
    portfolio = await services.portfolios.update_portfolio(
        user_id, portfolio_id, payload.model_dump(exclude_unset=True)
    )
    return PortfolioSchema.model_validate(portfolio)


@router.delete("/portfolios/{portfolio_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_portfolio(
    portfolio_id: uuid.UUID,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> Response:
    await services.portfolios.delete_portfolio(user_id, portfolio_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/portfolios/{portfolio_id}/transactions",
    response_model=TransactionResultSchema,
    status_code=status.HTTP_201_CREATED,
)
async def create_transaction(
    portfolio_id: uuid.UUID,
    payload: TransactionCreateRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> TransactionResultSchema:
    result = await services.engine.apply_transaction(user_id, portfolio_id, payload.model_dump(exclude_none=True))
    return TransactionResultSchema.model_validate(result)


@router.get("/portfolios/{portfolio_id}/transactions", response_model=list[TransactionSchema])
async def list_transactions(
    portfolio_id: uuid.UUID,
    symbol: str | None = Query(default=None),
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> list[TransactionSchema]:
    transactions = await services.engine.list_transactions(
        user_id, portfolio_id, symbol=symbol, start=start, end=end
    )
    return [TransactionSchema.model_validate(tx) for tx in transactions]


@router.get("/transactions/{transaction_id}", response_model=TransactionSchema)
async def get_transaction(
    transaction_id: uuid.UUID,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> TransactionSchema:
    return TransactionSchema.model_validate(await services.engine.get_transaction(user_id, transaction_id))


@router.patch("/transactions/{transaction_id}", response_model=TransactionResultSchema)
async def update_transaction(
    transaction_id: uuid.UUID,
    payload: TransactionUpdateRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> TransactionResultSchema:
    result = await services.engine.update_transaction(
        user_id, transaction_id, payload.model_dump(exclude_unset=True)
    )
    return TransactionResultSchema.model_validate(result)


@router.delete("/transactions/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transaction(
    transaction_id: uuid.UUID,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> Response:
    await services.engine.revoke_transaction(user_id, transaction_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/portfolios/{portfolio_id}/holdings", response_model=list[HoldingSchema])
async def list_holdings(
    portfolio_id: uuid.UUID,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> list[HoldingSchema]:
    holdings = await services.engine.list_holdings(user_id, portfolio_id)
    return [HoldingSchema.model_validate(item) for item in holdings]


@router.get("/portfolios/{portfolio_id}/holdings/{symbol}", response_model=HoldingSchema)
async def get_holding(
    portfolio_id: uuid.UUID,
    symbol: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> HoldingSchema:
    return HoldingSchema.model_validate(await services.engine.get_holding(user_id, portfolio_id, symbol))


@router.get("/portfolios/{portfolio_id}/tax-lots", response_model=list[TaxLotSchema])
async def list_tax_lots(
    portfolio_id: uuid.UUID,
    symbol: str | None = Query(default=None),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> list[TaxLotSchema]:
    lots = await services.engine.list_tax_lots(user_id, portfolio_id, symbol)
    return [TaxLotSchema.model_validate(lot) for lot in lots]


@router.post("/portfolios/{portfolio_id}/recalculate", response_model=list[HoldingSchema])
async def recalculate(
    portfolio_id: uuid.UUID,
    symbol: str | None = Query(default=None),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> list[HoldingSchema]:
    if symbol:
        holding = await services.engine.recalculate(user_id, portfolio_id, symbol)
        holdings = [holding] if holding is not None else []
    else:
        holdings = await services.engine.recalculate_portfolio(user_id, portfolio_id)
    return [HoldingSchema.model_validate(item) for item in holdings]


__all__ = ["router"]
