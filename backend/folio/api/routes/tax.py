"""Tax reporting and CSV import endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response, status

from folio.api.dependencies import Services, get_services, get_user_id
from folio.schemas import (
    ImportBatchSchema,
    ImportErrorSchema,
    ImportRequest,
    ImportResultSchema,
    SaleAllocationSchema,
    SalePreviewRequest,
    TaxLossOpportunitySchema,
    TaxLossRequest,
    TaxReportSchema,
    TransactionSchema,
)

router = APIRouter()


@router.get("/portfolios/{portfolio_id}/tax/report", response_model=TaxReportSchema)
async def tax_report(
    portfolio_id: uuid.UUID,
    year: int = Query(..., ge=1900, le=9999),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> TaxReportSchema:
    report = await services.tax.generate_report(user_id, portfolio_id, year)
    return TaxReportSchema.model_validate(report)


@router.post("/portfolios/{portfolio_id}/tax/preview-sale", response_model=list[SaleAllocationSchema])
async def preview_sale(
    portfolio_id: uuid.UUID,
    payload: SalePreviewRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> list[SaleAllocationSchema]:
    allocations = await services.tax.allocate_sale(
        user_id,
        portfolio_id,
        payload.symbol,
        payload.quantity,
        payload.price,
        sale_date=payload.sale_date,
        commission=payload.commission,
        lot_ids=[str(item) for item in payload.lot_ids] if payload.lot_ids else None,
    )
    return [SaleAllocationSchema.model_validate(item) for item in allocations]


@router.post("/portfolios/{portfolio_id}/tax/loss-opportunities", response_model=list[TaxLossOpportunitySchema])
async def tax_loss_opportunities(
    portfolio_id: uuid.UUID,
    payload: TaxLossRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> list[TaxLossOpportunitySchema]:
    items = await services.tax.tax_loss_opportunities(user_id, portfolio_id, payload.prices, payload.min_loss_pct)
    return [TaxLossOpportunitySchema.model_validate(item) for item in items]


@router.post("/portfolios/{portfolio_id}/imports", response_model=ImportResultSchema)
async def import_csv(
    portfolio_id: uuid.UUID,
    payload: ImportRequest,
    response: Response,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> ImportResultSchema:
    result = await services.imports.import_csv(
        user_id,
        portfolio_id,
        payload.csv_data,
        dry_run=payload.dry_run,
        skip_invalid=payload.skip_invalid,
    )
    if result.transactions:
        response.status_code = status.HTTP_201_CREATED
    return ImportResultSchema(
        batch_id=result.batch_id,
        success=result.success,
        dry_run=result.dry_run,
        total_rows=result.total_rows,
        success_count=result.success_count,
        error_count=result.error_count,
        skipped=result.skipped,
        errors=[ImportErrorSchema(**error) for error in result.error_dicts()],
        transactions=[TransactionSchema.model_validate(tx) for tx in result.transactions],
    )


@router.get("/portfolios/{portfolio_id}/imports", response_model=list[ImportBatchSchema])
async def list_import_batches(
    portfolio_id: uuid.UUID,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> list[ImportBatchSchema]:
    batches = await services.imports.list_batches(user_id, portfolio_id)
    return [ImportBatchSchema.model_validate(item) for item in batches]


@router.delete("/portfolios/{portfolio_id}/imports/{batch_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_import_batch(
    portfolio_id: uuid.UUID,
    batch_id: uuid.UUID,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> Response:
    await services.imports.delete_batch(user_id, portfolio_id, batch_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
