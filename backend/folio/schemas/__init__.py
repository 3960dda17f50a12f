"""Pydantic schema exports."""

from .common import DecimalStr, ORMSchema
from .corporate import (
    CorporateActionCreateRequest,
    CorporateActionResultSchema,
    CorporateActionSchema,
    CorporateOutcomeSchema,
    PortfolioActionSchema,
    RejectActionRequest,
)
from .performance import (
    AnnualizedReturnSchema,
    BenchmarkComparisonSchema,
    MWRSchema,
    PerformanceMetricsSchema,
    SnapshotRecordRequest,
    SnapshotSchema,
    TWRSchema,
)
from .portfolio import (
    HoldingSchema,
    PortfolioCreateRequest,
    PortfolioSchema,
    PortfolioUpdateRequest,
    RealizedGainSchema,
    TaxLotSchema,
    TransactionCreateRequest,
    TransactionResultSchema,
    TransactionSchema,
    TransactionUpdateRequest,
)
from .tax import (
    ImportBatchSchema,
    ImportErrorSchema,
    ImportRequest,
    ImportResultSchema,
    SaleAllocationSchema,
    SalePreviewRequest,
    TaxLossOpportunitySchema,
    TaxLossRequest,
    TaxReportSchema,
)

__all__ = [
    "AnnualizedReturnSchema",
    "BenchmarkComparisonSchema",
    "CorporateActionCreateRequest",
    "CorporateActionResultSchema",
    "CorporateActionSchema",
    "CorporateOutcomeSchema",
    "DecimalStr",
    "HoldingSchema",
    "ImportBatchSchema",
    "ImportErrorSchema",
    "ImportRequest",
    "ImportResultSchema",
    "MWRSchema",
    "ORMSchema",
    "PerformanceMetricsSchema",
    "PortfolioActionSchema",
    "PortfolioCreateRequest",
    "PortfolioSchema",
    "PortfolioUpdateRequest",
    "RealizedGainSchema",
    "RejectActionRequest",
    "SaleAllocationSchema",
    "SalePreviewRequest",
    "SnapshotRecordRequest",
    "SnapshotSchema",
    "TWRSchema",
    "TaxLossOpportunitySchema",
    "TaxLossRequest",
    "TaxLotSchema",
    "TaxReportSchema",
    "TransactionCreateRequest",
    "TransactionResultSchema",
    "TransactionSchema",
    "TransactionUpdateRequest",
]
