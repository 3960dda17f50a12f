"""Database model exports."""

from .corporate import CorporateAction, PortfolioAction
from .enums import (
    CORPORATE_TRANSACTION_TYPES,
    CorporateActionType,
    CostBasisMethod,
    PortfolioActionStatus,
    TransactionType,
)
from .portfolio import Holding, Portfolio, TaxLot, Transaction
from .snapshot import PerformanceSnapshot

__all__ = [
    "CORPORATE_TRANSACTION_TYPES",
    "CorporateAction",
    "CorporateActionType",
    "CostBasisMethod",
    "Holding",
    "PerformanceSnapshot",
    "Portfolio",
    "PortfolioAction",
    "PortfolioActionStatus",
    "TaxLot",
    "Transaction",
    "TransactionType",
]
