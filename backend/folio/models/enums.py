"""Closed sets of kinds and states shared by the models and the services."""

from __future__ import annotations

import enum


class CostBasisMethod(str, enum.Enum):
    FIFO = "FIFO"
    LIFO = "LIFO"
    SPECIFIC_LOT = "SPECIFIC_LOT"


class TransactionType(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"
    DIVIDEND_REINVEST = "DIVIDEND_REINVEST"
    SPLIT = "SPLIT"
    MERGER = "MERGER"
    SPINOFF = "SPINOFF"
    TICKER_CHANGE = "TICKER_CHANGE"

    @property
    def is_buy(self) -> bool:
        return self in (TransactionType.BUY, TransactionType.DIVIDEND_REINVEST)

    @property
    def is_sell(self) -> bool:
        return self is TransactionType.SELL

    @property
    def is_corporate_action(self) -> bool:
        return self in CORPORATE_TRANSACTION_TYPES


CORPORATE_TRANSACTION_TYPES = frozenset(
    {
        TransactionType.SPLIT,
        TransactionType.MERGER,
        TransactionType.SPINOFF,
        TransactionType.TICKER_CHANGE,
    }
)


class CorporateActionType(str, enum.Enum):
    SPLIT = "SPLIT"
    DIVIDEND = "DIVIDEND"
    MERGER = "MERGER"
    SPINOFF = "SPINOFF"
    TICKER_CHANGE = "TICKER_CHANGE"


class PortfolioActionStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    APPLIED = "APPLIED"


def sql_in(values: type[enum.Enum]) -> str:
    """Render an enum's values as a SQL ``IN`` list for check constraints."""

    return "(" + ", ".join(f"'{member.value}'" for member in values) + ")"


__all__ = [
    "CORPORATE_TRANSACTION_TYPES",
    "CorporateActionType",
    "CostBasisMethod",
    "PortfolioActionStatus",
    "TransactionType",
    "sql_in",
]
