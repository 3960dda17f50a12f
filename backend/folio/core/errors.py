"""Error kinds surfaced by the core operations.

Every failure a caller can act on is a ``FolioError`` subclass carrying a
stable ``kind`` string. The HTTP layer maps kinds to status codes; scripts and
tests match on the classes directly.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence


class FolioError(Exception):
    """Base class for all domain errors."""

    kind = "internal"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message or self.__class__.__name__


class NotFoundError(FolioError):
    kind = "not_found"


class UnauthorizedError(FolioError):
    kind = "unauthorized"


class ValidationError(FolioError, ValueError):
    kind = "validation"


class CurrencyMismatchError(ValidationError):
    """Raised when amounts tagged with different currencies are combined."""


class InsufficientSharesError(ValidationError):
    kind = "insufficient_shares"

    def __init__(self, symbol: str, requested: Decimal, available: Decimal) -> None:
        super().__init__(
            f"insufficient shares of {symbol}: requested {requested}, available {available}"
        )
        self.symbol = symbol
        self.requested = requested
        self.available = available


class SpecificLotUnknownError(ValidationError):
    kind = "specific_lot_unknown"


class InsufficientDataError(FolioError):
    kind = "insufficient_data"


class InsufficientCashFlowsError(InsufficientDataError):
    pass


class ExternalUnavailableError(FolioError):
    kind = "external_unavailable"


class RateLimitedError(ExternalUnavailableError):
    """Provider asked us to slow down."""

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ConflictError(FolioError):
    kind = "conflict"


class InternalError(FolioError):
    kind = "internal"

    def __init__(self, message: str, causes: Sequence[BaseException] = ()) -> None:
        detail = message
        if causes:
            detail = f"{message}: " + "; ".join(f"{type(c).__name__}: {c}" for c in causes)
        super().__init__(detail)
        self.causes = tuple(causes)


__all__ = [
    "ConflictError",
    "CurrencyMismatchError",
    "ExternalUnavailableError",
    "FolioError",
    "InsufficientCashFlowsError",
    "InsufficientDataError",
    "InsufficientSharesError",
    "InternalError",
    "NotFoundError",
    "RateLimitedError",
    "SpecificLotUnknownError",
    "UnauthorizedError",
    "ValidationError",
]
