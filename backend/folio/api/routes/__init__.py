"""Route registration helpers."""

from __future__ import annotations

from fastapi import APIRouter

from .corporate_actions import router as corporate_actions_router
from .performance import router as performance_router
from .portfolios import router as portfolios_router
from .tax import router as tax_router

api_router = APIRouter()
api_router.include_router(portfolios_router, tags=["portfolios"])
api_router.include_router(corporate_actions_router, tags=["corporate-actions"])
api_router.include_router(performance_router, tags=["performance"])
api_router.include_router(tax_router, tags=["tax"])

__all__ = ["api_router"]
