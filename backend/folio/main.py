"""FastAPI application entrypoint.

Run with ``uvicorn folio.main:create_app --factory``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from folio import __version__
from folio.api.dependencies import Services
from folio.api.routes import api_router
from folio.config import FolioSettings, get_settings
from folio.core.errors import FolioError
from folio.core.logging import setup_logging
from folio.core.telemetry import setup_telemetry
from folio.db import Database
from folio.providers import AlphaVantageProvider
from folio.repositories import SqlStore, Store
from folio.services.market_data import MarketDataService

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "not_found": 404,
    "unauthorized": 403,
    "validation": 400,
    "insufficient_shares": 400,
    "specific_lot_unknown": 400,
    "insufficient_data": 422,
    "external_unavailable": 503,
    "conflict": 409,
    "internal": 500,
}


async def _folio_error_handler(request: Request, exc: FolioError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"error": exc.kind, "detail": exc.message or str(exc)})


def _default_market_data(settings: FolioSettings) -> MarketDataService | None:
    if not settings.alphavantage_api_key:
        logger.info("No Alpha Vantage key configured; market data lookups are disabled")
        return None
    return MarketDataService(AlphaVantageProvider(settings=settings), settings=settings)


def create_app(
    database: Database | None = None,
    *,
    store: Store | None = None,
    market_data: MarketDataService | None = None,
    settings: FolioSettings | None = None,
) -> FastAPI:
    """Build the API around ``store`` (or a SQL store on ``database``)."""

    settings = settings or get_settings()
    setup_logging(settings.log_level)
    if store is None:
        database = database or Database(settings.database_url)
        store = SqlStore(database)
    if market_data is None:
        market_data = _default_market_data(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting %s with settings %s", settings.app_name, settings.dict_for_logging())
        if database is not None:
            await database.create_all()
        yield
        if database is not None:
            await database.dispose()

    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
    app.state.services = Services.build(store, settings, market_data)
    app.add_exception_handler(FolioError, _folio_error_handler)
    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        """Return service readiness metadata."""

        return {
            "status": "ok",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    setup_telemetry(app, settings, engine=database.engine if database is not None else None)
    return app


__all__ = ["STATUS_BY_KIND", "create_app"]
