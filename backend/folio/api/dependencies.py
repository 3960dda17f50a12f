"""Request dependencies: caller identity and the service container."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header, HTTPException, Request, status

from folio.config import FolioSettings
from folio.repositories.base import Store
from folio.services.analytics import AnalyticsService
from folio.services.corporate_actions import CorporateActionService
from folio.services.engine import PositionEngine
from folio.services.imports import ImportService
from folio.services.market_data import MarketDataService
from folio.services.monitor import CorporateActionMonitor
from folio.services.portfolios import PortfolioService
from folio.services.snapshots import SnapshotService
from folio.services.tax import TaxService


@dataclass
class Services:
    store: Store
    settings: FolioSettings
    market_data: MarketDataService | None
    portfolios: PortfolioService
    engine: PositionEngine
    corporate_actions: CorporateActionService
    monitor: CorporateActionMonitor
    snapshots: SnapshotService
    analytics: AnalyticsService
    tax: TaxService
    imports: ImportService

    @classmethod
    def build(
        cls,
        store: Store,
        settings: FolioSettings,
        market_data: MarketDataService | None = None,
    ) -> "Services":
        engine = PositionEngine(store, market_data, settings)
        corporate_actions = CorporateActionService(engine)
        return cls(
            store=store,
            settings=settings,
            market_data=market_data,
            portfolios=PortfolioService(store, settings),
            engine=engine,
            corporate_actions=corporate_actions,
            monitor=CorporateActionMonitor(corporate_actions),
            snapshots=SnapshotService(store, market_data),
            analytics=AnalyticsService(store, market_data),
            tax=TaxService(store, market_data, settings),
            imports=ImportService(engine),
        )


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity forwarded by the gateway."""

    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return user_id


__all__ = ["Services", "get_services", "get_user_id"]
