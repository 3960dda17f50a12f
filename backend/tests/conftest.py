import asyncio
import inspect
import pathlib
import sys
from datetime import date
from decimal import Decimal

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from folio.config import FolioSettings  # noqa: E402
from folio.repositories import MemoryStore  # noqa: E402
from folio.services.corporate_actions import CorporateActionService  # noqa: E402
from folio.services.engine import PositionEngine  # noqa: E402
from folio.services.portfolios import PortfolioService  # noqa: E402

USER = "user-1"
OTHER_USER = "user-2"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            funcargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
            loop.run_until_complete(test_function(**funcargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


@pytest.fixture
def settings() -> FolioSettings:
    return FolioSettings(
        _env_file=None,
        telemetry_enabled=False,
        alphavantage_api_key=None,
        database_url="sqlite+aiosqlite:///:memory:",
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def engine(store, settings) -> PositionEngine:
    return PositionEngine(store, settings=settings)


@pytest.fixture
def corporate(engine) -> CorporateActionService:
    return CorporateActionService(engine)


@pytest.fixture
def portfolios(store, settings) -> PortfolioService:
    return PortfolioService(store, settings)


def buy(symbol: str, quantity, price, day: date, **extra) -> dict:
    return {"type": "BUY", "symbol": symbol, "quantity": quantity, "price": price, "date": day, **extra}


def sell(symbol: str, quantity, price, day: date, **extra) -> dict:
    return {"type": "SELL", "symbol": symbol, "quantity": quantity, "price": price, "date": day, **extra}


def dec(value) -> Decimal:
    return Decimal(str(value))
