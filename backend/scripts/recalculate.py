"""Rebuild holdings and tax lots of a portfolio from its transaction history."""

from __future__ import annotations

import argparse
import asyncio
import uuid

from folio.config import get_settings
from folio.core.logging import setup_logging
from folio.db import Database
from folio.repositories import SqlStore
from folio.services.engine import PositionEngine


async def _run(user_id: str, portfolio_id: uuid.UUID, symbol: str | None) -> None:
    settings = get_settings()
    database = Database(settings.database_url)
    engine = PositionEngine(SqlStore(database), settings=settings)
    try:
        if symbol:
            holding = await engine.recalculate(user_id, portfolio_id, symbol)
            if holding is None:
                print(f"{symbol.upper()}: no open position after replay")
            else:
                print(f"{holding.symbol}: {holding.quantity} shares, cost basis {holding.cost_basis}")
            return
        holdings = await engine.recalculate_portfolio(user_id, portfolio_id)
        for holding in holdings:
            print(f"{holding.symbol}: {holding.quantity} shares, cost basis {holding.cost_basis}")
        print(f"Recalculated {len(holdings)} holdings for portfolio {portfolio_id}")
    finally:
        await database.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Recalculate holdings from transaction history")
    parser.add_argument("--user", required=True, help="owner of the portfolio")
    parser.add_argument("--portfolio", required=True, type=uuid.UUID)
    parser.add_argument("--symbol", help="only rebuild this symbol and its corporate-action relatives")
    args = parser.parse_args()
    setup_logging(get_settings().log_level)
    asyncio.run(_run(args.user, args.portfolio, args.symbol))


if __name__ == "__main__":
    main()
