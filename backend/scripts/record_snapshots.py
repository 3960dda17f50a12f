"""Record today's market-priced snapshot for every portfolio.

Meant to run from cron once a day after the market closes.
"""

from __future__ import annotations

import argparse
import asyncio
from datetime import date

from folio.config import get_settings
from folio.core.logging import setup_logging
from folio.db import Database
from folio.providers import AlphaVantageProvider
from folio.repositories import SqlStore
from folio.services.market_data import MarketDataService
from folio.services.snapshots import SnapshotService


async def _run(as_of: date | None) -> None:
    settings = get_settings()
    if not settings.alphavantage_api_key:
        raise SystemExit("ALPHAVANTAGE_API_KEY is not configured")
    database = Database(settings.database_url)
    market_data = MarketDataService(AlphaVantageProvider(settings=settings), settings=settings)
    try:
        snapshots = await SnapshotService(SqlStore(database), market_data).record_all_from_market(as_of=as_of)
        for snapshot in snapshots:
            print(f"{snapshot.portfolio_id} {snapshot.date}: value {snapshot.total_value}")
        print(f"Recorded {len(snapshots)} snapshots")
    finally:
        await database.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Record a market-priced snapshot for every portfolio")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="snapshot date (default: today, UTC)")
    args = parser.parse_args()
    setup_logging(get_settings().log_level)
    asyncio.run(_run(args.date))


if __name__ == "__main__":
    main()
