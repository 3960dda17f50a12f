"""Turn unapplied corporate actions into pending suggestions for affected portfolios.

Meant to run from cron once a day after new announcements have been loaded.
"""

from __future__ import annotations

import argparse
import asyncio

from folio.config import get_settings
from folio.core.logging import setup_logging
from folio.db import Database
from folio.repositories import SqlStore
from folio.services.corporate_actions import CorporateActionService
from folio.services.engine import PositionEngine
from folio.services.monitor import CorporateActionMonitor


async def _run(dry_run: bool) -> None:
    settings = get_settings()
    database = Database(settings.database_url)
    store = SqlStore(database)
    corporate_actions = CorporateActionService(PositionEngine(store, settings=settings))
    try:
        if dry_run:
            actions = await corporate_actions.list_corporate_actions(unapplied_only=True)
            for action in actions:
                print(f"{action.date} {action.type} {action.symbol} ({action.id})")
            print(f"{len(actions)} unapplied corporate actions")
            return
        created = await CorporateActionMonitor(corporate_actions).detect_and_suggest_actions()
        for item in created:
            print(f"{item.portfolio_id} {item.affected_symbol}: {item.description}")
        print(f"Created {len(created)} pending portfolio actions")
    finally:
        await database.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Suggest unapplied corporate actions to affected portfolios")
    parser.add_argument("--dry-run", action="store_true", help="list unapplied actions without creating suggestions")
    args = parser.parse_args()
    setup_logging(get_settings().log_level)
    asyncio.run(_run(args.dry_run))


if __name__ == "__main__":
    main()
