"""Bulk transaction import from CSV uploads."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from folio.core.errors import FolioError, NotFoundError, ValidationError
from folio.ingest.csv_parser import ParsedRow, RowError, parse_csv
from folio.models import Transaction
from folio.repositories.base import ImportBatch, get_owned_portfolio
from folio.services.book import symbol_family
from folio.services.engine import PositionEngine
from folio.services.payloads import TransactionInput, validate_transaction

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    batch_id: uuid.UUID
    dry_run: bool
    total_rows: int = 0
    transactions: list[Transaction] = field(default_factory=list)
    validated: int = 0
    skipped: int = 0
    errors: list[RowError] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return self.validated if self.dry_run else len(self.transactions)

    @property
    def success(self) -> bool:
        return self.success_count > 0

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def error_dicts(self) -> list[dict[str, Any]]:
        return [error.as_dict() for error in self.errors]


class ImportService:
    def __init__(self, engine: PositionEngine) -> None:
        self.engine = engine
        self.store = engine.store
        self.settings = engine.settings

    async def import_csv(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        content: str | bytes,
        *,
        dry_run: bool = False,
        skip_invalid: bool = False,
    ) -> ImportResult:
        """Parse ``content`` and record its rows as one import batch.

        Without ``skip_invalid`` a single bad row aborts the import before
        anything is written, and a row the position engine rejects undoes the
        rows already recorded. With it, bad rows are reported and skipped.
        """

        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            base_currency = portfolio.base_currency
            method = portfolio.method

        parsed = parse_csv(content)
        result = ImportResult(batch_id=uuid.uuid4(), dry_run=dry_run, total_rows=parsed.total_rows)
        result.errors.extend(parsed.errors)

        valid: list[tuple[ParsedRow, TransactionInput]] = []
        for row in parsed.rows:
            try:
                data = validate_transaction(
                    TransactionInput.from_mapping(row.payload),
                    base_currency=base_currency,
                    method=method,
                    max_future_days=self.settings.max_future_days,
                )
            except ValidationError as exc:
                result.errors.append(RowError(line=row.line, message=str(exc), raw=row.raw))
                continue
            data.import_batch_id = result.batch_id
            valid.append((row, data))

        result.errors.sort(key=lambda error: error.line)
        if result.errors and not skip_invalid:
            logger.info(
                "Import into portfolio %s rejected: %d invalid rows", portfolio_id, len(result.errors)
            )
            return result
        result.skipped = len({error.line for error in result.errors})
        result.validated = len(valid)
        if dry_run:
            return result

        # Earlier trades first so sells find the lots bought in the same file.
        valid.sort(key=lambda item: (item[1].date, item[0].line))
        for row, data in valid:
            try:
                applied = await self.engine.apply_transaction(user_id, portfolio_id, data)
            except FolioError as exc:
                result.errors.append(RowError(line=row.line, message=str(exc), raw=row.raw))
                if not skip_invalid:
                    await self._undo(user_id, portfolio_id, result)
                    return result
                result.skipped += 1
                continue
            result.transactions.append(applied.transaction)

        result.errors.sort(key=lambda error: error.line)
        logger.info(
            "Imported %d transactions into portfolio %s (batch %s, %d skipped)",
            len(result.transactions),
            portfolio_id,
            result.batch_id,
            result.skipped,
        )
        return result

    async def list_batches(self, user_id: str, portfolio_id: uuid.UUID) -> list[ImportBatch]:
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            return await uow.transactions.list_batches(portfolio.id)

    async def delete_batch(self, user_id: str, portfolio_id: uuid.UUID, batch_id: uuid.UUID) -> int:
        """Delete every transaction of a batch and rebuild the symbols it touched."""

        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id, for_update=True)
            batch = await uow.transactions.find_by_batch(portfolio.id, batch_id)
            if not batch:
                raise NotFoundError(f"import batch {batch_id} not found")
            history = await uow.transactions.list_for_portfolio(portfolio.id)
            family = symbol_family(history, {tx.symbol for tx in batch})
            for tx in batch:
                await uow.transactions.delete(tx)
            await uow.flush()
            await self.engine.rebuild(uow, portfolio, family)
        logger.info("Deleted import batch %s (%d transactions) from portfolio %s", batch_id, len(batch), portfolio_id)
        return len(batch)

    async def _undo(self, user_id: str, portfolio_id: uuid.UUID, result: ImportResult) -> None:
        if not result.transactions:
            return
        logger.warning(
            "Rolling back %d imported transactions of batch %s", len(result.transactions), result.batch_id
        )
        await self.delete_batch(user_id, portfolio_id, result.batch_id)
        result.transactions.clear()


__all__ = ["ImportResult", "ImportService"]
