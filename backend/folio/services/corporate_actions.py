"""Corporate-action applier.

Each operation runs in one unit. It replays the portfolio up to the effective
date to check that the affected holding exists and to size the change, adds an
audit transaction that carries everything a later replay needs (ratio,
related symbol, cost allocation), and rewrites the positions of every symbol
involved from the full history.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable

from folio.core.errors import ConflictError, NotFoundError, ValidationError
from folio.core.telemetry import record_corporate_action
from folio.models import CorporateAction, CorporateActionType, Holding, Portfolio, Transaction, TransactionType
from folio.money import ZERO, div, to_decimal
from folio.repositories.base import UnitOfWork, get_owned_portfolio
from folio.services.book import CorporateOutcome, PositionBook, symbol_family
from folio.services.engine import PositionEngine
from folio.services.payloads import parse_date, utc_today

logger = logging.getLogger(__name__)

AppliedHook = Callable[[UnitOfWork, Transaction], Awaitable[None]]


@dataclass
class CorporateActionResult:
    transaction: Transaction
    outcome: CorporateOutcome
    holdings: dict[str, Holding] = field(default_factory=dict)


def _symbol(value: str | None, label: str = "symbol") -> str:
    symbol = (value or "").strip().upper()
    if not symbol:
        raise ValidationError(f"{label} is required")
    return symbol


def _positive(value: Any, label: str) -> Decimal:
    number = to_decimal(value)
    if number <= 0:
        raise ValidationError(f"{label} must be positive")
    return number


class CorporateActionService:
    """Applies splits, dividends, mergers, spinoffs and ticker changes."""

    def __init__(self, engine: PositionEngine) -> None:
        self.engine = engine
        self.store = engine.store
        self.settings = engine.settings

    async def apply_split(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        symbol: str,
        ratio: Decimal | str,
        *,
        effective_date: date | None = None,
        corporate_action_id: uuid.UUID | None = None,
        on_applied: AppliedHook | None = None,
    ) -> CorporateActionResult:
        await self._authorize(user_id, portfolio_id)
        symbol = _symbol(symbol)
        ratio = _positive(ratio, "split ratio")

        def build(book: PositionBook, tx_id: uuid.UUID) -> tuple[dict[str, Any], CorporateOutcome]:
            outcome = book.split(symbol, ratio)
            return (
                {
                    "type": TransactionType.SPLIT,
                    "symbol": symbol,
                    "quantity": abs(outcome.new_quantity - outcome.old_quantity),
                    "ratio": ratio,
                    "notes": f"Stock split: {ratio} ratio applied",
                },
                outcome,
            )

        return await self._apply(
            user_id,
            portfolio_id,
            [symbol],
            effective_date,
            build,
            corporate_action_id=corporate_action_id,
            on_applied=on_applied,
        )

    async def apply_dividend(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        symbol: str,
        amount: Decimal | str,
        *,
        per_share: bool = False,
        currency: str | None = None,
        fx_rate: Decimal | None = None,
        effective_date: date | None = None,
        corporate_action_id: uuid.UUID | None = None,
        on_applied: AppliedHook | None = None,
    ) -> CorporateActionResult:
        """Record a cash dividend on an existing holding.

        ``amount`` is the total cash received unless ``per_share`` is set, in
        which case it is multiplied by the shares held on the effective date.
        No position changes.
        """

        base_currency = (await self._authorize(user_id, portfolio_id)).base_currency
        symbol = _symbol(symbol)
        amount = _positive(amount, "dividend amount")
        on = effective_date or utc_today()
        cash_currency = currency.strip().upper() if currency else base_currency
        rate = await self.engine.fx_rate(cash_currency, base_currency, fx_rate)

        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id, for_update=True)
            await self._ensure_not_applied(uow, portfolio, corporate_action_id)
            history = await uow.transactions.list_for_portfolio(portfolio.id)
            book, _ = self.engine.replay_history(portfolio, history, until=on)
            held = book.require(symbol).quantity
            total = amount * held if per_share else amount
            per_share_amount = amount if per_share else div(amount, held)
            tx = Transaction(
                id=uuid.uuid4(),
                portfolio_id=portfolio.id,
                sequence=await uow.transactions.next_sequence(portfolio.id),
                type=TransactionType.DIVIDEND.value,
                symbol=symbol,
                date=on,
                quantity=held,
                price=per_share_amount,
                commission=ZERO,
                currency=cash_currency,
                fx_rate=rate,
                cash_amount=total,
                corporate_action_id=corporate_action_id,
                notes=f"Cash dividend: {total}",
            )
            await uow.transactions.add(tx)
            holding = await uow.holdings.find_by_portfolio_and_symbol(portfolio.id, symbol)
            if on_applied is not None:
                await on_applied(uow, tx)

        logger.info("Recorded dividend %s on %s for portfolio %s", total, symbol, portfolio_id)
        record_corporate_action(tx.type)
        return CorporateActionResult(
            transaction=tx,
            outcome=CorporateOutcome(symbol, held, held),
            holdings={symbol: holding} if holding is not None else {},
        )

    async def apply_merger(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        old_symbol: str,
        new_symbol: str,
        ratio: Decimal | str,
        *,
        effective_date: date | None = None,
        corporate_action_id: uuid.UUID | None = None,
        on_applied: AppliedHook | None = None,
    ) -> CorporateActionResult:
        await self._authorize(user_id, portfolio_id)
        old_symbol = _symbol(old_symbol)
        new_symbol = _symbol(new_symbol, "new symbol")
        ratio = _positive(ratio, "merger ratio")

        def build(book: PositionBook, tx_id: uuid.UUID) -> tuple[dict[str, Any], CorporateOutcome]:
            outcome = book.merge(old_symbol, new_symbol, ratio, action_id=tx_id)
            return (
                {
                    "type": TransactionType.MERGER,
                    "symbol": new_symbol,
                    "quantity": outcome.new_quantity,
                    "ratio": ratio,
                    "related_symbol": old_symbol,
                    "notes": (
                        f"Merger: {old_symbol} converted to {new_symbol} at {ratio} ratio "
                        f"({outcome.old_quantity} shares became {outcome.new_quantity} shares)"
                    ),
                },
                outcome,
            )

        return await self._apply(
            user_id,
            portfolio_id,
            [old_symbol, new_symbol],
            effective_date,
            build,
            corporate_action_id=corporate_action_id,
            on_applied=on_applied,
        )

    async def apply_spinoff(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        parent_symbol: str,
        child_symbol: str,
        ratio: Decimal | str,
        cost_allocation: Decimal | str | None = None,
        *,
        effective_date: date | None = None,
        corporate_action_id: uuid.UUID | None = None,
        on_applied: AppliedHook | None = None,
    ) -> CorporateActionResult:
        await self._authorize(user_id, portfolio_id)
        parent_symbol = _symbol(parent_symbol)
        child_symbol = _symbol(child_symbol, "new symbol")
        ratio = _positive(ratio, "spinoff ratio")
        alpha = (
            to_decimal(cost_allocation)
            if cost_allocation is not None
            else self.settings.spinoff_cost_allocation
        )

        def build(book: PositionBook, tx_id: uuid.UUID) -> tuple[dict[str, Any], CorporateOutcome]:
            outcome = book.spin_off(parent_symbol, child_symbol, ratio, alpha, action_id=tx_id)
            return (
                {
                    "type": TransactionType.SPINOFF,
                    "symbol": child_symbol,
                    "quantity": outcome.new_quantity,
                    "ratio": ratio,
                    "related_symbol": parent_symbol,
                    "cost_allocation": alpha,
                    "notes": (
                        f"Spinoff: received {outcome.new_quantity} shares of {child_symbol} "
                        f"from {parent_symbol} at {ratio} ratio"
                    ),
                },
                outcome,
            )

        return await self._apply(
            user_id,
            portfolio_id,
            [parent_symbol, child_symbol],
            effective_date,
            build,
            corporate_action_id=corporate_action_id,
            on_applied=on_applied,
        )

    async def apply_ticker_change(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        old_symbol: str,
        new_symbol: str,
        *,
        effective_date: date | None = None,
        corporate_action_id: uuid.UUID | None = None,
        on_applied: AppliedHook | None = None,
    ) -> CorporateActionResult:
        """Rename a position; the old symbol's history moves to the new one."""

        await self._authorize(user_id, portfolio_id)
        old_symbol = _symbol(old_symbol)
        new_symbol = _symbol(new_symbol, "new symbol")
        if old_symbol == new_symbol:
            raise ValidationError("new symbol must differ from the current symbol")

        def build(book: PositionBook, tx_id: uuid.UUID) -> tuple[dict[str, Any], CorporateOutcome]:
            book.require(old_symbol)
            outcome = book.rename(old_symbol, new_symbol)
            return (
                {
                    "type": TransactionType.TICKER_CHANGE,
                    "symbol": new_symbol,
                    "quantity": outcome.old_quantity,
                    "related_symbol": old_symbol,
                    "notes": f"Ticker change: {old_symbol} changed to {new_symbol}",
                },
                outcome,
            )

        async def rewrite(uow: UnitOfWork, portfolio: Portfolio) -> None:
            renamed = await uow.transactions.rename_symbol(portfolio.id, old_symbol, new_symbol)
            logger.info("Rewrote %d %s transactions to %s", renamed, old_symbol, new_symbol)

        return await self._apply(
            user_id,
            portfolio_id,
            [old_symbol, new_symbol],
            effective_date,
            build,
            corporate_action_id=corporate_action_id,
            on_applied=on_applied,
            before_insert=rewrite,
        )

    # ------------------------------------------------------------------
    # Announcement records
    # ------------------------------------------------------------------
    async def create_corporate_action(
        self,
        *,
        symbol: str,
        type: CorporateActionType | str,
        date: date | str,
        ratio: Decimal | str | None = None,
        amount: Decimal | str | None = None,
        currency: str | None = None,
        new_symbol: str | None = None,
        cost_allocation: Decimal | str | None = None,
        description: str | None = None,
    ) -> CorporateAction:
        try:
            kind = CorporateActionType(str(getattr(type, "value", type)).strip().upper())
        except ValueError as exc:
            raise ValidationError(f"unknown corporate action type: {type!r}") from exc
        action = CorporateAction(
            symbol=(symbol or "").strip().upper(),
            type=kind.value,
            date=parse_date(date),
            ratio=to_decimal(ratio) if ratio not in (None, "") else None,
            amount=to_decimal(amount) if amount not in (None, "") else None,
            currency=currency.strip().upper() if currency else None,
            new_symbol=new_symbol.strip().upper() if new_symbol else None,
            cost_allocation=to_decimal(cost_allocation) if cost_allocation not in (None, "") else None,
            description=description,
            applied=False,
        )
        action.validate()
        async with self.store.unit() as uow:
            await uow.corporate_actions.add(action)
        logger.info("Recorded %s corporate action for %s on %s", action.type, action.symbol, action.date)
        return action

    async def get_corporate_action(self, corporate_action_id: uuid.UUID) -> CorporateAction:
        async with self.store.unit() as uow:
            action = await uow.corporate_actions.get(corporate_action_id)
        if action is None:
            raise NotFoundError(f"corporate action {corporate_action_id} not found")
        return action

    async def list_corporate_actions(
        self, *, symbol: str | None = None, unapplied_only: bool = False
    ) -> list[CorporateAction]:
        async with self.store.unit() as uow:
            if symbol:
                actions = await uow.corporate_actions.find_by_symbol(symbol.strip().upper())
            else:
                actions = await uow.corporate_actions.list_all()
        return [action for action in actions if not (unapplied_only and action.applied)]

    async def apply_corporate_action(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        corporate_action_id: uuid.UUID,
        *,
        on_applied: AppliedHook | None = None,
    ) -> CorporateActionResult:
        """Apply an announcement record to one portfolio.

        ``on_applied`` runs inside the same unit once the audit transaction is
        written, so bookkeeping tied to the application commits or rolls back
        with it.
        """

        await self._authorize(user_id, portfolio_id)
        action = await self.get_corporate_action(corporate_action_id)
        kind = action.kind
        common = {"effective_date": action.date, "corporate_action_id": action.id, "on_applied": on_applied}
        if kind is CorporateActionType.SPLIT:
            return await self.apply_split(user_id, portfolio_id, action.symbol, action.ratio, **common)
        if kind is CorporateActionType.DIVIDEND:
            return await self.apply_dividend(
                user_id,
                portfolio_id,
                action.symbol,
                action.amount,
                per_share=True,
                currency=action.currency,
                **common,
            )
        if kind is CorporateActionType.MERGER:
            return await self.apply_merger(
                user_id, portfolio_id, action.symbol, action.new_symbol, action.ratio, **common
            )
        if kind is CorporateActionType.SPINOFF:
            return await self.apply_spinoff(
                user_id,
                portfolio_id,
                action.symbol,
                action.new_symbol,
                action.ratio,
                action.cost_allocation,
                **common,
            )
        if kind is CorporateActionType.TICKER_CHANGE:
            return await self.apply_ticker_change(
                user_id, portfolio_id, action.symbol, action.new_symbol, **common
            )
        raise ValidationError(f"unsupported corporate action type {action.type}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _apply(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        symbols: Iterable[str],
        effective_date: date | None,
        build: Callable[[PositionBook, uuid.UUID], tuple[dict[str, Any], CorporateOutcome]],
        *,
        corporate_action_id: uuid.UUID | None = None,
        before_insert=None,
        on_applied: AppliedHook | None = None,
    ) -> CorporateActionResult:
        on = effective_date or utc_today()
        tx_id = uuid.uuid4()
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id, for_update=True)
            await self._ensure_not_applied(uow, portfolio, corporate_action_id)
            history = await uow.transactions.list_for_portfolio(portfolio.id)
            family = symbol_family(history, symbols)
            await uow.holdings.lock(portfolio.id, family)

            book, _ = self.engine.replay_history(portfolio, history, until=on)
            fields, outcome = build(book, tx_id)
            if before_insert is not None:
                await before_insert(uow, portfolio)

            tx = Transaction(
                id=tx_id,
                portfolio_id=portfolio.id,
                sequence=await uow.transactions.next_sequence(portfolio.id),
                date=on,
                price=None,
                commission=ZERO,
                currency=portfolio.base_currency,
                fx_rate=Decimal("1"),
                corporate_action_id=corporate_action_id,
                **{**fields, "type": fields["type"].value},
            )
            await uow.transactions.add(tx)
            await uow.flush()

            await self.engine.rebuild(uow, portfolio, family)
            holdings = {
                holding.symbol: holding
                for holding in await uow.holdings.lock(portfolio.id, family)
            }
            if on_applied is not None:
                await on_applied(uow, tx)

        logger.info(
            "Applied %s on %s for portfolio %s (%s -> %s shares)",
            tx.type,
            tx.symbol,
            portfolio_id,
            outcome.old_quantity,
            outcome.new_quantity,
        )
        record_corporate_action(tx.type)
        return CorporateActionResult(transaction=tx, outcome=outcome, holdings=holdings)

    async def _authorize(self, user_id: str, portfolio_id: uuid.UUID) -> Portfolio:
        async with self.store.unit() as uow:
            return await get_owned_portfolio(uow, portfolio_id, user_id)

    @staticmethod
    async def _ensure_not_applied(
        uow: UnitOfWork, portfolio: Portfolio, corporate_action_id: uuid.UUID | None
    ) -> None:
        if corporate_action_id is None:
            return
        history = await uow.transactions.list_for_portfolio(portfolio.id)
        if any(tx.corporate_action_id == corporate_action_id for tx in history):
            raise ConflictError(f"corporate action {corporate_action_id} was already applied to this portfolio")


__all__ = ["AppliedHook", "CorporateActionResult", "CorporateActionService"]
