"""Corporate-action monitor.

Turns global announcement records into per-portfolio suggestions that the
owner approves or rejects before they are applied.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict

from folio.core.errors import FolioError, NotFoundError, ValidationError
from folio.models import (
    CorporateAction,
    CorporateActionType,
    Holding,
    PortfolioAction,
    PortfolioActionStatus,
    Transaction,
)
from folio.repositories.base import UnitOfWork, get_owned_portfolio
from folio.services.corporate_actions import CorporateActionResult, CorporateActionService

logger = logging.getLogger(__name__)

OPEN_STATUSES = (PortfolioActionStatus.PENDING.value, PortfolioActionStatus.APPROVED.value)


def describe_action(action: CorporateAction, holding: Holding) -> str:
    kind = action.kind
    if kind is CorporateActionType.SPLIT:
        if action.ratio is not None:
            return (
                f"Stock split {action.ratio} for {action.symbol}. "
                f"Your {holding.quantity} shares will be adjusted."
            )
        return f"Stock split for {action.symbol}"
    if kind is CorporateActionType.DIVIDEND:
        if action.amount is not None:
            total = action.amount * holding.quantity
            return f"Dividend of {action.amount} per share ({total} total) for {action.symbol}"
        return f"Dividend for {action.symbol}"
    if kind is CorporateActionType.MERGER:
        if action.new_symbol:
            return f"Merger: {action.symbol} is being acquired. Shares will be converted to {action.new_symbol}"
        return f"Merger for {action.symbol}"
    if kind is CorporateActionType.SPINOFF:
        if action.new_symbol and action.ratio is not None:
            return (
                f"Spinoff: You will receive {action.ratio} shares of {action.new_symbol} "
                f"for your {action.symbol} holdings"
            )
        return f"Spinoff for {action.symbol}"
    if kind is CorporateActionType.TICKER_CHANGE:
        if action.new_symbol:
            return f"Ticker change: {action.symbol} is changing to {action.new_symbol}"
        return f"Ticker change for {action.symbol}"
    return f"Corporate action for {action.symbol}"


class CorporateActionMonitor:
    def __init__(self, corporate_actions: CorporateActionService) -> None:
        self.corporate_actions = corporate_actions
        self.store = corporate_actions.store

    async def detect_and_suggest_actions(self) -> list[PortfolioAction]:
        """Create pending suggestions for every holding hit by an unapplied action."""

        logger.info("Starting corporate action detection")
        async with self.store.unit() as uow:
            actions = await uow.corporate_actions.find_unapplied_corporate_actions()
        if not actions:
            logger.info("No new corporate actions to process")
            return []

        created: list[PortfolioAction] = []
        for action in actions:
            try:
                created.extend(await self._suggest(action))
            except FolioError as exc:
                logger.warning(
                    "Error processing corporate action %s for symbol %s: %s", action.id, action.symbol, exc
                )
        logger.info("Corporate action detection completed: %d suggestions", len(created))
        return created

    async def _suggest(self, action: CorporateAction) -> list[PortfolioAction]:
        created: list[PortfolioAction] = []
        async with self.store.unit() as uow:
            holdings = await uow.holdings.find_by_symbol(action.symbol)
            if not holdings:
                logger.info("No portfolios hold symbol %s, skipping", action.symbol)
                return []
            existing = await uow.portfolio_actions.find_for_corporate_action(action.id)
            suggested = {(item.portfolio_id, item.affected_symbol) for item in existing}
            for holding in holdings:
                if (holding.portfolio_id, action.symbol) in suggested:
                    logger.debug("Action already suggested for portfolio %s, skipping", holding.portfolio_id)
                    continue
                item = PortfolioAction(
                    portfolio_id=holding.portfolio_id,
                    corporate_action_id=action.id,
                    status=PortfolioActionStatus.PENDING.value,
                    affected_symbol=action.symbol,
                    shares_affected=holding.quantity,
                    description=describe_action(action, holding),
                )
                await uow.portfolio_actions.add(item)
                created.append(item)
        logger.info("Created %d pending portfolio actions for symbol %s", len(created), action.symbol)
        return created

    async def list_portfolio_actions(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        status: PortfolioActionStatus | str | None = None,
    ) -> list[PortfolioAction]:
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            wanted = None
            if status is not None:
                try:
                    wanted = PortfolioActionStatus(str(getattr(status, "value", status)).upper()).value
                except ValueError as exc:
                    raise ValidationError(f"unknown status: {status!r}") from exc
            return await uow.portfolio_actions.list_for_portfolio(portfolio.id, wanted)

    async def approve(self, user_id: str, action_id: uuid.UUID) -> PortfolioAction:
        async with self.store.unit() as uow:
            item = await self._owned_action(uow, user_id, action_id)
            item.approve(user_id)
        logger.info("Portfolio action %s approved by %s", action_id, user_id)
        return item

    async def reject(self, user_id: str, action_id: uuid.UUID, reason: str | None = None) -> PortfolioAction:
        async with self.store.unit() as uow:
            item = await self._owned_action(uow, user_id, action_id)
            item.reject(user_id, reason)
        logger.info("Portfolio action %s rejected by %s", action_id, user_id)
        await self._settle(item.corporate_action_id)
        return item

    async def apply(self, user_id: str, action_id: uuid.UUID) -> CorporateActionResult:
        """Apply an approved suggestion through the corporate-action applier.

        The audit transaction, the suggestion's status change and the
        announcement's settlement commit together.
        """

        async with self.store.unit() as uow:
            item = await self._owned_action(uow, user_id, action_id)
            if item.state is not PortfolioActionStatus.APPROVED:
                raise ValidationError(f"only approved actions can be applied, status is {item.status}")
            portfolio_id = item.portfolio_id
            corporate_action_id = item.corporate_action_id

        async def mark_applied(uow: UnitOfWork, transaction: Transaction) -> None:
            current = await self._owned_action(uow, user_id, action_id)
            current.mark_applied()
            await self._settle_in(uow, corporate_action_id)

        result = await self.corporate_actions.apply_corporate_action(
            user_id, portfolio_id, corporate_action_id, on_applied=mark_applied
        )
        logger.info("Portfolio action %s applied", action_id)
        return result

    async def _settle(self, corporate_action_id: uuid.UUID) -> None:
        async with self.store.unit() as uow:
            await self._settle_in(uow, corporate_action_id)

    @staticmethod
    async def _settle_in(uow: UnitOfWork, corporate_action_id: uuid.UUID) -> None:
        """Mark the announcement applied once no suggestion is still open."""

        action = await uow.corporate_actions.get(corporate_action_id)
        if action is None or action.applied:
            return
        items = await uow.portfolio_actions.find_for_corporate_action(corporate_action_id)
        by_status: dict[str, int] = defaultdict(int)
        for item in items:
            by_status[item.status] += 1
        if not any(by_status[status] for status in OPEN_STATUSES):
            action.applied = True
            logger.info("Corporate action %s fully processed", corporate_action_id)

    @staticmethod
    async def _owned_action(uow, user_id: str, action_id: uuid.UUID) -> PortfolioAction:
        item = await uow.portfolio_actions.get(action_id)
        if item is None:
            raise NotFoundError(f"portfolio action {action_id} not found")
        await get_owned_portfolio(uow, item.portfolio_id, user_id)
        return item


__all__ = ["CorporateActionMonitor", "describe_action"]
