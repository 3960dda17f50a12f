"""Portfolio lifecycle operations."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping

from folio.config import FolioSettings, get_settings
from folio.core.errors import ValidationError
from folio.models import CostBasisMethod, Portfolio
from folio.repositories.base import Store, get_owned_portfolio

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 100


def _clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("portfolio name is required")
    if len(cleaned) > NAME_MAX_LENGTH:
        raise ValidationError(f"portfolio name must be at most {NAME_MAX_LENGTH} characters")
    return cleaned


def _clean_currency(currency: str) -> str:
    code = currency.strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(f"invalid currency code: {currency!r}")
    return code


def _clean_method(method: CostBasisMethod | str) -> CostBasisMethod:
    try:
        return CostBasisMethod(str(getattr(method, "value", method)).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"unknown cost basis method: {method!r}") from exc


class PortfolioService:
    def __init__(self, store: Store, settings: FolioSettings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    async def create_portfolio(
        self,
        user_id: str,
        name: str,
        *,
        description: str | None = None,
        base_currency: str | None = None,
        cost_basis_method: CostBasisMethod | str | None = None,
    ) -> Portfolio:
        portfolio = Portfolio(
            user_id=user_id,
            name=_clean_name(name),
            description=description,
            base_currency=_clean_currency(base_currency or self.settings.base_currency),
            cost_basis_method=_clean_method(cost_basis_method or self.settings.cost_basis_method).value,
        )
        async with self.store.unit() as uow:
            if await uow.portfolios.find_by_owner_and_name(user_id, portfolio.name) is not None:
                raise ValidationError(f"a portfolio named {portfolio.name!r} already exists")
            await uow.portfolios.add(portfolio)
        logger.info("Created portfolio %s for user %s", portfolio.id, user_id)
        return portfolio

    async def get_portfolio(self, user_id: str, portfolio_id: uuid.UUID) -> Portfolio:
        async with self.store.unit() as uow:
            return await get_owned_portfolio(uow, portfolio_id, user_id)

    async def list_portfolios(self, user_id: str) -> list[Portfolio]:
        async with self.store.unit() as uow:
            return await uow.portfolios.list_by_owner(user_id)

    async def update_portfolio(
        self, user_id: str, portfolio_id: uuid.UUID, changes: Mapping[str, Any]
    ) -> Portfolio:
        """Rename, describe or switch the cost-basis method of a portfolio.

        Switching the method does not touch stored lots; it applies to sells
        recorded (or replayed) afterwards.
        """

        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            unknown = set(changes) - {"name", "description", "cost_basis_method"}
            if unknown:
                raise ValidationError(f"fields cannot be changed: {', '.join(sorted(unknown))}")
            if "name" in changes:
                name = _clean_name(changes["name"])
                if name != portfolio.name:
                    existing = await uow.portfolios.find_by_owner_and_name(user_id, name)
                    if existing is not None:
                        raise ValidationError(f"a portfolio named {name!r} already exists")
                portfolio.name = name
            if "description" in changes:
                portfolio.description = changes["description"]
            if changes.get("cost_basis_method") is not None:
                portfolio.cost_basis_method = _clean_method(changes["cost_basis_method"]).value
        logger.info("Updated portfolio %s", portfolio_id)
        return portfolio

    async def delete_portfolio(self, user_id: str, portfolio_id: uuid.UUID) -> None:
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            await uow.portfolios.delete(portfolio)
        logger.info("Deleted portfolio %s", portfolio_id)


__all__ = ["PortfolioService"]
