"""Realized-gain reporting and sale previews."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Mapping, Sequence

from folio.config import FolioSettings, get_settings
from folio.core.errors import ValidationError
from folio.models import TaxLot
from folio.money import ZERO, div, percent, to_decimal
from folio.repositories.base import Store, get_owned_portfolio
from folio.services.book import LotState, PositionBook, RealizedGain, replay
from folio.services.payloads import utc_today

logger = logging.getLogger(__name__)


@dataclass
class TaxReport:
    year: int
    short_term_gains: list[RealizedGain] = field(default_factory=list)
    long_term_gains: list[RealizedGain] = field(default_factory=list)

    @property
    def total_short_term_gain(self) -> Decimal:
        return sum((gain.gain for gain in self.short_term_gains), ZERO)

    @property
    def total_long_term_gain(self) -> Decimal:
        return sum((gain.gain for gain in self.long_term_gains), ZERO)

    @property
    def total_gain(self) -> Decimal:
        return self.total_short_term_gain + self.total_long_term_gain


@dataclass(frozen=True)
class SaleAllocation:
    lot_id: uuid.UUID
    purchase_date: date
    quantity: Decimal
    cost_basis: Decimal
    proceeds: Decimal
    is_long_term: bool

    @property
    def gain(self) -> Decimal:
        return self.proceeds - self.cost_basis


@dataclass(frozen=True)
class TaxLossOpportunity:
    symbol: str
    current_quantity: Decimal
    cost_basis: Decimal
    current_value: Decimal
    unrealized_loss: Decimal
    loss_percent: Decimal


def _lot_state(lot: TaxLot) -> LotState:
    return LotState(
        id=lot.id,
        symbol=lot.symbol,
        purchase_date=lot.purchase_date,
        quantity=lot.quantity,
        cost_basis=lot.cost_basis,
        transaction_id=lot.transaction_id,
        sequence=lot.sequence,
    )


class TaxService:
    def __init__(self, store: Store, market_data=None, settings: FolioSettings | None = None) -> None:
        self.store = store
        self.market_data = market_data
        self.settings = settings or get_settings()

    async def generate_report(self, user_id: str, portfolio_id: uuid.UUID, year: int) -> TaxReport:
        """Realized gains of the sells dated in ``year``, split by holding period.

        The whole history is replayed so every sell consumes the lots left
        over by the sells before it.
        """

        if not 1900 <= int(year) <= 9999:
            raise ValidationError(f"invalid tax year: {year}")
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            history = await uow.transactions.list_for_portfolio(portfolio.id)
        _, gains = replay(
            history,
            method=portfolio.method,
            spinoff_cost_allocation=self.settings.spinoff_cost_allocation,
            until=date(int(year), 12, 31),
        )
        report = TaxReport(year=int(year))
        for gain in gains:
            if gain.sale_date.year != report.year:
                continue
            if gain.is_long_term:
                report.long_term_gains.append(gain)
            else:
                report.short_term_gains.append(gain)
        logger.info(
            "Tax report %s for portfolio %s: %d short-term, %d long-term entries",
            year,
            portfolio_id,
            len(report.short_term_gains),
            len(report.long_term_gains),
        )
        return report

    async def allocate_sale(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        symbol: str,
        quantity: Decimal | str,
        price: Decimal | str,
        *,
        sale_date: date | None = None,
        commission: Decimal | str = ZERO,
        lot_ids: Sequence[str] | None = None,
    ) -> list[SaleAllocation]:
        """Preview how a sale would consume the current lots; nothing is written."""

        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            symbol = symbol.strip().upper()
            lots = await uow.lots.find_by_portfolio_and_symbol(portfolio.id, symbol)
        quantity = to_decimal(quantity)
        price = to_decimal(price)
        commission = to_decimal(commission)
        if quantity <= 0:
            raise ValidationError("quantity must be positive")
        if price <= 0:
            raise ValidationError("price must be positive")

        book = PositionBook.from_lots(
            (_lot_state(lot) for lot in lots),
            method=portfolio.method,
            spinoff_cost_allocation=self.settings.spinoff_cost_allocation,
        )
        allocations = book.preview_sale(symbol, quantity, sale_date or utc_today(), lot_ids=lot_ids)
        net = quantity * price - commission
        result: list[SaleAllocation] = []
        assigned = ZERO
        for index, allocation in enumerate(allocations):
            if index == len(allocations) - 1:
                proceeds = net - assigned
            else:
                proceeds = div(net * allocation.quantity, quantity)
            assigned += proceeds
            result.append(
                SaleAllocation(
                    lot_id=allocation.lot_id,
                    purchase_date=allocation.lot.purchase_date,
                    quantity=allocation.quantity,
                    cost_basis=allocation.cost_basis,
                    proceeds=proceeds,
                    is_long_term=allocation.is_long_term,
                )
            )
        return result

    async def tax_loss_opportunities(
        self,
        user_id: str,
        portfolio_id: uuid.UUID,
        prices: Mapping[str, Decimal] | None = None,
        min_loss_pct: Decimal | str = ZERO,
    ) -> list[TaxLossOpportunity]:
        """Holdings whose unrealized loss is at least ``min_loss_pct`` percent."""

        threshold = to_decimal(min_loss_pct)
        if threshold < 0:
            raise ValidationError("minimum loss percent must not be negative")
        async with self.store.unit() as uow:
            portfolio = await get_owned_portfolio(uow, portfolio_id, user_id)
            holdings = await uow.holdings.list_for_portfolio(portfolio.id)

        if prices is None:
            if self.market_data is None:
                raise ValidationError("prices are required when no market data source is configured")
            quotes = await self.market_data.get_quotes([h.symbol for h in holdings]) if holdings else {}
            prices = {symbol: quote.price for symbol, quote in quotes.items()}
        prices = {symbol.upper(): to_decimal(price) for symbol, price in prices.items()}

        opportunities: list[TaxLossOpportunity] = []
        for holding in holdings:
            price = prices.get(holding.symbol)
            if price is None or holding.cost_basis <= 0:
                continue
            value = holding.quantity * price
            loss = value - holding.cost_basis
            loss_percent = percent(loss, holding.cost_basis)
            if loss < 0 and -loss_percent >= threshold:
                opportunities.append(
                    TaxLossOpportunity(
                        symbol=holding.symbol,
                        current_quantity=holding.quantity,
                        cost_basis=holding.cost_basis,
                        current_value=value,
                        unrealized_loss=loss,
                        loss_percent=loss_percent,
                    )
                )
        return sorted(opportunities, key=lambda item: item.loss_percent)


__all__ = ["SaleAllocation", "TaxLossOpportunity", "TaxReport", "TaxService"]
