"""Portfolio, transaction, holding and tax lot models."""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from folio.db.base import Base
from folio.models.enums import CostBasisMethod, TransactionType, sql_in

AMOUNT = Numeric(20, 8)
RATE = Numeric(20, 10)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Portfolio(Base):
    __tablename__ = "portfolios"
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_portfolios_user_name"),
        CheckConstraint(
            f"cost_basis_method IN {sql_in(CostBasisMethod)}", name="ck_portfolios_cost_basis_method"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    base_currency: Mapped[str] = mapped_column(String(3), default="USD")
    cost_basis_method: Mapped[str] = mapped_column(String(20), default=CostBasisMethod.FIFO.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def method(self) -> CostBasisMethod:
        return CostBasisMethod(self.cost_basis_method)


class Transaction(Base):
    """An immutable bookkeeping fact.

    ``fx_rate`` converts amounts in ``currency`` into the portfolio base
    currency and is captured when the transaction is recorded. Corporate-action
    audit rows carry ``ratio``, ``related_symbol`` and ``cost_allocation`` so a
    replay of the history can repeat the transformation.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_portfolio_symbol_date", "portfolio_id", "symbol", "date"),
        UniqueConstraint("portfolio_id", "sequence", name="uq_transactions_portfolio_sequence"),
        CheckConstraint("quantity >= 0", name="ck_transactions_quantity_non_negative"),
        CheckConstraint("price IS NULL OR price >= 0", name="ck_transactions_price_non_negative"),
        CheckConstraint("commission >= 0", name="ck_transactions_commission_non_negative"),
        CheckConstraint(f"type IN {sql_in(TransactionType)}", name="ck_transactions_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    portfolio_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("portfolios.id", ondelete="CASCADE"))
    sequence: Mapped[int] = mapped_column(Integer)
    type: Mapped[str] = mapped_column(String(20))
    symbol: Mapped[str] = mapped_column(String(20))
    date: Mapped[dt.date] = mapped_column(Date)
    quantity: Mapped[Decimal] = mapped_column(AMOUNT)
    price: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    commission: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    fx_rate: Mapped[Decimal] = mapped_column(RATE, default=Decimal("1"))
    cash_amount: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    ratio: Mapped[Decimal | None] = mapped_column(RATE, nullable=True)
    related_symbol: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cost_allocation: Mapped[Decimal | None] = mapped_column(RATE, nullable=True)
    lot_ids: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    corporate_action_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("corporate_actions.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    import_batch_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def kind(self) -> TransactionType:
        return TransactionType(self.type)

    @property
    def is_buy(self) -> bool:
        return self.kind.is_buy

    @property
    def is_sell(self) -> bool:
        return self.kind.is_sell

    @property
    def total_cost(self) -> Decimal:
        """Landed cost in the transaction currency: ``qty * price + commission``."""

        if self.price is None:
            return self.commission or Decimal("0")
        return self.quantity * self.price + (self.commission or Decimal("0"))

    @property
    def proceeds(self) -> Decimal:
        """Net sale proceeds in the transaction currency: ``qty * price - commission``."""

        if self.price is None:
            return Decimal("0")
        return self.quantity * self.price - (self.commission or Decimal("0"))

    @property
    def base_total_cost(self) -> Decimal:
        return self.total_cost * (self.fx_rate or Decimal("1"))

    @property
    def base_proceeds(self) -> Decimal:
        return self.proceeds * (self.fx_rate or Decimal("1"))

    @property
    def dividend_amount(self) -> Decimal:
        """Cash received by a dividend, in the transaction currency."""

        if self.cash_amount is not None:
            return self.cash_amount
        if self.price is not None:
            return self.quantity * self.price
        return Decimal("0")


class Holding(Base):
    __tablename__ = "holdings"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "symbol", name="uq_holdings_portfolio_symbol"),
        CheckConstraint("quantity >= 0", name="ck_holdings_quantity_non_negative"),
        CheckConstraint("cost_basis >= 0", name="ck_holdings_cost_basis_non_negative"),
        CheckConstraint("average_cost >= 0", name="ck_holdings_average_cost_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    portfolio_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("portfolios.id", ondelete="CASCADE"))
    symbol: Mapped[str] = mapped_column(String(20))
    quantity: Mapped[Decimal] = mapped_column(AMOUNT)
    cost_basis: Mapped[Decimal] = mapped_column(AMOUNT)
    average_cost: Mapped[Decimal] = mapped_column(AMOUNT)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class TaxLot(Base):
    __tablename__ = "tax_lots"
    __table_args__ = (
        Index("ix_tax_lots_portfolio_symbol", "portfolio_id", "symbol"),
        CheckConstraint("quantity > 0", name="ck_tax_lots_quantity_positive"),
        CheckConstraint("cost_basis >= 0", name="ck_tax_lots_cost_basis_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    portfolio_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("portfolios.id", ondelete="CASCADE"))
    symbol: Mapped[str] = mapped_column(String(20))
    purchase_date: Mapped[date] = mapped_column(Date)
    quantity: Mapped[Decimal] = mapped_column(AMOUNT)
    cost_basis: Mapped[Decimal] = mapped_column(AMOUNT)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id", ondelete="CASCADE")
    )
    sequence: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def cost_per_share(self) -> Decimal:
        if not self.quantity:
            return Decimal("0")
        return self.cost_basis / self.quantity


__all__ = ["AMOUNT", "Holding", "Portfolio", "RATE", "TaxLot", "Transaction", "utcnow"]
