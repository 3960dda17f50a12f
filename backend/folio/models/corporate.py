"""Corporate action announcements and their per-portfolio suggestions."""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from folio.core.errors import ValidationError
from folio.db.base import Base
from folio.models.enums import CorporateActionType, PortfolioActionStatus, sql_in
from folio.models.portfolio import AMOUNT, RATE, utcnow


class CorporateAction(Base):
    """A global issuer event. ``amount`` is per share for dividends."""

    __tablename__ = "corporate_actions"
    __table_args__ = (
        Index("ix_corporate_actions_symbol_date", "symbol", "date"),
        CheckConstraint(f"type IN {sql_in(CorporateActionType)}", name="ck_corporate_actions_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    symbol: Mapped[str] = mapped_column(String(20))
    type: Mapped[str] = mapped_column(String(20))
    date: Mapped[dt.date] = mapped_column(Date)
    ratio: Mapped[Decimal | None] = mapped_column(RATE, nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    new_symbol: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cost_allocation: Mapped[Decimal | None] = mapped_column(RATE, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    applied: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def kind(self) -> CorporateActionType:
        return CorporateActionType(self.type)

    def validate(self) -> None:
        if not self.symbol:
            raise ValidationError("symbol is required")
        kind = self.kind
        if kind is CorporateActionType.SPLIT and (self.ratio is None or self.ratio <= 0):
            raise ValidationError("split ratio must be positive")
        if kind is CorporateActionType.DIVIDEND and (self.amount is None or self.amount <= 0):
            raise ValidationError("dividend amount must be positive")
        if kind in (CorporateActionType.MERGER, CorporateActionType.TICKER_CHANGE, CorporateActionType.SPINOFF):
            if not self.new_symbol:
                raise ValidationError(f"{kind.value.lower()} requires a new symbol")
            if self.new_symbol == self.symbol:
                raise ValidationError("new symbol must differ from the current symbol")
        if kind in (CorporateActionType.MERGER, CorporateActionType.SPINOFF):
            if self.ratio is None or self.ratio <= 0:
                raise ValidationError(f"{kind.value.lower()} ratio must be positive")
        if self.cost_allocation is not None and not (0 < self.cost_allocation < 1):
            raise ValidationError("cost allocation must be between 0 and 1")


class PortfolioAction(Base):
    """A corporate action queued against one holding of one portfolio."""

    __tablename__ = "portfolio_actions"
    __table_args__ = (
        UniqueConstraint(
            "portfolio_id",
            "corporate_action_id",
            "affected_symbol",
            name="uq_portfolio_actions_portfolio_action_symbol",
        ),
        Index("ix_portfolio_actions_portfolio_status", "portfolio_id", "status"),
        CheckConstraint(f"status IN {sql_in(PortfolioActionStatus)}", name="ck_portfolio_actions_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    portfolio_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("portfolios.id", ondelete="CASCADE"))
    corporate_action_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("corporate_actions.id", ondelete="CASCADE")
    )
    status: Mapped[str] = mapped_column(String(20), default=PortfolioActionStatus.PENDING.value)
    affected_symbol: Mapped[str] = mapped_column(String(20))
    shares_affected: Mapped[Decimal] = mapped_column(AMOUNT)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def state(self) -> PortfolioActionStatus:
        return PortfolioActionStatus(self.status)

    def approve(self, user_id: str) -> None:
        if self.state is not PortfolioActionStatus.PENDING:
            raise ValidationError(f"cannot approve an action in status {self.status}")
        self.status = PortfolioActionStatus.APPROVED.value
        self.reviewed_at = utcnow()
        self.reviewed_by_user_id = user_id

    def reject(self, user_id: str, reason: str | None = None) -> None:
        if self.state is not PortfolioActionStatus.PENDING:
            raise ValidationError(f"cannot reject an action in status {self.status}")
        self.status = PortfolioActionStatus.REJECTED.value
        self.reviewed_at = utcnow()
        self.reviewed_by_user_id = user_id
        if reason:
            self.notes = reason

    def mark_applied(self) -> None:
        if self.state is not PortfolioActionStatus.APPROVED:
            raise ValidationError(f"only approved actions can be applied, status is {self.status}")
        self.status = PortfolioActionStatus.APPLIED.value
        self.applied_at = utcnow()


__all__ = ["CorporateAction", "PortfolioAction"]
