"""Dated portfolio valuations used by the analytics."""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Numeric, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from folio.db.base import Base
from folio.models.portfolio import AMOUNT, utcnow

PERCENT = Numeric(12, 4)


class PerformanceSnapshot(Base):
    __tablename__ = "performance_snapshots"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "date", name="uq_performance_snapshots_portfolio_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    portfolio_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("portfolios.id", ondelete="CASCADE"))
    date: Mapped[dt.date] = mapped_column(Date)
    total_value: Mapped[Decimal] = mapped_column(AMOUNT)
    total_cost_basis: Mapped[Decimal] = mapped_column(AMOUNT)
    total_return: Mapped[Decimal] = mapped_column(AMOUNT)
    total_return_pct: Mapped[Decimal] = mapped_column(PERCENT)
    day_change: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    day_change_pct: Mapped[Decimal | None] = mapped_column(PERCENT, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


__all__ = ["PerformanceSnapshot"]
