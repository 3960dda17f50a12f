"""Initial schema for Folio."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

AMOUNT = sa.Numeric(20, 8)
RATE = sa.Numeric(20, 10)
PERCENT = sa.Numeric(12, 4)

TRANSACTION_TYPES = (
    "('BUY', 'SELL', 'DIVIDEND', 'DIVIDEND_REINVEST', 'SPLIT', 'MERGER', 'SPINOFF', 'TICKER_CHANGE')"
)
ACTION_TYPES = "('SPLIT', 'DIVIDEND', 'MERGER', 'SPINOFF', 'TICKER_CHANGE')"
ACTION_STATUSES = "('PENDING', 'APPROVED', 'REJECTED', 'APPLIED')"
COST_BASIS_METHODS = "('FIFO', 'LIFO', 'SPECIFIC_LOT')"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "portfolios",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("base_currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("cost_basis_method", sa.String(length=20), nullable=False, server_default="FIFO"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_portfolios_user_name"),
        sa.CheckConstraint(f"cost_basis_method IN {COST_BASIS_METHODS}", name="ck_portfolios_cost_basis_method"),
    )
    op.create_index("ix_portfolios_user_id", "portfolios", ["user_id"])

    op.create_table(
        "corporate_actions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("ratio", RATE, nullable=True),
        sa.Column("amount", AMOUNT, nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("new_symbol", sa.String(length=20), nullable=True),
        sa.Column("cost_allocation", RATE, nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("applied", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint(f"type IN {ACTION_TYPES}", name="ck_corporate_actions_type"),
    )
    op.create_index("ix_corporate_actions_symbol_date", "corporate_actions", ["symbol", "date"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("portfolio_id", sa.Uuid(), sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("quantity", AMOUNT, nullable=False),
        sa.Column("price", AMOUNT, nullable=True),
        sa.Column("commission", AMOUNT, nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("fx_rate", RATE, nullable=False, server_default="1"),
        sa.Column("cash_amount", AMOUNT, nullable=True),
        sa.Column("ratio", RATE, nullable=True),
        sa.Column("related_symbol", sa.String(length=20), nullable=True),
        sa.Column("cost_allocation", RATE, nullable=True),
        sa.Column("lot_ids", sa.JSON(), nullable=True),
        sa.Column(
            "corporate_action_id",
            sa.Uuid(),
            sa.ForeignKey("corporate_actions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("import_batch_id", sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("quantity >= 0", name="ck_transactions_quantity_non_negative"),
        sa.CheckConstraint("price IS NULL OR price >= 0", name="ck_transactions_price_non_negative"),
        sa.CheckConstraint("commission >= 0", name="ck_transactions_commission_non_negative"),
        sa.UniqueConstraint("portfolio_id", "sequence", name="uq_transactions_portfolio_sequence"),
        sa.CheckConstraint(f"type IN {TRANSACTION_TYPES}", name="ck_transactions_type"),
    )
    op.create_index(
        "ix_transactions_portfolio_symbol_date", "transactions", ["portfolio_id", "symbol", "date"]
    )
    op.create_index("ix_transactions_import_batch_id", "transactions", ["import_batch_id"])

    op.create_table(
        "holdings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("portfolio_id", sa.Uuid(), sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("quantity", AMOUNT, nullable=False),
        sa.Column("cost_basis", AMOUNT, nullable=False),
        sa.Column("average_cost", AMOUNT, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("portfolio_id", "symbol", name="uq_holdings_portfolio_symbol"),
        sa.CheckConstraint("quantity >= 0", name="ck_holdings_quantity_non_negative"),
        sa.CheckConstraint("cost_basis >= 0", name="ck_holdings_cost_basis_non_negative"),
        sa.CheckConstraint("average_cost >= 0", name="ck_holdings_average_cost_non_negative"),
    )

    op.create_table(
        "tax_lots",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("portfolio_id", sa.Uuid(), sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("purchase_date", sa.Date(), nullable=False),
        sa.Column("quantity", AMOUNT, nullable=False),
        sa.Column("cost_basis", AMOUNT, nullable=False),
        sa.Column(
            "transaction_id", sa.Uuid(), sa.ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("quantity > 0", name="ck_tax_lots_quantity_positive"),
        sa.CheckConstraint("cost_basis >= 0", name="ck_tax_lots_cost_basis_non_negative"),
    )
    op.create_index("ix_tax_lots_portfolio_symbol", "tax_lots", ["portfolio_id", "symbol"])

    op.create_table(
        "portfolio_actions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("portfolio_id", sa.Uuid(), sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "corporate_action_id",
            sa.Uuid(),
            sa.ForeignKey("corporate_actions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("affected_symbol", sa.String(length=20), nullable=False),
        sa.Column("shares_affected", AMOUNT, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by_user_id", sa.String(length=64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.UniqueConstraint(
            "portfolio_id",
            "corporate_action_id",
            "affected_symbol",
            name="uq_portfolio_actions_portfolio_action_symbol",
        ),
        sa.CheckConstraint(f"status IN {ACTION_STATUSES}", name="ck_portfolio_actions_status"),
    )
    op.create_index("ix_portfolio_actions_portfolio_status", "portfolio_actions", ["portfolio_id", "status"])

    op.create_table(
        "performance_snapshots",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("portfolio_id", sa.Uuid(), sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("total_value", AMOUNT, nullable=False),
        sa.Column("total_cost_basis", AMOUNT, nullable=False),
        sa.Column("total_return", AMOUNT, nullable=False),
        sa.Column("total_return_pct", PERCENT, nullable=False),
        sa.Column("day_change", AMOUNT, nullable=True),
        sa.Column("day_change_pct", PERCENT, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("portfolio_id", "date", name="uq_performance_snapshots_portfolio_date"),
    )


def downgrade() -> None:
    op.drop_table("performance_snapshots")
    op.drop_index("ix_portfolio_actions_portfolio_status", table_name="portfolio_actions")
    op.drop_table("portfolio_actions")
    op.drop_index("ix_tax_lots_portfolio_symbol", table_name="tax_lots")
    op.drop_table("tax_lots")
    op.drop_table("holdings")
    op.drop_index("ix_transactions_import_batch_id", table_name="transactions")
    op.drop_index("ix_transactions_portfolio_symbol_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_corporate_actions_symbol_date", table_name="corporate_actions")
    op.drop_table("corporate_actions")
    op.drop_index("ix_portfolios_user_id", table_name="portfolios")
    op.drop_table("portfolios")
