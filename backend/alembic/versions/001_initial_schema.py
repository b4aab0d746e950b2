"""Initial schema: users, events, promotions, transactions with ledger constraints.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Users table: point balance is one of the two ledger counters
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'CUSTOMER'")),
        sa.Column("points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("points >= 0", name="check_user_points_non_negative"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Events table: available_seats is the other ledger counter
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(2000), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_seats", sa.Integer(), nullable=False),
        sa.Column("available_seats", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'UPCOMING'")),
        sa.Column("organizer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("available_seats >= 0", name="check_available_seats_non_negative"),
        sa.CheckConstraint("total_seats > 0", name="check_total_seats_positive"),
        sa.CheckConstraint("available_seats <= total_seats", name="check_available_lte_total"),
        sa.CheckConstraint("price >= 0", name="check_price_non_negative"),
        sa.CheckConstraint("end_date >= start_date", name="check_event_window"),
        sa.CheckConstraint(
            "status IN ('UPCOMING', 'ACTIVE', 'ENDED', 'CANCELLED')", name="check_event_status"
        ),
    )
    op.create_index("ix_events_id", "events", ["id"])
    op.create_index("ix_events_organizer_id", "events", ["organizer_id"])
    # Status sync sweep: WHERE status IN (...) AND start_date/end_date vs now
    op.create_index("ix_events_status_window", "events", ["status", "start_date", "end_date"])

    # Promotions table
    op.create_table(
        "promotions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("discount_percent", sa.Integer(), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("current_uses", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("min_purchase", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("discount_percent BETWEEN 0 AND 100", name="check_discount_percent_range"),
        sa.CheckConstraint("current_uses >= 0", name="check_current_uses_non_negative"),
    )
    op.create_index("ix_promotions_id", "promotions", ["id"])
    op.create_index("ix_promotions_code", "promotions", ["code"], unique=True)
    op.create_index("ix_promotions_event_id", "promotions", ["event_id"])

    # Transactions table
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("promotion_id", sa.Integer(), sa.ForeignKey("promotions.id"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("total_amount", sa.Integer(), nullable=False),
        sa.Column("points_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("final_amount", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("payment_proof", sa.String(1024), nullable=True),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default=sa.text("'WAITING_PAYMENT'")),
        sa.Column("payment_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmation_deadline", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("quantity > 0", name="check_transaction_quantity_positive"),
        sa.CheckConstraint("points_used >= 0", name="check_points_used_non_negative"),
        sa.CheckConstraint("final_amount >= 0", name="check_final_amount_non_negative"),
        sa.CheckConstraint(
            "status IN ('WAITING_PAYMENT', 'WAITING_CONFIRMATION', 'DONE', 'CANCELLED', 'REJECTED', 'EXPIRED')",
            name="check_transaction_status",
        ),
    )
    op.create_index("ix_transactions_id", "transactions", ["id"])
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
    op.create_index("ix_transactions_event_id", "transactions", ["event_id"])
    # One active registration per (user, event). Released rows don't count.
    op.create_index(
        "uq_transactions_active_user_event",
        "transactions",
        ["user_id", "event_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('WAITING_PAYMENT', 'WAITING_CONFIRMATION', 'DONE')"),
    )
    # Expiry sweeps: WHERE status = ... AND <deadline> < now
    op.create_index(
        "ix_transactions_status_payment_deadline", "transactions", ["status", "payment_deadline"]
    )
    op.create_index(
        "ix_transactions_status_confirmation_deadline",
        "transactions",
        ["status", "confirmation_deadline"],
    )


def downgrade() -> None:
    op.drop_table("transactions")
    op.drop_table("promotions")
    op.drop_table("events")
    op.drop_table("users")
