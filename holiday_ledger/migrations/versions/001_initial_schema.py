"""Initial schema — ledger tables, constraints, and indexes.

Revision: 001_initial_schema
Created:  2026-10-19

Creates the HolidayLedger schema: participants, expenses, contributions,
payment_events, payment_orders, payment_order_items.

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order:
  1. Tables in FK dependency order (participants, expenses → contributions
     → payment_orders → payment_order_items; payment_events has no FKs)
  2. Indexes

Enumerations are stored as VARCHAR + CHECK (the models declare
Enum(native_enum=False, create_constraint=True)), so there are no PostgreSQL
enum types to create or drop.

ON DELETE policies:
  contributions.expense_id             → CASCADE   (owned by the expense)
  contributions.participant_id         → RESTRICT  (roster_service removes them first)
  payment_order_items.order_id         → CASCADE
  payment_order_items.contribution_id  → CASCADE   (re-split drops it from open orders)
  payment_events.*                     → no FKs    (history outlives what it describes)
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def _in(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


_CATEGORIES = ("accommodation", "transport", "food", "activity", "shopping", "other")
_METHODS = ("manual", "gateway")
_ACTIONS = ("due_assigned", "payment", "manual_override", "removed")
_ORDER_STATUSES = ("pending", "success", "failed")


def upgrade() -> None:

    # ── Step 1: participants ───────────────────────────────────────────────
    # plan_id is a plain integer: plans live in the planning service.

    op.create_table(
        "participants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_participants"),
        sa.CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_participants_name_nonempty",
        ),
    )

    # ── Step 2: expenses ───────────────────────────────────────────────────
    # version: optimistic-concurrency counter (SQLAlchemy version_id_col).

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("total", sa.BigInteger(), nullable=False),
        sa.Column("category", sa.String(32), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("total >= 0", name="ck_expenses_total_nonnegative"),
        sa.CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
        sa.CheckConstraint(_in("category", _CATEGORIES), name="expense_category"),
    )

    # ── Step 3: contributions ──────────────────────────────────────────────
    # UNIQUE(expense_id, participant_id): one share per participant per expense.

    op.create_table(
        "contributions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE", name="fk_contributions_expense"),
            nullable=False,
        ),
        sa.Column(
            "participant_id",
            sa.Integer(),
            sa.ForeignKey(
                "participants.id",
                ondelete="RESTRICT",
                name="fk_contributions_participant",
            ),
            nullable=False,
        ),
        sa.Column("amount_due", sa.BigInteger(), nullable=False),
        sa.Column("amount_paid", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(16), nullable=True),
        sa.Column("order_ref", sa.String(120), nullable=True),
        sa.Column("transaction_ref", sa.String(120), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_contributions"),
        sa.UniqueConstraint(
            "expense_id", "participant_id",
            name="uq_contributions_expense_participant",
        ),
        sa.CheckConstraint("amount_due >= 0", name="ck_contributions_due_nonnegative"),
        sa.CheckConstraint("amount_paid >= 0", name="ck_contributions_paid_nonnegative"),
        sa.CheckConstraint(_in("payment_method", _METHODS), name="payment_method"),
    )

    # ── Step 4: payment_events ─────────────────────────────────────────────
    # Append-only. No FKs so rows survive deletion of the contribution,
    # participant or expense they describe.

    op.create_table(
        "payment_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("expense_id", sa.Integer(), nullable=False),
        sa.Column("contribution_id", sa.Integer(), nullable=False),
        sa.Column("participant_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("previous_amount", sa.BigInteger(), nullable=False),
        sa.Column("new_amount", sa.BigInteger(), nullable=False),
        sa.Column("change_amount", sa.BigInteger(), nullable=False),
        sa.Column("payment_method", sa.String(16), nullable=True),
        sa.Column("order_ref", sa.String(120), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_payment_events"),
        sa.CheckConstraint(_in("action", _ACTIONS), name="payment_action"),
        sa.CheckConstraint(
            _in("payment_method", _METHODS),
            name="payment_event_method",
        ),
    )

    # ── Step 5: payment_orders ─────────────────────────────────────────────
    # gross = net + fee is fixed at checkout; the reconciler never recomputes it.

    op.create_table(
        "payment_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_ref", sa.String(120), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("participant_id", sa.Integer(), nullable=False),
        sa.Column("net_amount", sa.BigInteger(), nullable=False),
        sa.Column("service_fee", sa.BigInteger(), nullable=False),
        sa.Column("gross_amount", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("transaction_status", sa.String(32), nullable=True),
        sa.Column("transaction_ref", sa.String(120), nullable=True),
        sa.Column("overpayment", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_payment_orders"),
        sa.UniqueConstraint("order_ref", name="uq_payment_orders_order_ref"),
        sa.CheckConstraint("net_amount > 0", name="ck_payment_orders_net_positive"),
        sa.CheckConstraint("service_fee >= 0", name="ck_payment_orders_fee_nonnegative"),
        sa.CheckConstraint(
            "gross_amount = net_amount + service_fee",
            name="ck_payment_orders_gross_sum",
        ),
        sa.CheckConstraint(_in("status", _ORDER_STATUSES), name="order_status"),
    )

    # ── Step 6: payment_order_items ────────────────────────────────────────

    op.create_table(
        "payment_order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "order_id",
            sa.Integer(),
            sa.ForeignKey(
                "payment_orders.id",
                ondelete="CASCADE",
                name="fk_payment_order_items_order",
            ),
            nullable=False,
        ),
        sa.Column(
            "contribution_id",
            sa.Integer(),
            sa.ForeignKey(
                "contributions.id",
                ondelete="CASCADE",
                name="fk_payment_order_items_contribution",
            ),
            nullable=False,
        ),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_payment_order_items"),
        sa.UniqueConstraint(
            "order_id", "contribution_id",
            name="uq_payment_order_items_order_contribution",
        ),
    )

    # ── Step 7: Indexes ────────────────────────────────────────────────────
    # Names match the ones SQLAlchemy derives from index=True on the models.

    op.create_index("ix_participants_plan_id", "participants", ["plan_id"])
    op.create_index("ix_expenses_plan_id", "expenses", ["plan_id"])
    op.create_index("ix_contributions_expense_id", "contributions", ["expense_id"])
    op.create_index("ix_contributions_participant_id", "contributions", ["participant_id"])
    op.create_index("ix_contributions_order_ref", "contributions", ["order_ref"])
    op.create_index("ix_payment_events_plan_id", "payment_events", ["plan_id"])
    op.create_index("ix_payment_events_expense_id", "payment_events", ["expense_id"])
    op.create_index("ix_payment_events_contribution_id", "payment_events", ["contribution_id"])
    op.create_index("ix_payment_events_participant_id", "payment_events", ["participant_id"])
    op.create_index("ix_payment_orders_plan_id", "payment_orders", ["plan_id"])
    op.create_index("ix_payment_order_items_order_id", "payment_order_items", ["order_id"])
    op.create_index(
        "ix_payment_order_items_contribution_id",
        "payment_order_items",
        ["contribution_id"],
    )


def downgrade() -> None:
    """Drops everything in reverse dependency order."""
    op.drop_table("payment_order_items")
    op.drop_table("payment_orders")
    op.drop_table("payment_events")
    op.drop_table("contributions")
    op.drop_table("expenses")
    op.drop_table("participants")
