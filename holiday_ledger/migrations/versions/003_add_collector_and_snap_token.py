"""Add expense collectors and gateway checkout tokens.

Revision: 003_add_collector_and_snap_token
Created:  2026-10-19

  expenses.collector_id        participant who gathers the money for the
                               expense. ON DELETE SET NULL; roster_service
                               also clears it before deleting a participant.
  payment_orders.snap_token    token returned by the gateway's Snap API
  payment_orders.redirect_url  hosted payment page for that token

Append-only:
  This file must NEVER be edited after it has been applied to any database.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "003_add_collector_and_snap_token"
down_revision: str | None = "002_add_contribution_sum_trigger"
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:
    op.add_column(
        "expenses",
        sa.Column(
            "collector_id",
            sa.Integer(),
            sa.ForeignKey(
                "participants.id",
                ondelete="SET NULL",
                name="fk_expenses_collector",
            ),
            nullable=True,
        ),
    )
    op.create_index("ix_expenses_collector_id", "expenses", ["collector_id"])

    op.add_column("payment_orders", sa.Column("snap_token", sa.String(255), nullable=True))
    op.add_column("payment_orders", sa.Column("redirect_url", sa.String(512), nullable=True))


def downgrade() -> None:
    op.drop_column("payment_orders", "redirect_url")
    op.drop_column("payment_orders", "snap_token")
    op.drop_index("ix_expenses_collector_id", table_name="expenses")
    op.drop_column("expenses", "collector_id")
