"""
models/expense.py — Expense table definition.

No business logic. No imports from services or routes.

Key design points:
  - `total` is a BigInteger in the smallest currency unit — never Float.
  - sum(contributions.amount_due) == total at commit time. The split engine
    maintains it; migration 002 adds a deferred PostgreSQL trigger as the
    last line of defence.
  - `collector_id` names the participant who gathers the money for the
    expense; the contributions view groups by it.
  - `version` is SQLAlchemy's optimistic-concurrency counter. Every re-split
    bumps updated_at, so two writers racing on the same expense cannot both
    commit: the loser gets StaleDataError (mapped to CONFLICT, 409).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from holiday_ledger.app.extensions import db
from holiday_ledger.app.models.enums import ExpenseCategory, enum_values


class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("total >= 0", name="ck_expenses_total_nonnegative"),
        CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    plan_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )

    description: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    total: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    # Participant who gathers the money for this expense. SET NULL when they
    # leave the plan.
    collector_id: Mapped[int | None] = mapped_column(
        ForeignKey("participants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    category: Mapped[ExpenseCategory | None] = mapped_column(
        Enum(
            ExpenseCategory,
            name="expense_category",
            native_enum=False,
            create_constraint=True,
            length=32,
            values_callable=enum_values,
        ),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    # ── Relationships ──────────────────────────────────────────────────────

    # Creation order (id) is the remainder-placement and payment tie-break order.
    contributions: Mapped[list["Contribution"]] = relationship(  # noqa: F821
        "Contribution",
        back_populates="expense",
        order_by="Contribution.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"plan_id={self.plan_id} "
            f"total={self.total} "
            f"version={self.version}>"
        )
