"""
models/contribution.py — Contribution table definition.

A contribution is one participant's due/paid record against one expense.

No business logic beyond read-only derived properties. Mutations go through
services/ledger_service.ContributionLedger, never by direct field assignment
from routes or other services.

Key design points:
  - amount_due / amount_paid are BigInteger smallest-unit amounts — never Float.
  - UNIQUE(expense_id, participant_id): one contribution per participant per expense.
  - participant_id is ON DELETE RESTRICT: a participant cannot be deleted while
    they still hold contributions; roster_service removes those first.
  - amount_paid > amount_due is representable (manual override, or a later
    re-split lowering the due); the derived properties report it as overpaid.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from holiday_ledger.app.extensions import db
from holiday_ledger.app.models.enums import PaymentMethod, enum_values


class Contribution(db.Model):
    __tablename__ = "contributions"

    __table_args__ = (
        UniqueConstraint(
            "expense_id", "participant_id",
            name="uq_contributions_expense_participant",
        ),
        CheckConstraint("amount_due >= 0", name="ck_contributions_due_nonnegative"),
        CheckConstraint("amount_paid >= 0", name="ck_contributions_paid_nonnegative"),
        # Ids are never reused; payment_events refer to them after deletion.
        {"sqlite_autoincrement": True},
    )

    # Monotonic id doubles as creation order (oldest contributions served first).
    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    participant_id: Mapped[int] = mapped_column(
        ForeignKey("participants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    amount_due: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    amount_paid: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        server_default="0",
    )

    payment_method: Mapped[PaymentMethod | None] = mapped_column(
        Enum(
            PaymentMethod,
            name="payment_method",
            native_enum=False,
            create_constraint=True,
            length=16,
            values_callable=enum_values,
        ),
        nullable=True,
    )

    # Gateway order id of the latest checkout covering this contribution.
    order_ref: Mapped[str | None] = mapped_column(
        String(120),
        nullable=True,
        index=True,
    )

    transaction_ref: Mapped[str | None] = mapped_column(
        String(120),
        nullable=True,
    )

    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="contributions",
    )

    participant: Mapped["Participant"] = relationship(  # noqa: F821
        "Participant",
        back_populates="contributions",
    )

    order_items: Mapped[list["PaymentOrderItem"]] = relationship(  # noqa: F821
        "PaymentOrderItem",
        back_populates="contribution",
        cascade="all, delete-orphan",
    )

    # ── Derived, read-only ─────────────────────────────────────────────────

    @property
    def is_settled(self) -> bool:
        return self.amount_paid >= self.amount_due

    @property
    def remaining(self) -> int:
        return max(self.amount_due - self.amount_paid, 0)

    @property
    def overpaid(self) -> int:
        return max(self.amount_paid - self.amount_due, 0)

    @property
    def status(self) -> str:
        """unpaid / partial / settled, as shown on the contributions tab."""
        if self.amount_paid >= self.amount_due:
            return "settled"
        if self.amount_paid == 0:
            return "unpaid"
        return "partial"

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Contribution id={self.id} "
            f"expense_id={self.expense_id} "
            f"participant_id={self.participant_id} "
            f"due={self.amount_due} paid={self.amount_paid}>"
        )
