"""
models/payment_event.py — PaymentEvent (append-only history) table definition.

Rows are written by ContributionLedger on every mutation and never updated
or deleted. The referenced ids are plain integers, not foreign keys, so the
history of a removed participant or a deleted expense stays intact.

Consistency rule: for a contribution, the sum of change_amount over its
PAYMENT and MANUAL_OVERRIDE events equals its current amount_paid.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from holiday_ledger.app.extensions import db
from holiday_ledger.app.models.enums import PaymentAction, PaymentMethod, enum_values


class PaymentEvent(db.Model):
    __tablename__ = "payment_events"

    id: Mapped[int] = mapped_column(primary_key=True)

    plan_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    expense_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    contribution_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    participant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    action: Mapped[PaymentAction] = mapped_column(
        Enum(
            PaymentAction,
            name="payment_action",
            native_enum=False,
            create_constraint=True,
            length=32,
            values_callable=enum_values,
        ),
        nullable=False,
    )

    previous_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    new_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    change_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    payment_method: Mapped[PaymentMethod | None] = mapped_column(
        Enum(
            PaymentMethod,
            name="payment_event_method",
            native_enum=False,
            create_constraint=True,
            length=16,
            values_callable=enum_values,
        ),
        nullable=True,
    )

    order_ref: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # Caller id from the bearer token; NULL for gateway-driven events.
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<PaymentEvent id={self.id} "
            f"contribution_id={self.contribution_id} "
            f"action={self.action.value} "
            f"change={self.change_amount}>"
        )
