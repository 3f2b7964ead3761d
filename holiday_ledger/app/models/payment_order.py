"""
models/payment_order.py — PaymentOrder and PaymentOrderItem table definitions.

A PaymentOrder is created at checkout and maps one gateway order id to the
contributions it was created to settle. The service fee is fixed here at
checkout time; reconciliation never recomputes it from the notification.

Status transitions (pending -> success | failed) are made only by
services/reconciliation_service.py. Terminal states are absorbing.
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
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from holiday_ledger.app.extensions import db
from holiday_ledger.app.models.enums import OrderStatus, enum_values


class PaymentOrder(db.Model):
    __tablename__ = "payment_orders"

    __table_args__ = (
        CheckConstraint("net_amount > 0", name="ck_payment_orders_net_positive"),
        CheckConstraint("service_fee >= 0", name="ck_payment_orders_fee_nonnegative"),
        CheckConstraint(
            "gross_amount = net_amount + service_fee",
            name="ck_payment_orders_gross_sum",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # Gateway order id, e.g. ORDER-12-7-1718000000000.
    order_ref: Mapped[str] = mapped_column(
        String(120),
        nullable=False,
        unique=True,
    )

    plan_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # Plain int: the payer may later be removed from the plan.
    participant_id: Mapped[int] = mapped_column(Integer, nullable=False)

    net_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    service_fee: Mapped[int] = mapped_column(BigInteger, nullable=False)
    gross_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        Enum(
            OrderStatus,
            name="order_status",
            native_enum=False,
            create_constraint=True,
            length=16,
            values_callable=enum_values,
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        server_default=OrderStatus.PENDING.value,
    )

    # Last raw transaction_status received from the gateway.
    transaction_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    transaction_ref: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # Snap checkout session returned by the gateway when the order was opened.
    snap_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    redirect_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # Net funds left over after every targeted contribution was settled.
    overpayment: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        server_default="0",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    items: Mapped[list["PaymentOrderItem"]] = relationship(
        "PaymentOrderItem",
        back_populates="order",
        order_by="PaymentOrderItem.contribution_id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def contribution_ids(self) -> list[int]:
        return [item.contribution_id for item in self.items]

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<PaymentOrder id={self.id} "
            f"order_ref={self.order_ref!r} "
            f"status={self.status.value} "
            f"gross={self.gross_amount}>"
        )


class PaymentOrderItem(db.Model):
    __tablename__ = "payment_order_items"

    __table_args__ = (
        UniqueConstraint(
            "order_id", "contribution_id",
            name="uq_payment_order_items_order_contribution",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    order_id: Mapped[int] = mapped_column(
        ForeignKey("payment_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # CASCADE: a contribution removed by a re-split drops out of open orders.
    contribution_id: Mapped[int] = mapped_column(
        ForeignKey("contributions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Remaining due at checkout time, shown on the gateway's item list.
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    order: Mapped[PaymentOrder] = relationship(
        "PaymentOrder",
        back_populates="items",
    )

    contribution: Mapped["Contribution"] = relationship(  # noqa: F821
        "Contribution",
        back_populates="order_items",
    )
