"""
services/checkout_service.py — Gateway checkout (PaymentOrder creation).

A participant selects some of their contributions and pays them through the
payment gateway in one order:

    net   = sum(remaining due of the selected contributions)
    fee   = ceil((net * PAYMENT_FEE_RATE + PAYMENT_FIXED_FEE) / unit) * unit
    gross = net + fee

The fee is fixed on the order here. The reconciler later derives the net
amount from the notification's gross minus this stored fee, so a fee change
in configuration never alters an order already in flight.

Order ids follow the gateway-facing format ORDER-{plan}-{participant}-{ms}.

Once the order rows are flushed, the gateway opens a Snap checkout session
(services/gateway_client.py) and its token and redirect URL are stored on
the order. A gateway failure raises before the route commits, so the order
and its items roll back with it.

Layer rules:
  - No Flask imports. Fee settings and the gateway client arrive as
    arguments from the route.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from holiday_ledger.app.errors import AppError, ErrorCode
from holiday_ledger.app.models.participant import Participant
from holiday_ledger.app.models.payment_order import PaymentOrder, PaymentOrderItem
from holiday_ledger.app.services.gateway_client import SnapGateway
from holiday_ledger.app.services.ledger_service import ContributionLedger
from holiday_ledger.app.services.money import compute_service_fee

logger = logging.getLogger(__name__)


def initiate_checkout(
        participant_id: int,
        contribution_ids: list[int],
        session: Session,
        fee_rate: Decimal,
        fixed_fee: int,
        fee_rounding_unit: int,
        gateway: SnapGateway,
) -> PaymentOrder:
    """
    Creates a pending PaymentOrder covering the participant's selected
    contributions that still have something left to pay.

    Contributions that belong to another participant are ignored, as are
    ones already settled (they are not added to the order).

    Raises:
        AppError(PARTICIPANT_NOT_FOUND, 404)
        AppError(CONTRIBUTION_NOT_FOUND, 404) — none of the ids belong to the participant.
        AppError(NO_REMAINING_PAYMENT, 422)   — everything selected is already settled.
        AppError(GATEWAY_UNAVAILABLE, 502)    — Snap did not open a session.
    """
    participant = session.get(Participant, participant_id)
    if participant is None:
        raise AppError(
            ErrorCode.PARTICIPANT_NOT_FOUND,
            f"Participant {participant_id} does not exist.",
            404,
            field="participant_id",
        )

    ledger = ContributionLedger(session)
    ledger.lock_expenses_for(contribution_ids)

    selected = set(contribution_ids)
    owned = [
        c for c in ledger.contributions_for_participant(participant_id)
        if c.id in selected
    ]
    if not owned:
        raise AppError(
            ErrorCode.CONTRIBUTION_NOT_FOUND,
            f"None of the selected contributions belong to participant {participant_id}.",
            404,
            field="contribution_ids",
        )

    payable = [c for c in owned if c.remaining > 0]
    if not payable:
        raise AppError(
            ErrorCode.NO_REMAINING_PAYMENT,
            "All selected contributions are already paid.",
            422,
            field="contribution_ids",
        )

    net = sum(c.remaining for c in payable)
    fee = compute_service_fee(net, fee_rate, fixed_fee, fee_rounding_unit)

    order = PaymentOrder(
        order_ref=_new_order_ref(participant.plan_id, participant_id, session),
        plan_id=participant.plan_id,
        participant_id=participant_id,
        net_amount=net,
        service_fee=fee,
        gross_amount=net + fee,
    )
    order.items = [
        PaymentOrderItem(contribution_id=c.id, amount=c.remaining)
        for c in payable
    ]
    session.add(order)
    session.flush()

    ledger.attach_order(payable, order.order_ref)

    session_info = gateway.create_transaction(
        order,
        customer_name=participant.name,
        item_names={c.id: c.expense.description for c in payable},
    )
    order.snap_token = session_info["token"]
    order.redirect_url = session_info["redirect_url"]
    session.flush()

    logger.info(
        "Checkout %s for participant %s: net=%s fee=%s gross=%s contributions=%s",
        order.order_ref,
        participant_id,
        net,
        fee,
        order.gross_amount,
        [c.id for c in payable],
    )
    return order


def get_order(order_ref: str, session: Session) -> PaymentOrder:
    """Returns the PaymentOrder or raises ORDER_NOT_FOUND (404)."""
    order = session.execute(
        select(PaymentOrder).where(PaymentOrder.order_ref == order_ref)
    ).scalar_one_or_none()
    if order is None:
        raise AppError(
            ErrorCode.ORDER_NOT_FOUND,
            f"Order {order_ref} does not exist.",
            404,
        )
    return order


# ── Private helpers ────────────────────────────────────────────────────────

def _new_order_ref(plan_id: int, participant_id: int, session: Session) -> str:
    """ORDER-{plan}-{participant}-{epoch ms}, bumped by 1 ms until unused."""
    millis = int(time.time() * 1000)
    while True:
        candidate = f"ORDER-{plan_id}-{participant_id}-{millis}"
        taken = session.execute(
            select(PaymentOrder.id).where(PaymentOrder.order_ref == candidate)
        ).first()
        if taken is None:
            return candidate
        millis += 1

