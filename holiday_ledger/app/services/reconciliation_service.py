"""
services/reconciliation_service.py — Payment Reconciler.

Applies one payment-gateway notification to the ledger, idempotently.

Order state machine:
    pending -> success | failed        (terminal states are absorbing)

Notification handling:
  1. Verify the signature: sha512(order_id + status_code + gross_amount +
     server_key), hex encoded. Mismatch → INVALID_SIGNATURE (403), no state
     change.
  2. Lock the order row (SELECT ... FOR UPDATE) → ORDER_NOT_FOUND (404).
     The lock serialises duplicate deliveries of the same notification.
  3. Terminal order → accepted, nothing applied (duplicate delivery).
  4. Map the gateway status:
         capture + fraud accept → success
         settlement             → success
         cancel / deny / expire → failed
         pending                → stays pending
         anything else          → no-op, stays pending
  5. success: net = gross - service_fee (the fee fixed at checkout), then
     walk the order's outstanding contributions oldest-first crediting
     min(remaining due, remaining net). Funds left after every target is
     settled are stored on the order as `overpayment` and not applied
     anywhere else.
  6. Mark the order terminal.

INVALID_SIGNATURE and ORDER_NOT_FOUND are 4xx so the gateway's retry policy
sees a client error. Everything else answers {"accepted": true}, which stops
further retries.

Layer rules:
  - No Flask imports. Session and server key are injected.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from holiday_ledger.app.errors import AppError, ErrorCode
from holiday_ledger.app.models.enums import OrderStatus, PaymentMethod
from holiday_ledger.app.models.payment_order import PaymentOrder
from holiday_ledger.app.services.ledger_service import ContributionLedger
from holiday_ledger.app.services.money import parse_gateway_amount

logger = logging.getLogger(__name__)

_SUCCESS_STATUSES = frozenset({"settlement"})
_FAILED_STATUSES = frozenset({"cancel", "deny", "expire"})


# ── Pure helpers ───────────────────────────────────────────────────────────

def compute_signature(
        order_id: str,
        status_code: str,
        gross_amount: str,
        server_key: str,
) -> str:
    """Gateway signature: hex sha512 of the concatenated raw string values."""
    payload = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(payload.encode("utf-8")).hexdigest()


def verify_signature(notification: dict, server_key: str) -> bool:
    """Constant-time comparison of the received signature_key."""
    if not server_key:
        return False
    expected = compute_signature(
        str(notification.get("order_id", "")),
        str(notification.get("status_code", "")),
        str(notification.get("gross_amount", "")),
        server_key,
    )
    received = str(notification.get("signature_key") or "")
    return hmac.compare_digest(expected, received.lower())


def map_transaction_status(
        transaction_status: str | None,
        fraud_status: str | None = None,
) -> OrderStatus:
    """
    Maps a raw gateway status to the order state it leads to.

    PENDING means "no ledger mutation": the gateway's own pending state, a
    capture that is not fraud-accepted, and any unrecognised status.
    """
    status = (transaction_status or "").lower()
    if status == "capture":
        if (fraud_status or "").lower() == "accept":
            return OrderStatus.SUCCESS
        return OrderStatus.PENDING
    if status in _SUCCESS_STATUSES:
        return OrderStatus.SUCCESS
    if status in _FAILED_STATUSES:
        return OrderStatus.FAILED
    return OrderStatus.PENDING


# ── Reconciler ─────────────────────────────────────────────────────────────

class PaymentReconciler:

    def __init__(
            self,
            session: Session,
            server_key: str,
            ledger: ContributionLedger | None = None,
    ) -> None:
        self.session = session
        self.server_key = server_key
        self.ledger = ledger if ledger is not None else ContributionLedger(session)

    def handle_notification(self, notification: dict) -> dict:
        """
        Applies one gateway notification.

        Args:
            notification: the validated notification payload
                (order_id, status_code, gross_amount, signature_key,
                transaction_status, fraud_status, transaction_id).

        Returns:
            {
              "accepted": True,
              "order_id": str,
              "status": "pending" | "success" | "failed",
              "applied": bool,       # whether this call changed any state
              "duplicate": bool,     # order was already terminal
              "credited": [{"contribution_id", "amount"}, ...],
              "overpayment": int,
            }

        Raises:
            AppError(INVALID_SIGNATURE, 403)
            AppError(ORDER_NOT_FOUND, 404)
            AppError(INVALID_AMOUNT, 400) — gross amount unparsable or below the fee.
        """
        order_id = notification.get("order_id")

        if not verify_signature(notification, self.server_key):
            logger.warning("Rejected gateway notification for %s: bad signature", order_id)
            raise AppError(
                ErrorCode.INVALID_SIGNATURE,
                "Notification signature does not match.",
                403,
                field="signature_key",
            )

        order = self._lock_order(order_id)

        if order.status.is_terminal:
            logger.warning(
                "Duplicate notification for order %s ignored (already %s, got %s)",
                order.order_ref,
                order.status.value,
                notification.get("transaction_status"),
            )
            return self._result(order, applied=False, duplicate=True)

        transaction_status = notification.get("transaction_status")
        target = map_transaction_status(transaction_status, notification.get("fraud_status"))
        order.transaction_status = transaction_status
        if notification.get("transaction_id"):
            order.transaction_ref = notification["transaction_id"]

        if target is OrderStatus.SUCCESS:
            gross = parse_gateway_amount(notification.get("gross_amount"))
            credited = self._apply_success(order, gross)
            self.session.flush()
            return self._result(order, applied=True, credited=credited)

        if target is OrderStatus.FAILED:
            order.status = OrderStatus.FAILED
            order.resolved_at = datetime.now(timezone.utc)
            self.session.flush()
            logger.info(
                "Order %s failed (%s); no contributions changed",
                order.order_ref,
                transaction_status,
            )
            return self._result(order, applied=True)

        if (transaction_status or "").lower() not in ("pending", "capture"):
            logger.warning(
                "Unrecognised transaction status %r for order %s; left pending",
                transaction_status,
                order.order_ref,
            )
        self.session.flush()
        return self._result(order, applied=False)

    # ── Internal ───────────────────────────────────────────────────────────

    def _lock_order(self, order_id) -> PaymentOrder:
        order = self.session.execute(
            select(PaymentOrder)
            .where(PaymentOrder.order_ref == order_id)
            .with_for_update()
        ).scalar_one_or_none()

        if order is None:
            logger.warning("Gateway notification for unknown order %s", order_id)
            raise AppError(
                ErrorCode.ORDER_NOT_FOUND,
                f"Order {order_id} does not exist.",
                404,
                field="order_id",
            )
        return order

    def _apply_success(self, order: PaymentOrder, gross: int) -> list[dict]:
        if gross != order.gross_amount:
            logger.warning(
                "Order %s: gateway gross %s differs from checkout gross %s",
                order.order_ref, gross, order.gross_amount,
            )

        net = gross - order.service_fee
        if net < 0:
            raise AppError(
                ErrorCode.INVALID_AMOUNT,
                f"Gross amount {gross} is below the service fee {order.service_fee}.",
                400,
                field="gross_amount",
            )

        target_ids = order.contribution_ids
        self.ledger.lock_expenses_for(target_ids)

        remaining_net = net
        credited = []
        for contribution in self.ledger.get_outstanding_among(target_ids):
            if remaining_net <= 0:
                break
            amount = min(contribution.remaining, remaining_net)
            self.ledger.credit(
                contribution.id,
                amount,
                PaymentMethod.GATEWAY,
                correlation_token=order.order_ref,
                transaction_ref=order.transaction_ref,
            )
            remaining_net -= amount
            credited.append({"contribution_id": contribution.id, "amount": amount})

        order.overpayment = remaining_net
        order.status = OrderStatus.SUCCESS
        order.resolved_at = datetime.now(timezone.utc)

        if remaining_net > 0:
            logger.warning(
                "Order %s overpaid by %s after settling all targets; left unapplied",
                order.order_ref, remaining_net,
            )
        logger.info(
            "Order %s settled: net=%s credited=%s",
            order.order_ref, net, credited,
        )
        return credited

    @staticmethod
    def _result(
            order: PaymentOrder,
            applied: bool,
            duplicate: bool = False,
            credited: list[dict] | None = None,
    ) -> dict:
        return {
            "accepted": True,
            "order_id": order.order_ref,
            "status": order.status.value,
            "applied": applied,
            "duplicate": duplicate,
            "credited": credited or [],
            "overpayment": order.overpayment,
        }
