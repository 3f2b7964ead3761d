"""
routes/payments.py — Gateway checkout and notification webhook.

Registered at url_prefix=/api/v1/payments.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries.

The notification endpoint is called by the payment gateway, not by a user:
  - No @require_auth. The payload signature is the authentication.
  - Any accepted notification answers 200, including duplicates and statuses
    that change nothing, so the gateway stops retrying.
  - INVALID_SIGNATURE (403) and ORDER_NOT_FOUND (404) are client errors on
    purpose; the gateway's retry policy handles them.

Endpoints:
  POST /checkout            → 201  create a pending gateway order + Snap session
  GET  /orders/:order_id    → 200  order status
  POST /notification        → 200  gateway webhook
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from holiday_ledger.app.errors import WarningCode
from holiday_ledger.app.extensions import db
from holiday_ledger.app.middleware.auth_middleware import require_auth
from holiday_ledger.app.models.payment_order import PaymentOrder
from holiday_ledger.app.schemas.payment_schema import CheckoutSchema, GatewayNotificationSchema
from holiday_ledger.app.services import checkout_service
from holiday_ledger.app.services.gateway_client import SnapGateway
from holiday_ledger.app.services.reconciliation_service import PaymentReconciler

payments_bp = Blueprint("payments", __name__)


# ── Serialization helper ───────────────────────────────────────────────────

def _serialize_order(order: PaymentOrder) -> dict:
    return {
        "id": order.id,
        "order_id": order.order_ref,
        "plan_id": order.plan_id,
        "participant_id": order.participant_id,
        "net_amount": order.net_amount,
        "service_fee": order.service_fee,
        "gross_amount": order.gross_amount,
        "status": order.status.value,
        "transaction_status": order.transaction_status,
        "snap_token": order.snap_token,
        "redirect_url": order.redirect_url,
        "overpayment": order.overpayment,
        "items": [
            {"contribution_id": item.contribution_id, "amount": item.amount}
            for item in order.items
        ],
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "resolved_at": order.resolved_at.isoformat() if order.resolved_at else None,
    }


def _gateway() -> SnapGateway:
    config = current_app.config
    return SnapGateway(
        server_key=config["PAYMENT_GATEWAY_SERVER_KEY"],
        client_key=config["PAYMENT_GATEWAY_CLIENT_KEY"],
        is_production=config["PAYMENT_GATEWAY_IS_PRODUCTION"],
        callback_base_url=config.get("PAYMENT_CALLBACK_BASE_URL") or None,
    )


# ── Route handlers ─────────────────────────────────────────────────────────

@payments_bp.route("/checkout", methods=["POST"])
@require_auth
def checkout():
    """
    POST /payments/checkout — Create a gateway order for a participant's
    selected contributions. The service fee is computed and fixed here, and
    the response carries the Snap token and redirect URL for the payment page.
    """
    data = CheckoutSchema().load(request.get_json(force=True) or {})
    order = checkout_service.initiate_checkout(
        participant_id=data["participant_id"],
        contribution_ids=data["contribution_ids"],
        session=db.session,
        fee_rate=current_app.config["PAYMENT_FEE_RATE"],
        fixed_fee=current_app.config["PAYMENT_FIXED_FEE"],
        fee_rounding_unit=current_app.config["PAYMENT_FEE_ROUNDING_UNIT"],
        gateway=_gateway(),
    )
    db.session.commit()
    return jsonify({"data": _serialize_order(order), "warnings": []}), 201


@payments_bp.route("/orders/<string:order_ref>", methods=["GET"])
@require_auth
def get_order(order_ref: str):
    """GET /payments/orders/:order_id — Current state of a gateway order."""
    order = checkout_service.get_order(order_ref=order_ref, session=db.session)
    return jsonify({"data": _serialize_order(order), "warnings": []}), 200


@payments_bp.route("/notification", methods=["POST"])
def handle_notification():
    """POST /payments/notification — Payment gateway webhook."""
    data = GatewayNotificationSchema().load(request.get_json(force=True, silent=True) or {})
    reconciler = PaymentReconciler(
        session=db.session,
        server_key=current_app.config["PAYMENT_GATEWAY_SERVER_KEY"],
    )
    result = reconciler.handle_notification(data)
    db.session.commit()

    warnings = []
    if result["applied"] and result["overpayment"] > 0:
        warnings.append({
            "code": WarningCode.OVERPAYMENT,
            "message": (
                f"{result['overpayment']} was paid beyond the order's outstanding "
                "dues and was not applied to any contribution."
            ),
        })
    return jsonify({"data": result, "warnings": warnings}), 200
