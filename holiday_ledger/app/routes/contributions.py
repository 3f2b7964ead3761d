"""
routes/contributions.py — Contribution snapshot, manual payments and
payment history.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries.

Special: record_manual_payment returns (Contribution, warnings[]). An
OVERPAID_CONTRIBUTION warning does not block the request; status stays 200.

Endpoints:
  GET   /plans/:id/contributions              → 200  per-participant due/paid snapshot
  POST  /contributions/:id/manual-payment     → 200  set paid amount (cash/transfer)
  GET   /plans/:id/payment-history            → 200  payment events, newest first
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from holiday_ledger.app.extensions import db
from holiday_ledger.app.middleware.auth_middleware import optional_auth, require_auth
from holiday_ledger.app.schemas.contribution_schema import (
    ManualPaymentSchema,
    PaymentHistoryQuerySchema,
)
from holiday_ledger.app.services import contribution_service
from holiday_ledger.app.services.ledger_service import serialize_contribution, serialize_event

contributions_bp = Blueprint("contributions", __name__)


@contributions_bp.route("/plans/<int:plan_id>/contributions", methods=["GET"])
@optional_auth
def get_snapshot(plan_id: int):
    """GET /plans/:id/contributions — Current due/paid position per participant."""
    snapshot = contribution_service.get_snapshot(plan_id=plan_id, session=db.session)
    return jsonify({"data": snapshot, "warnings": []}), 200


@contributions_bp.route("/contributions/<int:contribution_id>/manual-payment", methods=["POST"])
@require_auth
def record_manual_payment(contribution_id: int):
    """
    POST /contributions/:id/manual-payment — Record cash or transfer payment.
    `amount` replaces the contribution's paid amount.
    """
    data = ManualPaymentSchema().load(request.get_json(force=True) or {})
    contribution, warnings = contribution_service.record_manual_payment(
        contribution_id=contribution_id,
        amount=data["amount"],
        session=db.session,
        note=data.get("note"),
        actor_id=g.actor_id,
    )
    db.session.commit()
    return jsonify({"data": serialize_contribution(contribution), "warnings": warnings}), 200


@contributions_bp.route("/plans/<int:plan_id>/payment-history", methods=["GET"])
@optional_auth
def get_payment_history(plan_id: int):
    """GET /plans/:id/payment-history — Audit log of ledger changes."""
    query = PaymentHistoryQuerySchema().load(request.args.to_dict())
    events = contribution_service.get_history(
        plan_id=plan_id,
        session=db.session,
        contribution_id=query["contribution_id"],
        participant_id=query["participant_id"],
        limit=query["limit"],
    )
    return jsonify({
        "data": [serialize_event(e) for e in events],
        "warnings": [],
    }), 200
