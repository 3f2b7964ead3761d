"""
routes/expenses.py — Expense route handlers.

Registered at url_prefix=/api/v1 (not /api/v1/expenses) because this blueprint
owns BOTH the plan-scoped path (/plans/:id/expenses) and the expense-ID
paths (/expenses/:id).

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - _serialize_expense() is a pure data-shape helper — not business logic.

Endpoints:
  POST   /expenses              → 201  create expense + contributions
  GET    /plans/:id/expenses    → 200  list a plan's expenses
  GET    /expenses/:id          → 200  get expense + contributions
  PATCH  /expenses/:id          → 200  partial update (re-splits when needed)
  DELETE /expenses/:id          → 200  delete expense and its contributions
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from holiday_ledger.app.extensions import db
from holiday_ledger.app.middleware.auth_middleware import optional_auth, require_auth
from holiday_ledger.app.models.expense import Expense
from holiday_ledger.app.schemas.expense_schema import CreateExpenseSchema, PatchExpenseSchema
from holiday_ledger.app.services import expense_service
from holiday_ledger.app.services.ledger_service import serialize_contribution

expenses_bp = Blueprint("expenses", __name__)


# ── Serialization helper ───────────────────────────────────────────────────
# Pure data-shaping. Amounts are ints in the smallest currency unit.

def _serialize_expense(expense: Expense) -> dict:
    contributions = list(expense.contributions)
    return {
        "id": expense.id,
        "plan_id": expense.plan_id,
        "description": expense.description,
        "total": expense.total,
        "category": expense.category.value if expense.category else None,
        "collector_id": expense.collector_id,
        "version": expense.version,
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
        "updated_at": expense.updated_at.isoformat() if expense.updated_at else None,
        "amount_paid": sum(c.amount_paid for c in contributions),
        "remaining": sum(c.remaining for c in contributions),
        "contributions": [serialize_contribution(c) for c in contributions],
    }


# ── Route handlers ─────────────────────────────────────────────────────────

@expenses_bp.route("/expenses", methods=["POST"])
@require_auth
def create_expense():
    """POST /expenses — Record an expense and split it among participants."""
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.create_expense(
        data=data,
        session=db.session,
        rounding_unit=current_app.config["SPLIT_ROUNDING_UNIT"],
        actor_id=g.actor_id,
    )
    db.session.commit()
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 201


@expenses_bp.route("/plans/<int:plan_id>/expenses", methods=["GET"])
@optional_auth
def list_expenses(plan_id: int):
    """GET /plans/:id/expenses — A plan's expenses, newest first."""
    expenses = expense_service.list_expenses(plan_id=plan_id, session=db.session)
    return jsonify({
        "data": [_serialize_expense(e) for e in expenses],
        "warnings": [],
    }), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@optional_auth
def get_expense(expense_id: int):
    """GET /expenses/:id — Expense detail including contributions."""
    expense = expense_service.get_expense(expense_id=expense_id, session=db.session)
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["PATCH"])
@require_auth
def update_expense(expense_id: int):
    """
    PATCH /expenses/:id — Partial update.
    A new total or participant list re-splits the full total.
    """
    data = PatchExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.update_expense(
        expense_id=expense_id,
        data=data,
        session=db.session,
        rounding_unit=current_app.config["SPLIT_ROUNDING_UNIT"],
        actor_id=g.actor_id,
    )
    db.session.commit()
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: int):
    """
    DELETE /expenses/:id — Delete an expense and its contributions.
    Payment history rows are kept.
    """
    summary = expense_service.delete_expense(
        expense_id=expense_id,
        session=db.session,
        actor_id=g.actor_id,
    )
    db.session.commit()
    return jsonify({"data": {"deleted": True, **summary}, "warnings": []}), 200
