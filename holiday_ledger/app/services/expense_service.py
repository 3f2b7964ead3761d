"""
services/expense_service.py — Expense business logic.

Every expense is shared by at least one participant of its plan. Creating,
editing and deleting an expense keeps its contributions in step:

  - Create: the expense row is inserted, then split_service.split_expense
    opens one contribution per participant.
  - Update: description and category are plain edits. A new total or a new
    participant list re-splits the FULL total through split_service.
    Payments already made stay on the surviving contributions.
  - Delete: every contribution is removed through the ledger (REMOVED
    events keep the audit trail), then the expense row is deleted.

Validation that needs the database is done here, not in the schema:
  PARTICIPANT_NOT_IN_PLAN (422) — a participant id outside the expense's plan.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives plain ints and dicts; returns ORM objects or raises AppError.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from holiday_ledger.app.errors import AppError, ErrorCode
from holiday_ledger.app.models.expense import Expense
from holiday_ledger.app.services import split_service
from holiday_ledger.app.services.ledger_service import ContributionLedger
from holiday_ledger.app.services.money import DEFAULT_ROUNDING_UNIT
from holiday_ledger.app.services.participant_service import require_plan_participants

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    """Returns the Expense or raises EXPENSE_NOT_FOUND (404)."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
        )
    return expense


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        data: dict,
        session: Session,
        rounding_unit: int = DEFAULT_ROUNDING_UNIT,
        actor_id: int | None = None,
) -> Expense:
    """
    Creates an expense and its initial contributions.

    Args:
        data: validated CreateExpenseSchema output
              (plan_id, description, total, category, participant_ids,
              collector_id).

    Raises:
        AppError(NO_PARTICIPANTS, 422)
        AppError(PARTICIPANT_NOT_IN_PLAN, 422)
    """
    participant_ids = data["participant_ids"]
    if not participant_ids:
        raise AppError(
            ErrorCode.NO_PARTICIPANTS,
            "An expense must be shared by at least one participant.",
            422,
            field="participant_ids",
        )
    require_plan_participants(
        data["plan_id"],
        participant_ids,
        session,
        collector_id=data.get("collector_id"),
    )

    expense = Expense(
        plan_id=data["plan_id"],
        description=data["description"],
        total=data["total"],
        category=data.get("category"),
        collector_id=data.get("collector_id"),
    )
    session.add(expense)
    session.flush()  # populate expense.id before contributions reference it

    split_service.split_expense(
        expense,
        participant_ids,
        ContributionLedger(session),
        rounding_unit=rounding_unit,
        actor_id=actor_id,
    )

    logger.info(
        "Expense %s created in plan %s: total=%s participants=%s",
        expense.id, expense.plan_id, expense.total, participant_ids,
    )
    return expense


def list_expenses(plan_id: int, session: Session) -> list[Expense]:
    """A plan's expenses, newest first."""
    stmt = (
        select(Expense)
        .where(Expense.plan_id == plan_id)
        .order_by(Expense.created_at.desc(), Expense.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def get_expense(expense_id: int, session: Session) -> Expense:
    return _get_expense_or_404(expense_id, session)


def update_expense(
        expense_id: int,
        data: dict,
        session: Session,
        rounding_unit: int = DEFAULT_ROUNDING_UNIT,
        actor_id: int | None = None,
) -> Expense:
    """
    Partially updates an expense. Only keys present in `data` are applied.

    Re-split is triggered when `total` changes or `participant_ids` is given.
    Without `participant_ids` the current roster (creation order) is kept.

    Raises:
        AppError(EXPENSE_NOT_FOUND, 404)
        AppError(NO_PARTICIPANTS, 422)
        AppError(PARTICIPANT_NOT_IN_PLAN, 422)
    """
    # Participants are locked before the expense; see require_plan_participants.
    plan_id = _get_expense_or_404(expense_id, session).plan_id
    roster = data.get("participant_ids")
    require_plan_participants(
        plan_id,
        roster or [],
        session,
        collector_id=data.get("collector_id"),
    )

    ledger = ContributionLedger(session)
    expense = ledger.lock_expense(expense_id)

    if "description" in data:
        expense.description = data["description"]
    if "category" in data:
        expense.category = data["category"]
    if "collector_id" in data:
        expense.collector_id = data["collector_id"]

    total_changed = "total" in data and data["total"] != expense.total
    if total_changed:
        expense.total = data["total"]

    if total_changed or roster is not None:
        if roster is None:
            roster = [c.participant_id for c in ledger.contributions_for_expense(expense.id)]
        split_service.apply_roster(
            expense,
            roster,
            ledger,
            rounding_unit=rounding_unit,
            reason="Expense updated",
            actor_id=actor_id,
        )
    else:
        ledger.touch_expense(expense)

    session.flush()
    return expense


def delete_expense(
        expense_id: int,
        session: Session,
        actor_id: int | None = None,
) -> dict:
    """
    Deletes an expense and its contributions.

    Returns:
        {"expense_id": int, "plan_id": int, "total_collected": int}
        total_collected is what had been paid towards the expense, as recorded
        in the payment history (which survives the delete).
    """
    ledger = ContributionLedger(session)
    expense = ledger.lock_expense(expense_id)
    total_collected = ledger.total_collected(expense_id)

    for contribution in ledger.contributions_for_expense(expense_id):
        ledger.remove_contribution(contribution, note="Expense deleted", actor_id=actor_id)

    plan_id = expense.plan_id
    session.flush()
    session.delete(expense)
    session.flush()

    logger.info(
        "Expense %s deleted from plan %s (collected %s retained in history)",
        expense_id, plan_id, total_collected,
    )
    return {"expense_id": expense_id, "plan_id": plan_id, "total_collected": total_collected}
