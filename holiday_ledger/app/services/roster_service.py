"""
services/roster_service.py — Roster-Change Handler.

Removing a participant from a plan:
  1. Lock the participant row (SELECT ... FOR UPDATE). Expense writers that
     name the participant in a roster take the same lock first
     (participant_service.require_plan_participants), so no new
     contribution can appear for them while the removal runs.
  2. Load every contribution the participant holds, across all expenses.
  3. Lock the affected expenses in ascending id order.
  4. Re-split each expense without the participant (split_service).
  5. Clear the participant as collector of any expense.
  6. Delete the participant row last, after every re-split succeeded.

All-or-nothing: this module only flushes. If any step raises (for example
NO_PARTICIPANTS because the participant is the only sharer of an expense),
the route never commits and the request-scoped session rolls everything
back, so no expense is left re-split while another is not.

Layer rules:
  - No Flask imports.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from holiday_ledger.app.errors import AppError, ErrorCode
from holiday_ledger.app.models.expense import Expense
from holiday_ledger.app.models.participant import Participant
from holiday_ledger.app.services import split_service
from holiday_ledger.app.services.ledger_service import ContributionLedger
from holiday_ledger.app.services.money import DEFAULT_ROUNDING_UNIT

logger = logging.getLogger(__name__)


def remove_participant(
        participant_id: int,
        session: Session,
        rounding_unit: int = DEFAULT_ROUNDING_UNIT,
        actor_id: int | None = None,
) -> dict:
    """
    Removes a participant and redistributes their shares.

    Returns:
        {
          "participant_id": int,
          "plan_id": int,
          "resplit_expense_ids": [int, ...],
          "collector_cleared_expense_ids": [int, ...],
          "retained_paid": int,   # money the participant had paid, kept in history
        }

    Raises:
        AppError(PARTICIPANT_NOT_FOUND, 404)
        AppError(NO_PARTICIPANTS, 422) — an expense would be left with nobody.
    """
    participant = session.execute(
        select(Participant)
        .where(Participant.id == participant_id)
        .with_for_update()
    ).scalar_one_or_none()
    if participant is None:
        raise AppError(
            ErrorCode.PARTICIPANT_NOT_FOUND,
            f"Participant {participant_id} does not exist.",
            404,
        )

    ledger = ContributionLedger(session)
    held = ledger.contributions_for_participant(participant_id)
    retained_paid = sum(c.amount_paid for c in held)
    shared_ids = {c.expense_id for c in held}
    collected_ids = set(session.execute(
        select(Expense.id).where(Expense.collector_id == participant_id)
    ).scalars().all())

    resplit_ids = []
    cleared_ids = []
    for expense in ledger.lock_expenses(shared_ids | collected_ids):
        if expense.collector_id == participant_id:
            expense.collector_id = None
            ledger.touch_expense(expense)
            cleared_ids.append(expense.id)
        if expense.id in shared_ids:
            split_service.resplit_without(
                expense,
                participant_id,
                ledger,
                rounding_unit=rounding_unit,
                actor_id=actor_id,
            )
            resplit_ids.append(expense.id)

    # Contribution deletes must reach the DB before the RESTRICT FK is checked.
    session.flush()
    plan_id = participant.plan_id
    session.delete(participant)
    session.flush()

    logger.info(
        "Removed participant %s from plan %s; re-split expenses %s (retained paid %s)",
        participant_id,
        plan_id,
        resplit_ids,
        retained_paid,
    )
    return {
        "participant_id": participant_id,
        "plan_id": plan_id,
        "resplit_expense_ids": resplit_ids,
        "collector_cleared_expense_ids": cleared_ids,
        "retained_paid": retained_paid,
    }
