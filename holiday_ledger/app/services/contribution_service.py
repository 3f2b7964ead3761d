"""
services/contribution_service.py — Manual payments and ledger read models.

Manual payment entry is the plan admin's cash/transfer reconciliation: the
admin states how much a participant has paid in total towards one
contribution, and the ledger records it as a MANUAL_OVERRIDE. Unlike
gateway credits this may lower the paid amount or take it above the due;
the latter comes back as an OVERPAID_CONTRIBUTION warning, not an error.

Layer rules:
  - No Flask imports.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from holiday_ledger.app.errors import WarningCode
from holiday_ledger.app.models.contribution import Contribution
from holiday_ledger.app.models.payment_event import PaymentEvent
from holiday_ledger.app.services.ledger_service import DEFAULT_HISTORY_LIMIT, ContributionLedger


def record_manual_payment(
        contribution_id: int,
        amount: int,
        session: Session,
        note: str | None = None,
        actor_id: int | None = None,
) -> tuple[Contribution, list[dict]]:
    """
    Sets a contribution's amount_paid to `amount`.

    Returns:
        (contribution, warnings)

    Raises:
        AppError(CONTRIBUTION_NOT_FOUND, 404)
        AppError(INVALID_AMOUNT, 400)
    """
    ledger = ContributionLedger(session)
    contribution = ledger.get_contribution(contribution_id)
    ledger.lock_expense(contribution.expense_id)

    contribution = ledger.set_paid(contribution_id, amount, note=note, actor_id=actor_id)

    warnings = []
    if contribution.overpaid > 0:
        warnings.append({
            "code": WarningCode.OVERPAID_CONTRIBUTION,
            "message": (
                f"Contribution {contribution_id} is now paid {contribution.overpaid} "
                f"above its due of {contribution.amount_due}."
            ),
        })
    return contribution, warnings


def get_snapshot(plan_id: int, session: Session) -> dict:
    return ContributionLedger(session).snapshot(plan_id)


def get_history(
        plan_id: int,
        session: Session,
        contribution_id: int | None = None,
        participant_id: int | None = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[PaymentEvent]:
    return ContributionLedger(session).history(
        plan_id,
        contribution_id=contribution_id,
        participant_id=participant_id,
        limit=limit,
    )
