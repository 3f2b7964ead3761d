"""
services/split_service.py — Split Engine.

Computes and refreshes the Contribution set of an expense from its total and
its participant roster. All writes go through ContributionLedger.

Rules:
  - Shares come from money.split_evenly over the FULL expense total, never
    over a leftover. The last participant in creation order absorbs the
    rounding difference.
  - Roster order = existing contributions in creation order (id), followed
    by newly added participants in the order the caller listed them.
  - A participant already on the expense keeps their contribution row: only
    amount_due changes, amount_paid and the order correlation are kept.
  - A participant dropped from the roster has their contribution removed
    through the ledger (REMOVED event, paid amount kept in history).
  - Money already collected from a removed participant does NOT reduce the
    dues of the others. The full total is re-split.
  - An empty roster raises NO_PARTICIPANTS before anything is touched.

After every split, sum(amount_due) == expense.total is re-checked against
the flushed rows; a mismatch is a programming error (INTERNAL_ERROR, 500).

Layer rules:
  - No Flask imports. The caller locks the expense before calling in.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging

from holiday_ledger.app.errors import AppError, ErrorCode
from holiday_ledger.app.models.contribution import Contribution
from holiday_ledger.app.models.expense import Expense
from holiday_ledger.app.services.ledger_service import ContributionLedger
from holiday_ledger.app.services.money import DEFAULT_ROUNDING_UNIT, split_evenly

logger = logging.getLogger(__name__)


def split_expense(
        expense: Expense,
        participant_ids: list[int],
        ledger: ContributionLedger,
        rounding_unit: int = DEFAULT_ROUNDING_UNIT,
        actor_id: int | None = None,
) -> list[Contribution]:
    """
    Creates the initial contributions of a new expense, one per participant,
    with amount_paid = 0.

    Raises:
        AppError(NO_PARTICIPANTS, 422) — participant_ids is empty.
    """
    roster = _dedupe(participant_ids)
    _require_roster(roster, expense)

    shares = split_evenly(expense.total, len(roster), rounding_unit)
    contributions = [
        ledger.open_contribution(
            expense,
            participant_id,
            share,
            note=f"Initial split of {expense.total} among {len(roster)}",
            actor_id=actor_id,
        )
        for participant_id, share in zip(roster, shares)
    ]

    _verify_sum(expense, ledger)
    logger.info(
        "Split expense %s total=%s among %s participants: %s",
        expense.id, expense.total, len(roster), shares,
    )
    return contributions


def apply_roster(
        expense: Expense,
        participant_ids: list[int],
        ledger: ContributionLedger,
        rounding_unit: int = DEFAULT_ROUNDING_UNIT,
        reason: str = "Re-split",
        actor_id: int | None = None,
) -> list[Contribution]:
    """
    Brings an existing expense's contributions in line with `participant_ids`
    and the current expense.total.

    Used after a total change, a roster edit, or a participant removal.
    Returns the live contributions in creation order.

    Raises:
        AppError(NO_PARTICIPANTS, 422) — participant_ids is empty; nothing
        is changed.
    """
    roster = _dedupe(participant_ids)
    _require_roster(roster, expense)

    existing = ledger.contributions_for_expense(expense.id)
    wanted = set(roster)

    kept = [c for c in existing if c.participant_id in wanted]
    dropped = [c for c in existing if c.participant_id not in wanted]
    kept_ids = {c.participant_id for c in kept}
    added = [pid for pid in roster if pid not in kept_ids]

    # Computed before any mutation so a bad input leaves the rows untouched.
    shares = split_evenly(expense.total, len(kept) + len(added), rounding_unit)
    note = f"{reason}: total {expense.total} among {len(kept) + len(added)}"

    for contribution in dropped:
        ledger.remove_contribution(contribution, note=reason, actor_id=actor_id)
    if dropped:
        # Frees the (expense, participant) slots before any insert.
        ledger.session.flush()

    for contribution, share in zip(kept, shares):
        ledger.adjust_due(contribution, share, note=note, actor_id=actor_id)

    for participant_id, share in zip(added, shares[len(kept):]):
        ledger.open_contribution(
            expense, participant_id, share, note=note, actor_id=actor_id,
        )

    ledger.touch_expense(expense)
    live = _verify_sum(expense, ledger)

    logger.info(
        "%s expense %s total=%s: kept=%s added=%s dropped=%s shares=%s",
        reason,
        expense.id,
        expense.total,
        len(kept),
        len(added),
        [c.participant_id for c in dropped],
        shares,
    )
    return live


def resplit_without(
        expense: Expense,
        participant_id: int,
        ledger: ContributionLedger,
        rounding_unit: int = DEFAULT_ROUNDING_UNIT,
        actor_id: int | None = None,
) -> list[Contribution]:
    """
    Re-splits an expense after `participant_id` leaves it.

    The remaining participants share the full total again. If the departing
    participant was the only one on the expense, NO_PARTICIPANTS is raised
    and the expense is left as it was.
    """
    existing = ledger.contributions_for_expense(expense.id)
    remaining = [c.participant_id for c in existing if c.participant_id != participant_id]
    if len(remaining) == len(existing):
        return existing

    return apply_roster(
        expense,
        remaining,
        ledger,
        rounding_unit=rounding_unit,
        reason=f"Participant {participant_id} removed",
        actor_id=actor_id,
    )


# ── Private helpers ────────────────────────────────────────────────────────

def _dedupe(participant_ids: list[int]) -> list[int]:
    return list(dict.fromkeys(participant_ids))


def _require_roster(roster: list[int], expense: Expense) -> None:
    if not roster:
        raise AppError(
            ErrorCode.NO_PARTICIPANTS,
            f"Expense {expense.id} must be shared by at least one participant.",
            422,
            field="participant_ids",
        )


def _verify_sum(expense: Expense, ledger: ContributionLedger) -> list[Contribution]:
    live = ledger.contributions_for_expense(expense.id)
    total_due = sum(c.amount_due for c in live)
    if total_due != expense.total:
        logger.error(
            "Split of expense %s sums to %s, expected %s",
            expense.id, total_due, expense.total,
        )
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Contributions of expense {expense.id} do not add up to its total.",
            500,
        )
    return live
