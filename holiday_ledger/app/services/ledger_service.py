"""
services/ledger_service.py — ContributionLedger, the single write path for
contributions.

Every change to a Contribution row (opening it, changing its due, crediting
a payment, a manual override, removing it) goes through a method on this
class, and every such method appends exactly one PaymentEvent. No other
module assigns Contribution fields directly.

Invariants maintained here:
  - amount_paid never decreases through credit(), and credit() never pushes
    amount_paid above amount_due (INVALID_AMOUNT otherwise).
  - For each contribution, sum(change_amount) over its PAYMENT and
    MANUAL_OVERRIDE events equals amount_paid.
  - PaymentEvent rows are only ever inserted.

Concurrency:
  lock_expense() takes SELECT ... FOR UPDATE on the expense row. Callers that
  read-modify-write an expense's contributions (split engine, reconciler,
  manual payments) lock first. touch_expense() bumps the expense's optimistic
  version so a writer that slipped past the lock fails with StaleDataError.

Layer rules:
  - No Flask imports. The session is injected through the constructor.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from holiday_ledger.app.errors import AppError, ErrorCode
from holiday_ledger.app.models.contribution import Contribution
from holiday_ledger.app.models.enums import PAID_ACTIONS, PaymentAction, PaymentMethod
from holiday_ledger.app.models.expense import Expense
from holiday_ledger.app.models.participant import Participant
from holiday_ledger.app.models.payment_event import PaymentEvent

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ContributionLedger:

    def __init__(self, session: Session) -> None:
        self.session = session

    # ── Lookups ────────────────────────────────────────────────────────────

    def get_contribution(self, contribution_id: int) -> Contribution:
        """Returns the Contribution or raises CONTRIBUTION_NOT_FOUND (404)."""
        contribution = self.session.get(Contribution, contribution_id)
        if contribution is None:
            raise AppError(
                ErrorCode.CONTRIBUTION_NOT_FOUND,
                f"Contribution {contribution_id} does not exist.",
                404,
            )
        return contribution

    def lock_expense(self, expense_id: int) -> Expense:
        """
        Loads the expense with a row lock held until the request commits.
        An instance already in the session is refreshed from the locked row.
        Raises EXPENSE_NOT_FOUND (404).
        """
        expense = self.session.execute(
            select(Expense)
            .where(Expense.id == expense_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if expense is None:
            raise AppError(
                ErrorCode.EXPENSE_NOT_FOUND,
                f"Expense {expense_id} does not exist.",
                404,
            )
        return expense

    def lock_expenses_for(self, contribution_ids: list[int]) -> list[Expense]:
        """
        Locks every expense touched by `contribution_ids`, in ascending id
        order so two requests never wait on each other in opposite order.
        """
        if not contribution_ids:
            return []
        expense_ids = self.session.execute(
            select(Contribution.expense_id)
            .where(Contribution.id.in_(contribution_ids))
            .distinct()
        ).scalars().all()
        return self.lock_expenses(expense_ids)

    def lock_expenses(self, expense_ids) -> list[Expense]:
        """Locks the given expenses in ascending id order."""
        return [self.lock_expense(eid) for eid in sorted(set(expense_ids))]

    def touch_expense(self, expense: Expense) -> None:
        """Marks the expense modified; its version column increments on flush."""
        expense.updated_at = _now()

    def contributions_for_expense(self, expense_id: int) -> list[Contribution]:
        stmt = (
            select(Contribution)
            .where(Contribution.expense_id == expense_id)
            .order_by(Contribution.id.asc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def contributions_for_participant(self, participant_id: int) -> list[Contribution]:
        stmt = (
            select(Contribution)
            .where(Contribution.participant_id == participant_id)
            .order_by(Contribution.id.asc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def get_outstanding(self, expense_id: int) -> list[Contribution]:
        """
        Contributions of an expense with amount_paid < amount_due, oldest first.
        Creation order is the tie-break for spreading a lump payment.
        """
        stmt = (
            select(Contribution)
            .where(
                Contribution.expense_id == expense_id,
                Contribution.amount_paid < Contribution.amount_due,
            )
            .order_by(Contribution.id.asc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def get_outstanding_among(self, contribution_ids: list[int]) -> list[Contribution]:
        """Same ordering as get_outstanding(), restricted to the given ids."""
        if not contribution_ids:
            return []
        stmt = (
            select(Contribution)
            .where(
                Contribution.id.in_(contribution_ids),
                Contribution.amount_paid < Contribution.amount_due,
            )
            .order_by(Contribution.id.asc())
        )
        return list(self.session.execute(stmt).scalars().all())

    # ── Due-side mutations (split engine only) ─────────────────────────────

    def open_contribution(
            self,
            expense: Expense,
            participant_id: int,
            amount_due: int,
            note: str | None = None,
            actor_id: int | None = None,
    ) -> Contribution:
        """Creates a contribution with amount_paid = 0 and records its due."""
        if amount_due < 0:
            raise AppError(
                ErrorCode.INVALID_AMOUNT,
                f"amount_due must not be negative ({amount_due}).",
                400,
            )

        contribution = Contribution(
            expense=expense,
            participant_id=participant_id,
            amount_due=amount_due,
            amount_paid=0,
        )
        self.session.add(contribution)
        self.session.flush()  # populate contribution.id for the event row

        self._record(
            contribution,
            plan_id=expense.plan_id,
            action=PaymentAction.DUE_ASSIGNED,
            previous_amount=0,
            new_amount=amount_due,
            note=note,
            actor_id=actor_id,
        )
        return contribution

    def adjust_due(
            self,
            contribution: Contribution,
            new_due: int,
            note: str | None = None,
            actor_id: int | None = None,
    ) -> bool:
        """
        Sets amount_due after a re-split. amount_paid is left alone even when
        the new due is lower (the contribution then reports as overpaid).

        Returns True if the due changed. Unchanged dues emit no event.
        """
        if new_due < 0:
            raise AppError(
                ErrorCode.INVALID_AMOUNT,
                f"amount_due must not be negative ({new_due}).",
                400,
            )

        previous = contribution.amount_due
        if previous == new_due:
            return False

        contribution.amount_due = new_due
        self._record(
            contribution,
            plan_id=contribution.expense.plan_id,
            action=PaymentAction.DUE_ASSIGNED,
            previous_amount=previous,
            new_amount=new_due,
            note=note,
            actor_id=actor_id,
        )
        return True

    def remove_contribution(
            self,
            contribution: Contribution,
            note: str | None = None,
            actor_id: int | None = None,
    ) -> None:
        """
        Deletes a contribution after recording its final due and paid amounts.

        Money already collected is not discarded: its PAYMENT events stay in
        the history and still count towards total_collected().
        """
        detail = f"due {contribution.amount_due}, paid {contribution.amount_paid} retained in history"
        self._record(
            contribution,
            plan_id=contribution.expense.plan_id,
            action=PaymentAction.REMOVED,
            previous_amount=contribution.amount_due,
            new_amount=0,
            note=f"{note}; {detail}" if note else detail,
            actor_id=actor_id,
        )
        logger.info(
            "Removing contribution %s (expense=%s participant=%s due=%s paid=%s)",
            contribution.id,
            contribution.expense_id,
            contribution.participant_id,
            contribution.amount_due,
            contribution.amount_paid,
        )
        expense = contribution.expense
        self.session.delete(contribution)
        # Reload on next access; removing from the delete-orphan collection as
        # well would queue the row for deletion twice.
        self.session.expire(expense, ["contributions"])

    # ── Paid-side mutations ────────────────────────────────────────────────

    def credit(
            self,
            contribution_id: int,
            amount: int,
            method: PaymentMethod,
            correlation_token: str | None = None,
            transaction_ref: str | None = None,
            actor_id: int | None = None,
    ) -> Contribution:
        """
        Adds `amount` to amount_paid and appends one PAYMENT event.

        The caller computes the partial amount; a credit that would take
        amount_paid above amount_due is rejected, not clamped. Amount 0 is a
        status-only no-op that still records the correlation token.

        Raises:
            AppError(CONTRIBUTION_NOT_FOUND, 404)
            AppError(INVALID_AMOUNT, 400) — amount < 0 or amount > remaining due.
        """
        contribution = self.get_contribution(contribution_id)

        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise AppError(
                ErrorCode.INVALID_AMOUNT,
                f"Credit amount must be a non-negative integer, got {amount!r}.",
                400,
                field="amount",
            )
        if amount > contribution.remaining:
            raise AppError(
                ErrorCode.INVALID_AMOUNT,
                f"Credit of {amount} exceeds the remaining due "
                f"({contribution.remaining}) of contribution {contribution_id}.",
                400,
                field="amount",
            )

        previous = contribution.amount_paid
        contribution.amount_paid = previous + amount
        contribution.payment_method = method
        if correlation_token is not None:
            contribution.order_ref = correlation_token
        if transaction_ref is not None:
            contribution.transaction_ref = transaction_ref
        if amount > 0:
            contribution.paid_at = _now()

        self._record(
            contribution,
            plan_id=contribution.expense.plan_id,
            action=PaymentAction.PAYMENT,
            previous_amount=previous,
            new_amount=contribution.amount_paid,
            payment_method=method,
            order_ref=correlation_token,
            actor_id=actor_id,
        )
        self.touch_expense(contribution.expense)
        self.session.flush()

        logger.info(
            "Credited %s to contribution %s via %s (paid %s -> %s of %s)",
            amount,
            contribution_id,
            method.value,
            previous,
            contribution.amount_paid,
            contribution.amount_due,
        )
        return contribution

    def set_paid(
            self,
            contribution_id: int,
            amount: int,
            note: str | None = None,
            actor_id: int | None = None,
    ) -> Contribution:
        """
        Administrative override: sets amount_paid directly (manual cash
        reconciliation). May lower the paid amount or exceed the due; both
        are recorded as a MANUAL_OVERRIDE event with the full delta.
        """
        contribution = self.get_contribution(contribution_id)

        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise AppError(
                ErrorCode.INVALID_AMOUNT,
                f"Paid amount must be a non-negative integer, got {amount!r}.",
                400,
                field="amount",
            )

        previous = contribution.amount_paid
        contribution.amount_paid = amount
        contribution.payment_method = PaymentMethod.MANUAL
        contribution.paid_at = _now() if amount > 0 else None

        self._record(
            contribution,
            plan_id=contribution.expense.plan_id,
            action=PaymentAction.MANUAL_OVERRIDE,
            previous_amount=previous,
            new_amount=amount,
            payment_method=PaymentMethod.MANUAL,
            note=note,
            actor_id=actor_id,
        )
        self.touch_expense(contribution.expense)
        self.session.flush()

        logger.info(
            "Manual override on contribution %s by actor %s: paid %s -> %s",
            contribution_id,
            actor_id,
            previous,
            amount,
        )
        return contribution

    def attach_order(self, contributions: list[Contribution], order_ref: str) -> None:
        """Tags contributions with the gateway order created to settle them."""
        for contribution in contributions:
            contribution.order_ref = order_ref
        self.session.flush()

    # ── Read models ────────────────────────────────────────────────────────

    def total_collected(self, expense_id: int) -> int:
        """
        Money collected for an expense, from the event log. Includes payments
        made by participants whose contribution was later removed.
        """
        total = self.session.execute(
            select(func.coalesce(func.sum(PaymentEvent.change_amount), 0))
            .where(
                PaymentEvent.expense_id == expense_id,
                PaymentEvent.action.in_(PAID_ACTIONS),
            )
        ).scalar_one()
        return int(total)

    def history(
            self,
            plan_id: int,
            contribution_id: int | None = None,
            participant_id: int | None = None,
            limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[PaymentEvent]:
        """PaymentEvents for a plan, newest first, optionally filtered."""
        stmt = select(PaymentEvent).where(PaymentEvent.plan_id == plan_id)
        if contribution_id is not None:
            stmt = stmt.where(PaymentEvent.contribution_id == contribution_id)
        if participant_id is not None:
            stmt = stmt.where(PaymentEvent.participant_id == participant_id)
        stmt = stmt.order_by(PaymentEvent.id.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def snapshot(self, plan_id: int) -> dict:
        """
        Current due/paid position of every participant in a plan.

        Returns:
            {
              "plan_id": int,
              "participants": [{participant_id, name, amount_due, amount_paid,
                                remaining, overpaid, status, contributions: [...]}],
              "collectors": [{collector_id, name, expense_ids, amount_due,
                              amount_paid, remaining, overpaid}],
              "totals": {amount_due, amount_paid, remaining, overpaid},
            }

        `collectors` groups the same contributions by the participant who
        gathers the money for their expense. Expenses without a collector
        form one group with collector_id None, listed last.
        """
        participants = self.session.execute(
            select(Participant)
            .where(Participant.plan_id == plan_id)
            .order_by(Participant.position.asc(), Participant.id.asc())
        ).scalars().all()

        contributions = self.session.execute(
            select(Contribution)
            .join(Expense, Contribution.expense_id == Expense.id)
            .where(Expense.plan_id == plan_id)
            .order_by(Contribution.id.asc())
        ).scalars().all()

        by_participant: dict[int, list[Contribution]] = {p.id: [] for p in participants}
        for contribution in contributions:
            by_participant.setdefault(contribution.participant_id, []).append(contribution)

        rows = []
        totals = {"amount_due": 0, "amount_paid": 0, "remaining": 0, "overpaid": 0}
        for participant in participants:
            owned = by_participant.get(participant.id, [])
            due = sum(c.amount_due for c in owned)
            paid = sum(c.amount_paid for c in owned)
            remaining = sum(c.remaining for c in owned)
            overpaid = sum(c.overpaid for c in owned)

            if not owned or remaining == 0:
                status = "settled"
            elif paid == 0:
                status = "unpaid"
            else:
                status = "partial"

            rows.append({
                "participant_id": participant.id,
                "name": participant.name,
                "amount_due": due,
                "amount_paid": paid,
                "remaining": remaining,
                "overpaid": overpaid,
                "status": status,
                "contributions": [serialize_contribution(c) for c in owned],
            })
            totals["amount_due"] += due
            totals["amount_paid"] += paid
            totals["remaining"] += remaining
            totals["overpaid"] += overpaid

        names = {p.id: p.name for p in participants}
        collectors = _group_by_collector(contributions, names)

        return {
            "plan_id": plan_id,
            "participants": rows,
            "collectors": collectors,
            "totals": totals,
        }

    # ── Internal ───────────────────────────────────────────────────────────

    def _record(
            self,
            contribution: Contribution,
            plan_id: int,
            action: PaymentAction,
            previous_amount: int,
            new_amount: int,
            payment_method: PaymentMethod | None = None,
            order_ref: str | None = None,
            note: str | None = None,
            actor_id: int | None = None,
    ) -> PaymentEvent:
        event = PaymentEvent(
            plan_id=plan_id,
            expense_id=contribution.expense_id,
            contribution_id=contribution.id,
            participant_id=contribution.participant_id,
            action=action,
            previous_amount=previous_amount,
            new_amount=new_amount,
            change_amount=new_amount - previous_amount,
            payment_method=payment_method,
            order_ref=order_ref,
            actor_id=actor_id,
            note=note,
        )
        self.session.add(event)
        return event


# ── Grouping ───────────────────────────────────────────────────────────────

def _group_by_collector(contributions: list[Contribution], names: dict[int, str]) -> list[dict]:
    groups: dict[int | None, dict] = {}
    for c in contributions:
        collector_id = c.expense.collector_id
        group = groups.get(collector_id)
        if group is None:
            group = groups[collector_id] = {
                "collector_id": collector_id,
                "name": names.get(collector_id),
                "expense_ids": [],
                "amount_due": 0,
                "amount_paid": 0,
                "remaining": 0,
                "overpaid": 0,
            }
        if c.expense_id not in group["expense_ids"]:
            group["expense_ids"].append(c.expense_id)
        group["amount_due"] += c.amount_due
        group["amount_paid"] += c.amount_paid
        group["remaining"] += c.remaining
        group["overpaid"] += c.overpaid

    named = [g for key, g in groups.items() if key is not None]
    named.sort(key=lambda g: g["collector_id"])
    if None in groups:
        named.append(groups[None])
    return named


# ── Serialization helpers ──────────────────────────────────────────────────
# Pure data-shaping — no DB access beyond already-loaded attributes.

def serialize_contribution(c: Contribution) -> dict:
    return {
        "id": c.id,
        "expense_id": c.expense_id,
        "participant_id": c.participant_id,
        "amount_due": c.amount_due,
        "amount_paid": c.amount_paid,
        "remaining": c.remaining,
        "overpaid": c.overpaid,
        "is_settled": c.is_settled,
        "status": c.status,
        "payment_method": c.payment_method.value if c.payment_method else None,
        "order_ref": c.order_ref,
        "paid_at": c.paid_at.isoformat() if c.paid_at else None,
    }


def serialize_event(e: PaymentEvent) -> dict:
    return {
        "id": e.id,
        "plan_id": e.plan_id,
        "expense_id": e.expense_id,
        "contribution_id": e.contribution_id,
        "participant_id": e.participant_id,
        "action": e.action.value,
        "previous_amount": e.previous_amount,
        "new_amount": e.new_amount,
        "change_amount": e.change_amount,
        "payment_method": e.payment_method.value if e.payment_method else None,
        "order_ref": e.order_ref,
        "actor_id": e.actor_id,
        "note": e.note,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }
