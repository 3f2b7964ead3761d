"""
services/participant_service.py — Participant creation and listing.

Removal lives in roster_service because it re-splits expenses.

Layer rules:
  - No Flask imports.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from holiday_ledger.app.errors import AppError, ErrorCode
from holiday_ledger.app.models.participant import Participant

logger = logging.getLogger(__name__)


def create_participant(data: dict, session: Session) -> Participant:
    """
    Adds a participant to a plan.

    Args:
        data: validated CreateParticipantSchema output
              (plan_id, name, optional position).
    """
    participant = Participant(
        plan_id=data["plan_id"],
        name=data["name"],
        position=data.get("position", 0),
    )
    session.add(participant)
    session.flush()

    logger.info(
        "Participant %s (%r) added to plan %s",
        participant.id, participant.name, participant.plan_id,
    )
    return participant


def list_participants(plan_id: int, session: Session) -> list[Participant]:
    """A plan's participants in display order (position, then id)."""
    stmt = (
        select(Participant)
        .where(Participant.plan_id == plan_id)
        .order_by(Participant.position.asc(), Participant.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def get_participant(participant_id: int, session: Session) -> Participant:
    """Returns the Participant or raises PARTICIPANT_NOT_FOUND (404)."""
    participant = session.get(Participant, participant_id)
    if participant is None:
        raise AppError(
            ErrorCode.PARTICIPANT_NOT_FOUND,
            f"Participant {participant_id} does not exist.",
            404,
        )
    return participant


def require_plan_participants(
        plan_id: int,
        participant_ids: list[int],
        session: Session,
        collector_id: int | None = None,
) -> None:
    """
    Raises PARTICIPANT_NOT_IN_PLAN (422) for the first id that is not a
    participant of `plan_id`: the roster ids first, then the collector.

    The matching participant rows are locked (SELECT ... FOR UPDATE, id
    order) until the transaction ends, so a concurrent removal cannot delete
    a participant between this check and the contribution insert. Lock
    order across the ledger is participants first, then expenses.
    """
    wanted = list(participant_ids or [])
    if collector_id is not None:
        wanted.append(collector_id)
    if not wanted:
        return
    found = set(session.execute(
        select(Participant.id)
        .where(
            Participant.plan_id == plan_id,
            Participant.id.in_(wanted),
        )
        .order_by(Participant.id.asc())
        .with_for_update()
    ).scalars().all())

    for participant_id in participant_ids or []:
        if participant_id not in found:
            raise AppError(
                ErrorCode.PARTICIPANT_NOT_IN_PLAN,
                f"Participant {participant_id} is not part of plan {plan_id}.",
                422,
                field="participant_ids",
            )
    if collector_id is not None and collector_id not in found:
        raise AppError(
            ErrorCode.PARTICIPANT_NOT_IN_PLAN,
            f"Collector {collector_id} is not part of plan {plan_id}.",
            422,
            field="collector_id",
        )
