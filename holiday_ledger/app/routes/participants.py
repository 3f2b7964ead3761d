"""
routes/participants.py — Participant route handlers.

Registered at url_prefix=/api/v1 because this blueprint owns both the
plan-scoped path (/plans/:id/participants) and the participant-ID paths.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries.

Endpoints:
  POST   /participants                 → 201  add a participant to a plan
  GET    /plans/:id/participants       → 200  list a plan's participants
  DELETE /participants/:id             → 200  remove + re-split their expenses
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from holiday_ledger.app.extensions import db
from holiday_ledger.app.middleware.auth_middleware import optional_auth, require_auth
from holiday_ledger.app.models.participant import Participant
from holiday_ledger.app.schemas.participant_schema import CreateParticipantSchema
from holiday_ledger.app.services import participant_service, roster_service

participants_bp = Blueprint("participants", __name__)


# ── Serialization helper ───────────────────────────────────────────────────

def _serialize_participant(participant: Participant) -> dict:
    return {
        "id": participant.id,
        "plan_id": participant.plan_id,
        "name": participant.name,
        "position": participant.position,
        "created_at": participant.created_at.isoformat() if participant.created_at else None,
    }


# ── Route handlers ─────────────────────────────────────────────────────────

@participants_bp.route("/participants", methods=["POST"])
@require_auth
def create_participant():
    """POST /participants — Add a participant to a plan."""
    data = CreateParticipantSchema().load(request.get_json(force=True) or {})
    participant = participant_service.create_participant(data=data, session=db.session)
    db.session.commit()
    return jsonify({"data": _serialize_participant(participant), "warnings": []}), 201


@participants_bp.route("/plans/<int:plan_id>/participants", methods=["GET"])
@optional_auth
def list_participants(plan_id: int):
    """GET /plans/:id/participants — Participants in display order."""
    participants = participant_service.list_participants(plan_id=plan_id, session=db.session)
    return jsonify({
        "data": [_serialize_participant(p) for p in participants],
        "warnings": [],
    }), 200


@participants_bp.route("/participants/<int:participant_id>", methods=["DELETE"])
@require_auth
def remove_participant(participant_id: int):
    """
    DELETE /participants/:id — Remove a participant.

    Every expense they shared is re-split among the others in the same
    transaction. If any expense would be left with nobody, nothing changes
    and NO_PARTICIPANTS (422) is returned.
    """
    summary = roster_service.remove_participant(
        participant_id=participant_id,
        session=db.session,
        rounding_unit=current_app.config["SPLIT_ROUNDING_UNIT"],
        actor_id=g.actor_id,
    )
    db.session.commit()
    return jsonify({"data": {"deleted": True, **summary}, "warnings": []}), 200
