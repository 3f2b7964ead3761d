"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, enum values
      - Amounts are non-negative whole numbers in the smallest currency unit
        (INVALID_AMOUNT, 400). Floats and numeric strings are rejected, never
        rounded.
      - DUPLICATE_PARTICIPANT (400) — the same id listed twice
      - Non-empty-after-trim enforcement for description
  - services/expense_service.py:
      - NO_PARTICIPANTS (422)         — an expense needs at least one sharer
      - PARTICIPANT_NOT_IN_PLAN (422) — requires DB participant lookup
        (participant_ids and collector_id)

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from holiday_ledger.app.errors import ErrorCode
from holiday_ledger.app.models.enums import ExpenseCategory


# ── Shared validators ──────────────────────────────────────────────────────

def _validate_non_empty_after_trim(value: str) -> None:
    """
    Raises ValidationError if the string is blank or whitespace only.
    Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _amount_field(**kwargs) -> fields.Int:
    # strict=True rejects 100.5 and "100"; the handler maps the message to INVALID_AMOUNT.
    return fields.Int(
        strict=True,
        validate=validate.Range(min=0, error=ErrorCode.INVALID_AMOUNT),
        error_messages={"invalid": ErrorCode.INVALID_AMOUNT},
        **kwargs,
    )


def _participant_ids_field(**kwargs) -> fields.List:
    return fields.List(
        fields.Int(
            strict=True,
            validate=validate.Range(min=1, error="Participant ids must be positive integers."),
        ),
        **kwargs,
    )


def _collector_field(**kwargs) -> fields.Int:
    return fields.Int(
        strict=True,
        allow_none=True,
        validate=validate.Range(min=1, error="collector_id must be a positive integer."),
        **kwargs,
    )


def _reject_duplicate_participants(data: dict) -> None:
    participant_ids = data.get("participant_ids")
    if participant_ids is not None and len(participant_ids) != len(set(participant_ids)):
        raise ValidationError({"participant_ids": [ErrorCode.DUPLICATE_PARTICIPANT]})


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /expenses

    The total is split equally among participant_ids in the order given;
    the last listed participant absorbs the rounding difference.
    """

    plan_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="plan_id must be a positive integer."),
    )

    description = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    total = _amount_field(required=True)

    # Optional. INVALID_CATEGORY (400) if the value is not in the enum.
    category = fields.Enum(
        ExpenseCategory,
        load_default=None,
        allow_none=True,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_CATEGORY},
    )

    # An empty list passes here and is rejected by the service as NO_PARTICIPANTS.
    participant_ids = _participant_ids_field(required=True)

    # Optional. Any participant of the plan, not necessarily a sharer.
    collector_id = _collector_field(load_default=None)

    @validates_schema
    def validate_participants(self, data: dict, **kwargs) -> None:
        _reject_duplicate_participants(data)


# ── Patch expense ──────────────────────────────────────────────────────────

class PatchExpenseSchema(Schema):
    """
    PATCH /expenses/:id

    All fields optional; only provided fields are updated. A changed total
    or a participant_ids list re-splits the full total across the roster.
    """

    description = fields.Str(
        required=False,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    total = _amount_field(required=False)

    category = fields.Enum(
        ExpenseCategory,
        required=False,
        allow_none=True,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_CATEGORY},
    )

    participant_ids = _participant_ids_field(required=False)

    # null clears the collector.
    collector_id = _collector_field(required=False)

    @validates_schema
    def validate_participants(self, data: dict, **kwargs) -> None:
        _reject_duplicate_participants(data)
