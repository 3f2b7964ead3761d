"""
schemas/participant_schema.py — Marshmallow schema for participant endpoints.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class CreateParticipantSchema(Schema):
    """POST /participants"""

    plan_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="plan_id must be a positive integer."),
    )

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    # Display order in the plan's participant list.
    position = fields.Int(
        load_default=0,
        strict=True,
        validate=validate.Range(min=0, error="position must not be negative."),
    )
