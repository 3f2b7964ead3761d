"""
schemas/contribution_schema.py — Schemas for manual payments and the
payment-history query string.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from marshmallow import Schema, fields, validate

from holiday_ledger.app.errors import ErrorCode

MAX_HISTORY_LIMIT = 500


class ManualPaymentSchema(Schema):
    """
    POST /contributions/:id/manual-payment

    `amount` is the participant's new cumulative paid amount for the
    contribution, not an increment. It may exceed the due (a warning is
    returned) or lower a previous entry.
    """

    amount = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=0, error=ErrorCode.INVALID_AMOUNT),
        error_messages={"invalid": ErrorCode.INVALID_AMOUNT},
    )

    note = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=500, error="Note must be at most 500 characters."),
    )


class PaymentHistoryQuerySchema(Schema):
    """
    GET /plans/:id/payment-history?contribution_id=&participant_id=&limit=

    Loaded from request.args, so integers arrive as strings (strict=False).
    """

    contribution_id = fields.Int(
        load_default=None,
        validate=validate.Range(min=1, error="contribution_id must be a positive integer."),
    )
    participant_id = fields.Int(
        load_default=None,
        validate=validate.Range(min=1, error="participant_id must be a positive integer."),
    )
    limit = fields.Int(
        load_default=50,
        validate=validate.Range(
            min=1,
            max=MAX_HISTORY_LIMIT,
            error=f"limit must be between 1 and {MAX_HISTORY_LIMIT}.",
        ),
    )
