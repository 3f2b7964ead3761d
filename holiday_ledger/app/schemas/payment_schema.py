"""
schemas/payment_schema.py — Schemas for checkout and gateway notifications.

The notification schema checks shape only. Authenticity (signature) and
order existence are checked by services/reconciliation_service.py, which
needs the raw string values: gross_amount stays a string here because the
signature is computed over it exactly as the gateway sent it.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, ValidationError, fields, validate, validates_schema


class CheckoutSchema(Schema):
    """POST /payments/checkout"""

    participant_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="participant_id must be a positive integer."),
    )

    contribution_ids = fields.List(
        fields.Int(
            strict=True,
            validate=validate.Range(min=1, error="Contribution ids must be positive integers."),
        ),
        required=True,
        validate=validate.Length(min=1, error="Select at least one contribution to pay."),
    )

    @validates_schema
    def validate_unique_contributions(self, data: dict, **kwargs) -> None:
        ids = data.get("contribution_ids") or []
        if len(ids) != len(set(ids)):
            raise ValidationError(
                {"contribution_ids": ["The same contribution is selected more than once."]}
            )


class GatewayNotificationSchema(Schema):
    """
    POST /payments/notification

    The gateway posts many more fields than the ledger uses; they are dropped.
    """

    class Meta:
        unknown = EXCLUDE

    order_id = fields.Str(required=True, validate=validate.Length(min=1, max=120))
    status_code = fields.Str(required=True)
    gross_amount = fields.Str(required=True)
    signature_key = fields.Str(required=True)
    transaction_status = fields.Str(required=True)
    fraud_status = fields.Str(load_default=None, allow_none=True)
    transaction_id = fields.Str(load_default=None, allow_none=True)
