"""
errors.py — AppError base class and error code registry.

Every error returned by the ledger API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Gateway-facing failures (INVALID_SIGNATURE, ORDER_NOT_FOUND) are 4xx so the
    gateway's retry policy sees a client error, never a 5xx.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
# These are the string values sent in the API response.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_INPUT              = "INVALID_INPUT"
    INVALID_AMOUNT             = "INVALID_AMOUNT"
    INVALID_CATEGORY           = "INVALID_CATEGORY"
    DUPLICATE_PARTICIPANT      = "DUPLICATE_PARTICIPANT"

    # ── Gateway authenticity (403) ─────────────────────────────────────────
    INVALID_SIGNATURE          = "INVALID_SIGNATURE"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    PARTICIPANT_NOT_FOUND      = "PARTICIPANT_NOT_FOUND"
    CONTRIBUTION_NOT_FOUND     = "CONTRIBUTION_NOT_FOUND"
    ORDER_NOT_FOUND            = "ORDER_NOT_FOUND"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    CONFLICT                   = "CONFLICT"

    # ── Business Rule Violations (422) ────────────────────────────────────
    NO_PARTICIPANTS            = "NO_PARTICIPANTS"
    PARTICIPANT_NOT_IN_PLAN    = "PARTICIPANT_NOT_IN_PLAN"
    NO_REMAINING_PAYMENT       = "NO_REMAINING_PAYMENT"

    # ── Auth Errors (401) ──────────────────────────────────────────────────
    # Tokens are minted by the identity service; the ledger only verifies them.
    TOKEN_MISSING              = "TOKEN_MISSING"
    TOKEN_INVALID              = "TOKEN_INVALID"
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"

    # ── Upstream Errors (502) ──────────────────────────────────────────────
    # The payment gateway failed to open a checkout session.
    GATEWAY_UNAVAILABLE        = "GATEWAY_UNAVAILABLE"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # Gateway paid more than the order's outstanding dues; the excess is
    # recorded on the order and not applied to any contribution.
    OVERPAYMENT = "OVERPAYMENT"

    # Manual override left amount_paid above amount_due.
    OVERPAID_CONTRIBUTION = "OVERPAID_CONTRIBUTION"
