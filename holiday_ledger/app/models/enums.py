"""
models/enums.py — Enumerations shared by models, schemas and services.

Defined once so they can be imported without pulling in the full models.
Do not duplicate these as plain string constants anywhere else.
"""

from __future__ import annotations

import enum


class ExpenseCategory(str, enum.Enum):
    ACCOMMODATION = "accommodation"
    TRANSPORT     = "transport"
    FOOD          = "food"
    ACTIVITY      = "activity"
    SHOPPING      = "shopping"
    OTHER         = "other"


class PaymentMethod(str, enum.Enum):
    MANUAL  = "manual"    # cash or transfer entered by a plan admin
    GATEWAY = "gateway"   # credited from a payment-gateway notification


class PaymentAction(str, enum.Enum):
    """
    What a PaymentEvent describes.

    DUE_ASSIGNED and REMOVED record amount_due changes; PAYMENT and
    MANUAL_OVERRIDE record amount_paid changes.
    """
    DUE_ASSIGNED    = "due_assigned"
    PAYMENT         = "payment"
    MANUAL_OVERRIDE = "manual_override"
    REMOVED         = "removed"


PAID_ACTIONS = (PaymentAction.PAYMENT, PaymentAction.MANUAL_OVERRIDE)


class OrderStatus(str, enum.Enum):
    """pending -> {success, failed}; success and failed are terminal."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED  = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g. 'manual'), not names ('MANUAL')."""
    return [member.value for member in enum_cls]
