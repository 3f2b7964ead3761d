"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing"), which
    points at an in-memory SQLite database unless TEST_DATABASE_URL is set
    (a PostgreSQL URL exercises row locks and the deferred sum trigger only
    when the schema is migrated with Alembic instead of create_all).
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - The Snap API is never called: snap_create_transaction patches
    midtransclient.Snap.create_transaction and hands out fake tokens.
  - The ledger only verifies bearer tokens; tests mint them with PyJWT using
    the testing JWT secret.
  - Gateway notifications are signed with the testing server key exactly as
    the gateway would sign them.

Helper functions (not fixtures) are provided for common operations:
  - auth_headers(actor_id)               → {"Authorization": "Bearer <token>"}
  - make_participant(client, plan_id, …) → participant dict
  - make_expense(client, …)              → HTTP response
  - checkout(client, …)                  → HTTP response
  - notify(client, order, …)             → HTTP response (signed notification)
  - snapshot(client, plan_id)            → snapshot dict

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import jwt
import midtransclient
import pytest
from sqlalchemy import text

from holiday_ledger.app import create_app
from holiday_ledger.app.extensions import db as _db
from holiday_ledger.app.services.reconciliation_service import compute_signature
from holiday_ledger.config import TestingConfig

PLAN_ID = 1
ADMIN_ID = 42


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test session.
    Tables are created with db.create_all() and dropped at teardown.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows after every test, children before parents.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test
        _db.session.remove()

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM payment_order_items"))
            conn.execute(text("DELETE FROM payment_orders"))
            conn.execute(text("DELETE FROM payment_events"))
            conn.execute(text("DELETE FROM contributions"))
            conn.execute(text("DELETE FROM expenses"))
            conn.execute(text("DELETE FROM participants"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def make_token(actor_id: int = ADMIN_ID, expires_in: timedelta = timedelta(minutes=15)) -> str:
    """Mints an access token the way the identity service does."""
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {"sub": str(actor_id), "iat": now, "exp": now + expires_in},
        TestingConfig.JWT_SECRET_KEY,
        algorithm="HS256",
    )


def auth_headers(actor_id: int = ADMIN_ID) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {make_token(actor_id)}"}


def make_participant(client, plan_id: int = PLAN_ID, name: str = "Alice", position: int = 0) -> dict:
    resp = client.post(
        "/api/v1/participants",
        json={"plan_id": plan_id, "name": name, "position": position},
        headers=auth_headers(),
    )
    assert resp.status_code == 201, f"make_participant failed: {resp.get_json()}"
    return resp.get_json()["data"]


def make_participants(client, *names: str, plan_id: int = PLAN_ID) -> list[dict]:
    return [
        make_participant(client, plan_id=plan_id, name=name, position=i)
        for i, name in enumerate(names)
    ]


def make_expense(
    client,
    total: int,
    participant_ids: list[int],
    plan_id: int = PLAN_ID,
    description: str = "Villa",
    category: str | None = None,
    collector_id: int | None = None,
):
    """Creates an expense and returns the HTTP response."""
    payload: dict = {
        "plan_id": plan_id,
        "description": description,
        "total": total,
        "participant_ids": participant_ids,
    }
    if category is not None:
        payload["category"] = category
    if collector_id is not None:
        payload["collector_id"] = collector_id
    return client.post("/api/v1/expenses", json=payload, headers=auth_headers())


def created_expense(client, total: int, participant_ids: list[int], **kwargs) -> dict:
    resp = make_expense(client, total, participant_ids, **kwargs)
    assert resp.status_code == 201, f"make_expense failed: {resp.get_json()}"
    return resp.get_json()["data"]


def get_expense(client, expense_id: int) -> dict:
    resp = client.get(f"/api/v1/expenses/{expense_id}", headers=auth_headers())
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["data"]


def checkout(client, participant_id: int, contribution_ids: list[int]):
    return client.post(
        "/api/v1/payments/checkout",
        json={"participant_id": participant_id, "contribution_ids": contribution_ids},
        headers=auth_headers(),
    )


def signed_notification(
    order_id: str,
    gross_amount: str,
    transaction_status: str,
    fraud_status: str | None = None,
    status_code: str = "200",
    server_key: str = TestingConfig.PAYMENT_GATEWAY_SERVER_KEY,
    transaction_id: str = "txn-0001",
) -> dict:
    """Builds a gateway notification body with a valid signature."""
    body = {
        "order_id": order_id,
        "status_code": status_code,
        "gross_amount": gross_amount,
        "signature_key": compute_signature(order_id, status_code, gross_amount, server_key),
        "transaction_status": transaction_status,
        "transaction_id": transaction_id,
        "payment_type": "bank_transfer",
        "currency": "IDR",
    }
    if fraud_status is not None:
        body["fraud_status"] = fraud_status
    return body


def notify(client, order: dict, transaction_status: str, gross_amount: str | None = None, **kwargs):
    """Posts a signed notification for `order` (a checkout response dict)."""
    gross = gross_amount if gross_amount is not None else f"{order['gross_amount']}.00"
    return client.post(
        "/api/v1/payments/notification",
        json=signed_notification(order["order_id"], gross, transaction_status, **kwargs),
    )


def snapshot(client, plan_id: int = PLAN_ID) -> dict:
    resp = client.get(f"/api/v1/plans/{plan_id}/contributions", headers=auth_headers())
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["data"]


def history(client, plan_id: int = PLAN_ID, **params) -> list[dict]:
    resp = client.get(
        f"/api/v1/plans/{plan_id}/payment-history",
        query_string=params,
        headers=auth_headers(),
    )
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["data"]


def dues(expense: dict) -> list[int]:
    return [c["amount_due"] for c in expense["contributions"]]


# ═══════════════════════════════════════════════════════════════════════════
# Payment gateway
# ═══════════════════════════════════════════════════════════════════════════

SNAP_REDIRECT_BASE = "https://app.sandbox.midtrans.com/snap/v4/redirection"


@pytest.fixture(autouse=True)
def snap_create_transaction():
    """
    Replaces the Snap API call for every integration test. Returns the mock
    so tests can read the parameters that were sent or make the call fail.
    """
    def _open_session(params):
        order_id = params["transaction_details"]["order_id"]
        return {"token": f"snap-{order_id}", "redirect_url": f"{SNAP_REDIRECT_BASE}/snap-{order_id}"}

    with patch.object(
        midtransclient.Snap,
        "create_transaction",
        side_effect=_open_session,
    ) as mock:
        yield mock
