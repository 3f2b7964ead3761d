"""
tests/integration/test_payments.py — Checkout and gateway notifications.

Endpoints covered:
  POST /payments/checkout          → 201 (fee fixed at checkout, Snap session) / 502
  GET  /payments/orders/:order_id  → 200 / 404
  POST /payments/notification      → 200 / 400 / 403 / 404 (no bearer token)

Fee rule under test (TestingConfig): ceil((net * 2% + 2000) / 100) * 100.
"""

from __future__ import annotations

import requests
from midtransclient.error_midtrans import MidtransAPIError

from .conftest import (
    PLAN_ID,
    auth_headers,
    checkout,
    created_expense,
    get_expense,
    history,
    make_participants,
    notify,
    signed_notification,
)


def _contribution_of(expense: dict, participant_id: int) -> dict:
    return next(c for c in expense["contributions"] if c["participant_id"] == participant_id)


def _order(client, order_id: str) -> dict:
    resp = client.get(f"/api/v1/payments/orders/{order_id}", headers=auth_headers())
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["data"]


def _two_expenses(client):
    """
    Ayu owes 300 on the villa (900 / 3) and 400 on the boat (800 / 2).
    Returns (ayu, budi, villa, boat, [ayu's contribution ids]).
    """
    ayu, budi, cici = make_participants(client, "Ayu", "Budi", "Cici")
    villa = created_expense(client, 900, [ayu["id"], budi["id"], cici["id"]], description="Villa")
    boat = created_expense(client, 800, [ayu["id"], budi["id"]], description="Boat")
    ayu_ids = [_contribution_of(villa, ayu["id"])["id"], _contribution_of(boat, ayu["id"])["id"]]
    return ayu, budi, villa, boat, ayu_ids


def _checkout_data(client, participant_id: int, contribution_ids: list[int]) -> dict:
    resp = checkout(client, participant_id, contribution_ids)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["data"]


# ═══════════════════════════════════════════════════════════════════════════
# POST /payments/checkout
# ═══════════════════════════════════════════════════════════════════════════

class TestCheckout:

    def test_fee_is_fixed_at_checkout(self, client):
        ayu, _, _, _, ayu_ids = _two_expenses(client)

        order = _checkout_data(client, ayu["id"], ayu_ids)

        assert order["order_id"].startswith(f"ORDER-{PLAN_ID}-{ayu['id']}-")
        assert order["net_amount"] == 700
        assert order["service_fee"] == 2100
        assert order["gross_amount"] == 2800
        assert order["status"] == "pending"
        assert order["items"] == [
            {"contribution_id": ayu_ids[0], "amount": 300},
            {"contribution_id": ayu_ids[1], "amount": 400},
        ]

    def test_contributions_tagged_with_order(self, client):
        ayu, _, villa, _, ayu_ids = _two_expenses(client)

        order = _checkout_data(client, ayu["id"], ayu_ids[:1])

        row = _contribution_of(get_expense(client, villa["id"]), ayu["id"])
        assert row["order_ref"] == order["order_id"]

    def test_only_remaining_amount_is_charged(self, client):
        ayu, _, _, _, ayu_ids = _two_expenses(client)
        client.post(
            f"/api/v1/contributions/{ayu_ids[1]}/manual-payment",
            json={"amount": 150},
            headers=auth_headers(),
        )

        order = _checkout_data(client, ayu["id"], ayu_ids)

        assert order["net_amount"] == 550
        assert [i["amount"] for i in order["items"]] == [300, 250]

    def test_settled_contributions_are_skipped(self, client):
        ayu, _, _, _, ayu_ids = _two_expenses(client)
        client.post(
            f"/api/v1/contributions/{ayu_ids[0]}/manual-payment",
            json={"amount": 300},
            headers=auth_headers(),
        )

        order = _checkout_data(client, ayu["id"], ayu_ids)

        assert [i["contribution_id"] for i in order["items"]] == [ayu_ids[1]]

    def test_nothing_left_to_pay_returns_422(self, client):
        ayu, _, _, _, ayu_ids = _two_expenses(client)
        client.post(
            f"/api/v1/contributions/{ayu_ids[0]}/manual-payment",
            json={"amount": 300},
            headers=auth_headers(),
        )

        resp = checkout(client, ayu["id"], ayu_ids[:1])

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "NO_REMAINING_PAYMENT"

    def test_other_participants_contributions_are_ignored(self, client):
        ayu, budi, villa, _, ayu_ids = _two_expenses(client)
        budi_id = _contribution_of(villa, budi["id"])["id"]

        order = _checkout_data(client, ayu["id"], [ayu_ids[0], budi_id])
        assert [i["contribution_id"] for i in order["items"]] == [ayu_ids[0]]

        resp = checkout(client, ayu["id"], [budi_id])
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "CONTRIBUTION_NOT_FOUND"

    def test_unknown_participant_returns_404(self, client):
        resp = checkout(client, 9999, [1])
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "PARTICIPANT_NOT_FOUND"

    def test_empty_selection_returns_400(self, client):
        ayu, *_ = _two_expenses(client)
        resp = checkout(client, ayu["id"], [])
        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "contribution_ids"

    def test_requires_token(self, client):
        resp = client.post(
            "/api/v1/payments/checkout",
            json={"participant_id": 1, "contribution_ids": [1]},
        )
        assert resp.status_code == 401


# ═══════════════════════════════════════════════════════════════════════════
# Checkout → Snap session
# ═══════════════════════════════════════════════════════════════════════════

class TestCheckoutGatewaySession:

    def _sent_params(self, snap_create_transaction) -> dict:
        snap_create_transaction.assert_called_once()
        return snap_create_transaction.call_args.args[0]

    def test_response_carries_token_and_redirect_url(self, client, snap_create_transaction):
        ayu, _, _, _, ayu_ids = _two_expenses(client)

        order = _checkout_data(client, ayu["id"], ayu_ids)

        assert order["snap_token"] == f"snap-{order['order_id']}"
        assert order["redirect_url"].endswith(f"/snap-{order['order_id']}")
        assert _order(client, order["order_id"])["snap_token"] == order["snap_token"]

    def test_item_details_include_service_fee_line(self, client, snap_create_transaction):
        ayu, _, _, _, ayu_ids = _two_expenses(client)

        order = _checkout_data(client, ayu["id"], ayu_ids)
        params = self._sent_params(snap_create_transaction)

        assert params["transaction_details"] == {
            "order_id": order["order_id"],
            "gross_amount": 2800,
        }
        assert params["customer_details"] == {"first_name": "Ayu"}
        assert params["item_details"] == [
            {"id": str(ayu_ids[0]), "name": "Villa", "price": 300, "quantity": 1},
            {"id": str(ayu_ids[1]), "name": "Boat", "price": 400, "quantity": 1},
            {
                "id": "service-fee",
                "name": "Payment gateway service fee",
                "price": 2100,
                "quantity": 1,
            },
        ]
        assert sum(i["price"] * i["quantity"] for i in params["item_details"]) == 2800

    def test_callbacks_point_at_plan_page(self, client, snap_create_transaction):
        ayu, _, _, _, ayu_ids = _two_expenses(client)

        _checkout_data(client, ayu["id"], ayu_ids)
        callbacks = self._sent_params(snap_create_transaction)["callbacks"]

        assert callbacks["finish"] == f"https://planner.test/plan/{PLAN_ID}?payment=success"
        assert callbacks["error"].endswith("?payment=error")
        assert callbacks["pending"].endswith("?payment=pending")

    def test_gateway_rejection_returns_502_and_saves_nothing(self, client, snap_create_transaction):
        ayu, _, villa, _, ayu_ids = _two_expenses(client)
        snap_create_transaction.side_effect = MidtransAPIError("Access denied due to unauthorized transaction", http_status_code=401)

        resp = checkout(client, ayu["id"], ayu_ids)

        assert resp.status_code == 502
        assert resp.get_json()["error"]["code"] == "GATEWAY_UNAVAILABLE"
        order_id = self._sent_params(snap_create_transaction)["transaction_details"]["order_id"]
        missing = client.get(f"/api/v1/payments/orders/{order_id}", headers=auth_headers())
        assert missing.status_code == 404
        assert _contribution_of(get_expense(client, villa["id"]), ayu["id"])["order_ref"] is None

    def test_gateway_unreachable_returns_502(self, client, snap_create_transaction):
        ayu, _, _, _, ayu_ids = _two_expenses(client)
        snap_create_transaction.side_effect = requests.ConnectionError("connection refused")

        resp = checkout(client, ayu["id"], ayu_ids)

        assert resp.status_code == 502
        assert resp.get_json()["error"]["code"] == "GATEWAY_UNAVAILABLE"

    def test_retry_after_failure_opens_a_new_order(self, client, snap_create_transaction):
        ayu, _, _, _, ayu_ids = _two_expenses(client)
        snap_create_transaction.side_effect = requests.Timeout("read timed out")
        assert checkout(client, ayu["id"], ayu_ids).status_code == 502

        snap_create_transaction.side_effect = lambda params: {
            "token": "snap-retry",
            "redirect_url": "https://app.sandbox.midtrans.com/snap/v4/redirection/snap-retry",
        }
        order = _checkout_data(client, ayu["id"], ayu_ids)

        assert order["snap_token"] == "snap-retry"
        assert order["net_amount"] == 700


# ═══════════════════════════════════════════════════════════════════════════
# GET /payments/orders/:order_id
# ═══════════════════════════════════════════════════════════════════════════

class TestGetOrder:

    def test_returns_order(self, client):
        ayu, _, _, _, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)

        fetched = _order(client, order["order_id"])

        assert fetched["gross_amount"] == 2800
        assert fetched["status"] == "pending"

    def test_unknown_order_returns_404(self, client):
        resp = client.get("/api/v1/payments/orders/ORDER-9-9-1", headers=auth_headers())
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "ORDER_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# POST /payments/notification
# ═══════════════════════════════════════════════════════════════════════════

class TestNotificationSuccess:

    def test_full_settlement_pays_every_item(self, client):
        ayu, _, villa, boat, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)

        resp = notify(client, order, "settlement")

        assert resp.status_code == 200
        result = resp.get_json()["data"]
        assert result["accepted"] is True
        assert result["applied"] is True
        assert result["status"] == "success"
        assert result["credited"] == [
            {"contribution_id": ayu_ids[0], "amount": 300},
            {"contribution_id": ayu_ids[1], "amount": 400},
        ]
        assert _contribution_of(get_expense(client, villa["id"]), ayu["id"])["status"] == "settled"
        boat_row = _contribution_of(get_expense(client, boat["id"]), ayu["id"])
        assert boat_row["amount_paid"] == 400
        assert boat_row["payment_method"] == "gateway"

    def test_lump_payment_fills_oldest_first(self, client):
        ayu, _, villa, boat, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)

        # 2600 gross - 2100 fee = 500 net: 300 to the villa, 200 to the boat.
        result = notify(client, order, "settlement", gross_amount="2600.00").get_json()["data"]

        assert result["credited"] == [
            {"contribution_id": ayu_ids[0], "amount": 300},
            {"contribution_id": ayu_ids[1], "amount": 200},
        ]
        assert _contribution_of(get_expense(client, villa["id"]), ayu["id"])["amount_paid"] == 300
        boat_row = _contribution_of(get_expense(client, boat["id"]), ayu["id"])
        assert (boat_row["amount_paid"], boat_row["remaining"], boat_row["status"]) == (200, 200, "partial")

    def test_capture_accepted_counts_as_success(self, client):
        ayu, _, _, _, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)

        result = notify(client, order, "capture", fraud_status="accept").get_json()["data"]

        assert result["status"] == "success"

    def test_payment_events_carry_order_ref(self, client):
        ayu, _, _, _, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)

        notify(client, order, "settlement")

        payments = [e for e in history(client) if e["action"] == "payment"]
        assert len(payments) == 2
        assert {e["order_ref"] for e in payments} == {order["order_id"]}
        assert {e["payment_method"] for e in payments} == {"gateway"}
        assert all(e["actor_id"] is None for e in payments)

    def test_credit_bumps_expense_version(self, client):
        ayu, _, villa, _, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids[:1])
        before = get_expense(client, villa["id"])["version"]

        notify(client, order, "settlement")

        assert get_expense(client, villa["id"])["version"] > before

    def test_funds_beyond_dues_are_reported_not_applied(self, client):
        ayu, _, villa, _, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids[:1])
        # Paid in cash while the gateway payment was in flight.
        client.post(
            f"/api/v1/contributions/{ayu_ids[0]}/manual-payment",
            json={"amount": 300},
            headers=auth_headers(),
        )

        resp = notify(client, order, "settlement")

        body = resp.get_json()
        assert body["data"]["credited"] == []
        assert body["data"]["overpayment"] == 300
        assert [w["code"] for w in body["warnings"]] == ["OVERPAYMENT"]
        assert _order(client, order["order_id"])["overpayment"] == 300
        assert _contribution_of(get_expense(client, villa["id"]), ayu["id"])["amount_paid"] == 300


class TestNotificationIdempotency:

    def test_duplicate_delivery_changes_nothing(self, client):
        ayu, _, _, boat, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)
        notify(client, order, "settlement", gross_amount="2600.00")
        events_after_first = len(history(client, limit=500))

        resp = notify(client, order, "settlement", gross_amount="2600.00")

        assert resp.status_code == 200
        result = resp.get_json()["data"]
        assert result["duplicate"] is True
        assert result["applied"] is False
        assert result["credited"] == []
        assert len(history(client, limit=500)) == events_after_first
        assert _contribution_of(get_expense(client, boat["id"]), ayu["id"])["amount_paid"] == 200

    def test_success_after_failure_is_ignored(self, client):
        ayu, _, villa, _, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)

        notify(client, order, "deny")
        result = notify(client, order, "settlement").get_json()["data"]

        assert result["status"] == "failed"
        assert result["duplicate"] is True
        assert _contribution_of(get_expense(client, villa["id"]), ayu["id"])["amount_paid"] == 0


class TestNotificationNonSuccess:

    def test_deny_fails_order_without_credit(self, client):
        ayu, _, villa, _, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)

        result = notify(client, order, "deny").get_json()["data"]

        assert result["status"] == "failed"
        assert result["credited"] == []
        fetched = _order(client, order["order_id"])
        assert fetched["status"] == "failed"
        assert fetched["transaction_status"] == "deny"
        assert _contribution_of(get_expense(client, villa["id"]), ayu["id"])["amount_paid"] == 0

    def test_expire_fails_order(self, client):
        ayu, _, _, _, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)

        assert notify(client, order, "expire").get_json()["data"]["status"] == "failed"

    def test_pending_then_settlement(self, client):
        ayu, _, _, boat, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)

        first = notify(client, order, "pending").get_json()["data"]
        assert first["status"] == "pending"
        assert first["applied"] is False

        second = notify(client, order, "settlement").get_json()["data"]
        assert second["status"] == "success"
        assert _contribution_of(get_expense(client, boat["id"]), ayu["id"])["amount_paid"] == 400

    def test_capture_under_review_stays_pending(self, client):
        ayu, _, villa, _, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)

        result = notify(client, order, "capture", fraud_status="challenge").get_json()["data"]

        assert result["status"] == "pending"
        assert _contribution_of(get_expense(client, villa["id"]), ayu["id"])["amount_paid"] == 0

    def test_unrecognised_status_is_accepted_as_noop(self, client):
        ayu, _, _, _, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)

        resp = notify(client, order, "refund")

        assert resp.status_code == 200
        assert resp.get_json()["data"]["status"] == "pending"
        assert _order(client, order["order_id"])["status"] == "pending"


class TestNotificationRejected:

    def test_bad_signature_returns_403(self, client):
        ayu, _, villa, _, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)
        body = signed_notification(order["order_id"], "2800.00", "settlement")
        body["gross_amount"] = "99999999.00"

        resp = client.post("/api/v1/payments/notification", json=body)

        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "INVALID_SIGNATURE"
        assert _order(client, order["order_id"])["status"] == "pending"
        assert _contribution_of(get_expense(client, villa["id"]), ayu["id"])["amount_paid"] == 0

    def test_wrong_server_key_returns_403(self, client):
        ayu, _, _, _, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)

        resp = notify(client, order, "settlement", server_key="someone-elses-key")

        assert resp.status_code == 403

    def test_unknown_order_returns_404(self, client):
        body = signed_notification("ORDER-9-9-1", "2800.00", "settlement")

        resp = client.post("/api/v1/payments/notification", json=body)

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "ORDER_NOT_FOUND"

    def test_fractional_gross_returns_400_and_keeps_order_pending(self, client):
        ayu, _, _, _, ayu_ids = _two_expenses(client)
        order = _checkout_data(client, ayu["id"], ayu_ids)

        resp = notify(client, order, "settlement", gross_amount="2800.50")

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_AMOUNT"
        assert _order(client, order["order_id"])["status"] == "pending"

    def test_missing_fields_return_400(self, client):
        resp = client.post("/api/v1/payments/notification", json={"order_id": "ORDER-1-1-1"})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"
