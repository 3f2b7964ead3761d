"""
tests/integration/test_participants.py — Participant endpoints.

Endpoints covered:
  POST   /participants            → 201
  GET    /plans/:id/participants  → 200 (position order, plan-scoped)
  DELETE /participants/:id        → 200 / 404

Re-splitting on removal is covered in test_roster_change.py.
"""

from __future__ import annotations

from datetime import timedelta

from .conftest import PLAN_ID, auth_headers, make_participant, make_token


class TestCreateParticipant:

    def test_create_returns_201(self, client):
        resp = client.post(
            "/api/v1/participants",
            json={"plan_id": PLAN_ID, "name": "Ayu", "position": 2},
            headers=auth_headers(),
        )
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["name"] == "Ayu"
        assert data["plan_id"] == PLAN_ID
        assert data["position"] == 2
        assert isinstance(data["id"], int)

    def test_blank_name_returns_400(self, client):
        resp = client.post(
            "/api/v1/participants",
            json={"plan_id": PLAN_ID, "name": "  "},
            headers=auth_headers(),
        )
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_FIELD"
        assert error["field"] == "name"

    def test_missing_plan_returns_400(self, client):
        resp = client.post("/api/v1/participants", json={"name": "Ayu"}, headers=auth_headers())
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"

    def test_requires_token(self, client):
        resp = client.post("/api/v1/participants", json={"plan_id": PLAN_ID, "name": "Ayu"})
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_MISSING"

    def test_expired_token_rejected(self, client):
        token = make_token(expires_in=timedelta(minutes=-1))
        resp = client.post(
            "/api/v1/participants",
            json={"plan_id": PLAN_ID, "name": "Ayu"},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_EXPIRED"

    def test_malformed_header_rejected(self, client):
        resp = client.get(
            f"/api/v1/plans/{PLAN_ID}/participants",
            headers={"Authorization": "Token abc"},
        )
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_INVALID"


class TestListParticipants:

    def test_ordered_by_position_then_id(self, client):
        make_participant(client, name="Cici", position=1)
        make_participant(client, name="Ayu", position=0)
        make_participant(client, name="Budi", position=1)

        resp = client.get(f"/api/v1/plans/{PLAN_ID}/participants", headers=auth_headers())

        assert resp.status_code == 200
        assert [p["name"] for p in resp.get_json()["data"]] == ["Ayu", "Cici", "Budi"]

    def test_scoped_to_plan(self, client):
        make_participant(client, plan_id=PLAN_ID, name="Ayu")
        make_participant(client, plan_id=2, name="Dewi")

        resp = client.get("/api/v1/plans/2/participants", headers=auth_headers())

        assert [p["name"] for p in resp.get_json()["data"]] == ["Dewi"]

    def test_empty_plan_returns_empty_list(self, client):
        resp = client.get("/api/v1/plans/77/participants", headers=auth_headers())
        assert resp.status_code == 200
        assert resp.get_json()["data"] == []


class TestDeleteParticipant:

    def test_delete_without_expenses(self, client):
        ayu = make_participant(client, name="Ayu")

        resp = client.delete(f"/api/v1/participants/{ayu['id']}", headers=auth_headers())

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["deleted"] is True
        assert data["participant_id"] == ayu["id"]
        assert data["plan_id"] == PLAN_ID
        assert data["resplit_expense_ids"] == []
        assert data["retained_paid"] == 0

        listed = client.get(f"/api/v1/plans/{PLAN_ID}/participants", headers=auth_headers())
        assert listed.get_json()["data"] == []

    def test_delete_unknown_returns_404(self, client):
        resp = client.delete("/api/v1/participants/9999", headers=auth_headers())
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "PARTICIPANT_NOT_FOUND"
