from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from ledger.api import app, get_service
from ledger.service import LedgerService


SUPERUSER, MANAGER, CASHIER, ALICE, BOB = 1, 2, 3, 4, 5


def as_user(user_id):
    return {"X-User-Id": str(user_id)}


@pytest.fixture
def client():
    service = LedgerService()
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_missing_actor_header(client):
    response = client.post("/transactions", json={"type": "redemption", "amount": 5})

    assert response.status_code == 401


def test_unknown_actor(client):
    response = client.get("/transactions", headers=as_user(999))

    assert response.status_code == 401


def test_purchase_and_balance(client):
    response = client.post(
        "/transactions",
        json={"type": "purchase", "user_id": ALICE, "spent": 10},
        headers=as_user(CASHIER),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["type"] == "purchase"
    assert body["amount"] == 40

    balance = client.get(f"/users/{ALICE}/balance", headers=as_user(ALICE))
    assert balance.json()["balance"] == 40


def test_regular_user_cannot_purchase(client):
    response = client.post(
        "/transactions",
        json={"type": "purchase", "user_id": ALICE, "spent": 10},
        headers=as_user(ALICE),
    )

    assert response.status_code == 403
    assert response.json()["error"] == "UnauthorizedError"


def test_missing_type(client):
    response = client.post("/transactions", json={"amount": 5}, headers=as_user(ALICE))

    assert response.status_code == 400


def test_redemption_lifecycle(client):
    client.post("/transactions", json={"type": "adjustment", "user_id": ALICE, "amount": 50}, headers=as_user(MANAGER))

    too_much = client.post("/transactions", json={"type": "redemption", "amount": 60}, headers=as_user(ALICE))
    assert too_much.status_code == 400
    assert too_much.json()["error"] == "InsufficientBalanceError"

    created = client.post("/transactions", json={"type": "redemption", "amount": 30}, headers=as_user(ALICE))
    redemption_id = created.json()["id"]
    assert created.json()["processed"] is False

    lookup = client.get(f"/transactions/lookup-redemption/{redemption_id}", headers=as_user(CASHIER))
    assert lookup.status_code == 200

    pending = client.get("/transactions/pending-redemptions", headers=as_user(CASHIER))
    assert [t["id"] for t in pending.json()["items"]] == [redemption_id]

    first = client.patch(f"/transactions/{redemption_id}/processed", headers=as_user(CASHIER))
    second = client.patch(f"/transactions/{redemption_id}/processed", headers=as_user(CASHIER))
    assert first.status_code == 200
    assert first.json()["processed_by"] == CASHIER
    assert second.status_code == 400
    assert second.json()["error"] == "AlreadyProcessedError"

    balance = client.get(f"/users/{ALICE}/balance", headers=as_user(ALICE))
    assert balance.json()["balance"] == 20


def test_search_with_null_related_id(client):
    client.post("/transactions", json={"type": "adjustment", "user_id": ALICE, "amount": 50}, headers=as_user(MANAGER))
    client.post("/transactions", json={"type": "transfer", "recipient_id": BOB, "amount": 20}, headers=as_user(ALICE))

    everything = client.get("/transactions", headers=as_user(MANAGER))
    unlinked = client.get("/transactions", params={"relatedId": "null"}, headers=as_user(MANAGER))
    transfers = client.get("/transactions", params={"type": "transfer", "limit": 1}, headers=as_user(MANAGER))

    assert everything.json()["total_count"] == 3
    assert unlinked.json()["total_count"] == 1
    assert transfers.json()["total_count"] == 2
    assert len(transfers.json()["items"]) == 1


def test_regular_search_of_other_user_forbidden(client):
    response = client.get("/transactions", params={"user_id": BOB}, headers=as_user(ALICE))

    assert response.status_code == 403


def test_suspicious_toggle(client):
    created = client.post(
        "/transactions", json={"type": "purchase", "user_id": ALICE, "spent": 5}, headers=as_user(CASHIER)
    )
    transaction_id = created.json()["id"]

    forbidden = client.patch(
        f"/transactions/{transaction_id}/suspicious", json={"suspicious": True}, headers=as_user(CASHIER)
    )
    flagged = client.patch(
        f"/transactions/{transaction_id}/suspicious", json={"suspicious": True}, headers=as_user(MANAGER)
    )
    missing = client.patch("/transactions/999/suspicious", json={"suspicious": True}, headers=as_user(MANAGER))

    assert forbidden.status_code == 403
    assert flagged.json()["suspicious"] is True
    assert missing.status_code == 404
    assert client.get(f"/users/{ALICE}/balance", headers=as_user(ALICE)).json()["balance"] == 0


def test_event_award_flow(client):
    now = datetime.now(timezone.utc)
    created = client.post(
        "/events",
        json={
            "name": "Trivia",
            "start_time": (now + timedelta(days=1)).isoformat(),
            "end_time": (now + timedelta(days=1, hours=2)).isoformat(),
            "points_budget": 50,
        },
        headers=as_user(MANAGER),
    )
    assert created.status_code == 201
    event_id = created.json()["id"]

    client.patch(f"/events/{event_id}/publish", headers=as_user(MANAGER))
    rsvp = client.post(f"/events/{event_id}/guests/me", headers=as_user(BOB))
    assert rsvp.status_code == 201

    awarded = client.post(f"/events/{event_id}/transactions", json={"amount": 20}, headers=as_user(MANAGER))
    assert awarded.status_code == 201
    assert [t["user_id"] for t in awarded.json()] == [BOB]

    over = client.post(f"/events/{event_id}/transactions", json={"amount": 40}, headers=as_user(MANAGER))
    assert over.status_code == 400
    assert over.json()["error"] == "BudgetExceededError"

    event = client.get(f"/events/{event_id}", headers=as_user(BOB))
    assert event.json()["points_awarded"] == 20


def test_unpublished_event_hidden_from_regular_users(client):
    now = datetime.now(timezone.utc)
    created = client.post(
        "/events",
        json={
            "name": "Draft",
            "start_time": (now + timedelta(days=1)).isoformat(),
            "end_time": (now + timedelta(days=1, hours=2)).isoformat(),
            "points_budget": 10,
        },
        headers=as_user(MANAGER),
    )
    event_id = created.json()["id"]

    assert client.get(f"/events/{event_id}", headers=as_user(BOB)).status_code == 404
    assert client.get(f"/events/{event_id}", headers=as_user(MANAGER)).status_code == 200

    client.patch(f"/events/{event_id}/publish", headers=as_user(MANAGER))
    assert client.get(f"/events/{event_id}", headers=as_user(BOB)).status_code == 200


def test_balance_and_ledger_visibility(client):
    client.post("/transactions", json={"type": "adjustment", "user_id": ALICE, "amount": 30}, headers=as_user(MANAGER))

    assert client.get(f"/users/{ALICE}/balance", headers=as_user(BOB)).status_code == 403
    assert client.get(f"/users/{ALICE}/balance", headers=as_user(CASHIER)).json()["balance"] == 30
    assert client.get(f"/users/{ALICE}/ledger", headers=as_user(CASHIER)).status_code == 403
    assert client.get(f"/users/{ALICE}/ledger", headers=as_user(MANAGER)).json()["total_count"] == 1

    bad_offset = client.get(f"/users/{ALICE}/ledger", params={"offset": -1}, headers=as_user(ALICE))
    bad_limit = client.get("/transactions/pending-redemptions", params={"limit": -1}, headers=as_user(CASHIER))
    assert bad_offset.status_code == 400
    assert bad_limit.status_code == 400


def test_register_and_verify_user(client):
    created = client.post("/users", json={"utorid": "dave0001", "name": "Dave"}, headers=as_user(CASHIER))
    assert created.status_code == 201
    user_id = created.json()["id"]
    assert created.json()["verified"] is False

    duplicate = client.post("/users", json={"utorid": "dave0001", "name": "Dave"}, headers=as_user(CASHIER))
    assert duplicate.status_code == 409

    promote = client.post(
        "/users", json={"utorid": "erin0001", "name": "Erin", "role": "manager"}, headers=as_user(CASHIER)
    )
    assert promote.status_code == 403

    verified = client.patch(f"/users/{user_id}/verify", headers=as_user(MANAGER))
    assert verified.json()["verified"] is True
