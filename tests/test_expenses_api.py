"""HTTP contract of the expense endpoints."""

import inspect
from datetime import date, timedelta

from fastapi.testclient import TestClient

from expense_manager.main import create_app


def lunch(**overrides):
    body = {
        "amount": 12.5,
        "category": "FOOD",
        "subcategory": "LUNCH",
        "date": "2024-03-01",
        "note": "noodles",
    }
    body.update(overrides)
    return body


def test_requires_token(client):
    r = client.get("/v1/expenses")
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Access token required"}


def test_rejects_garbage_token(client):
    r = client.get("/v1/expenses", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid token"


def test_create_and_get(client, auth_headers):
    headers = auth_headers()
    r = client.post("/v1/expenses", json=lunch(), headers=headers)
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["success"] is True
    assert body["message"] == "Expense created successfully"
    data = body["data"]
    assert data["amount"] == 12.5
    assert data["subcategory"] == "LUNCH"
    assert data["date"] == "2024-03-01"

    r = client.get(f"/v1/expenses/{data['id']}", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["note"] == "noodles"


def test_second_breakfast_is_rejected(client, auth_headers):
    headers = auth_headers()
    breakfast = lunch(subcategory="BREAKFAST")
    assert client.post("/v1/expenses", json=breakfast, headers=headers).status_code == 201
    r = client.post("/v1/expenses", json=breakfast, headers=headers)
    assert r.status_code == 400
    assert r.json() == {
        "success": False,
        "message": "You can only have one breakfast expense per day",
    }


def test_validation_errors_are_listed(client, auth_headers):
    r = client.post(
        "/v1/expenses",
        json={"amount": -1, "category": "FOOD", "date": "2024-03-01"},
        headers=auth_headers(),
    )
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["message"] == "Validation error"
    assert any(d.startswith("amount:") for d in body["details"])


def test_future_date_is_rejected(client, auth_headers):
    tomorrow = (date.today() + timedelta(days=1)).isoformat()
    r = client.post("/v1/expenses", json=lunch(date=tomorrow), headers=auth_headers())
    assert r.status_code == 400
    assert any("future" in d for d in r.json()["details"])


def test_batch_is_all_or_nothing(client, auth_headers):
    headers = auth_headers()
    r = client.post(
        "/v1/expenses/multiple",
        json={
            "date": "2024-03-01",
            "expenses": [
                {"amount": 8, "category": "FOOD", "subcategory": "LUNCH"},
                {"amount": 3, "category": "TRANSPORT"},
                {"amount": 9, "category": "FOOD", "subcategory": "LUNCH"},
            ],
        },
        headers=headers,
    )
    assert r.status_code == 400
    body = r.json()
    assert body["data"]["index"] == 2
    assert body["message"] == "Cannot add multiple lunch expenses in one submission"

    listed = client.get("/v1/expenses", headers=headers).json()["data"]
    assert listed["pagination"]["total"] == 0


def test_batch_success(client, auth_headers):
    r = client.post(
        "/v1/expenses/multiple",
        json={
            "date": "2024-03-01",
            "expenses": [
                {"amount": 8, "category": "FOOD", "subcategory": "LUNCH"},
                {"amount": 3, "category": "TRANSPORT", "note": "bus"},
            ],
        },
        headers=auth_headers(),
    )
    assert r.status_code == 201
    body = r.json()
    assert body["message"] == "Successfully created 2 expenses"
    assert [e["category"] for e in body["data"]] == ["FOOD", "TRANSPORT"]


def test_list_shape_and_pagination(client, auth_headers):
    headers = auth_headers()
    for day in range(1, 6):
        client.post(
            "/v1/expenses",
            json={"amount": 2, "category": "MISC", "date": f"2024-03-0{day}"},
            headers=headers,
        )
    r = client.get("/v1/expenses", params={"limit": 2, "offset": 2}, headers=headers)
    assert r.status_code == 200
    data = r.json()["data"]
    assert [e["date"] for e in data["records"]] == ["2024-03-03", "2024-03-02"]
    assert data["pagination"] == {"total": 5, "limit": 2, "offset": 2, "hasMore": True}
    assert data["totals"] == {"amount": 10.0, "count": 5}

    r = client.get(
        "/v1/expenses",
        params={"from": "2024-03-04", "to": "2024-03-31", "category": "MISC"},
        headers=headers,
    )
    assert r.json()["data"]["pagination"]["total"] == 2


def test_list_rejects_inverted_range(client, auth_headers):
    r = client.get(
        "/v1/expenses",
        params={"from": "2024-03-05", "to": "2024-03-01"},
        headers=auth_headers(),
    )
    assert r.status_code == 400
    assert r.json()["details"] == ["from cannot be after to"]


def test_update_and_delete(client, auth_headers):
    headers = auth_headers()
    created = client.post(
        "/v1/expenses", json=lunch(subcategory="BREAKFAST"), headers=headers
    ).json()["data"]

    r = client.put(
        f"/v1/expenses/{created['id']}", json={"note": "eggs"}, headers=headers
    )
    assert r.status_code == 200
    assert r.json()["message"] == "Expense updated successfully"
    assert r.json()["data"]["note"] == "eggs"

    r = client.put(f"/v1/expenses/{created['id']}", json={}, headers=headers)
    assert r.status_code == 400

    r = client.delete(f"/v1/expenses/{created['id']}", headers=headers)
    assert r.status_code == 200
    assert r.json()["message"] == "Expense deleted successfully"
    assert client.get(f"/v1/expenses/{created['id']}", headers=headers).status_code == 404


def test_other_owner_is_forbidden(client, auth_headers):
    alice = auth_headers("alice")
    bob = auth_headers("bob")
    created = client.post("/v1/expenses", json=lunch(), headers=alice).json()["data"]

    r = client.put(f"/v1/expenses/{created['id']}", json={"note": "x"}, headers=bob)
    assert r.status_code == 403
    assert r.json()["message"] == "Not authorized to update this expense"
    r = client.delete(f"/v1/expenses/{created['id']}", headers=bob)
    assert r.status_code == 403
    # bob's own listing never shows alice's records
    assert client.get("/v1/expenses", headers=bob).json()["data"]["records"] == []


def test_masked_foreign_ids(settings):
    settings.mask_foreign_expenses = True
    with TestClient(create_app(settings_override=settings)) as c:
        tokens = {}
        for user in ("alice", "bob"):
            c.post("/v1/auth/register", json={"user_id": user, "password": "secret123"})
            login = c.post(
                "/v1/auth/login", json={"user_id": user, "password": "secret123"}
            )
            tokens[user] = {"Authorization": f"Bearer {login.json()['data']['token']}"}
        created = c.post("/v1/expenses", json=lunch(), headers=tokens["alice"]).json()
        r = c.get(f"/v1/expenses/{created['data']['id']}", headers=tokens["bob"])
        assert r.status_code == 404


def test_restrictions(client, auth_headers):
    headers = auth_headers()
    client.post("/v1/expenses", json=lunch(subcategory="DINNER"), headers=headers)
    client.post(
        "/v1/expenses",
        json={"amount": 800, "category": "RENT", "date": "2024-03-20"},
        headers=headers,
    )
    r = client.get("/v1/expenses/restrictions/2024-03-01", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"] == {
        "date": "2024-03-01",
        "unavailableFood": ["DINNER"],
        "rentPaid": True,
    }

    r = client.get("/v1/expenses/restrictions/not-a-date", headers=headers)
    assert r.status_code == 400


def test_pay_rent_and_status(client, auth_headers):
    headers = auth_headers()
    today = date.today().isoformat()
    status = client.get("/v1/expenses/rent-status", headers=headers).json()["data"]
    assert status["paid"] is False
    assert status["record"] is None

    r = client.post(
        "/v1/expenses/pay-rent", json={"amount": 950, "date": today}, headers=headers
    )
    assert r.status_code == 201
    assert r.json()["message"] == "Rent payment recorded successfully"
    assert r.json()["data"]["category"] == "RENT"

    r = client.post(
        "/v1/expenses/pay-rent", json={"amount": 950, "date": today}, headers=headers
    )
    assert r.status_code == 400
    assert r.json()["message"] == "Rent has already been paid for this month"

    status = client.get("/v1/expenses/rent-status", headers=headers).json()["data"]
    assert status["paid"] is True
    assert status["record"]["date"] == today


def test_pay_rent_outside_current_month(client, auth_headers):
    last_month = (date.today().replace(day=1) - timedelta(days=1)).isoformat()
    r = client.post(
        "/v1/expenses/pay-rent",
        json={"amount": 950, "date": last_month},
        headers=auth_headers(),
    )
    assert r.status_code == 400


def test_unknown_endpoint(client):
    r = client.get("/v1/nowhere")
    assert r.status_code == 404
    assert r.json() == {
        "success": False,
        "message": "Endpoint not found",
        "path": "/v1/nowhere",
    }


def test_health_and_request_id(client):
    r = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert r.status_code == 200
    assert r.json()["database"] == "connected"
    assert r.headers["X-Request-ID"] == "abc-123"


def test_timestamps_carry_utc_marker(client, auth_headers):
    data = client.post("/v1/expenses", json=lunch(), headers=auth_headers()).json()["data"]
    assert data["created_at"].endswith("Z")
    assert data["updated_at"].endswith("Z")


def test_database_handlers_run_in_threadpool(client):
    # sqlite calls block, so these endpoints must be plain functions
    for route in client.app.routes:
        path = getattr(route, "path", "")
        if path.startswith("/v1") or path == "/health":
            assert not inspect.iscoroutinefunction(route.endpoint), path
