from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database import get_db
from main import app


@pytest.fixture()
def client(engine):
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _register(client) -> dict:
    response = client.post(
        "/api/users",
        json={
            "name": "Ada",
            "email": "ada@example.com",
            "cash_cents": 1_000,
            "checking_balance_cents": 100,
            "savings_balance_cents": 5_000,
        },
    )
    assert response.status_code == 201
    return response.json()


def _headers(user: dict) -> dict:
    return {"X-User-Id": str(user["id"])}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_user_header_is_required(client):
    assert client.get("/api/me").status_code == 401
    assert client.get("/api/me", headers={"X-User-Id": "abc"}).status_code == 401
    assert client.get("/api/me", headers={"X-User-Id": "404"}).status_code == 401

    user = _register(client)
    me = client.get("/api/me", headers=_headers(user))
    assert me.status_code == 200
    assert me.json()["cash_cents"] == 1_000


def test_transaction_round_trip_updates_account(client):
    user = _register(client)
    headers = _headers(user)
    checking = user["accounts"][0]

    created = client.post(
        "/api/transactions",
        headers=headers,
        json={
            "date": "2024-03-05",
            "type": "expense",
            "amount_cents": 30,
            "category": "Food",
            "account_id": checking["id"],
        },
    )
    assert created.status_code == 201
    txn = created.json()
    assert txn["category"] == "food"

    updated = client.put(
        f"/api/transactions/{txn['id']}",
        headers=headers,
        json={
            "date": "2024-03-05",
            "type": "expense",
            "amount_cents": 50,
            "category": "food",
            "account_id": checking["id"],
        },
    )
    assert updated.status_code == 200
    account = client.get(f"/api/accounts/{checking['id']}", headers=headers).json()
    assert account["balance_cents"] == 50
    assert account["expected_balance_cents"] == 50

    listing = client.get(
        "/api/transactions",
        headers=headers,
        params={"period": "custom", "start": "2024-03-01", "end": "2024-03-31"},
    ).json()
    assert [item["id"] for item in listing["items"]] == [txn["id"]]

    assert client.delete(f"/api/transactions/{txn['id']}", headers=headers).status_code == 204
    account = client.get(f"/api/accounts/{checking['id']}", headers=headers).json()
    assert account["balance_cents"] == 100


def test_error_mapping(client):
    user = _register(client)
    headers = _headers(user)
    checking = user["accounts"][0]

    missing = client.get("/api/transactions/999", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Transaction not found"

    broke = client.post(
        "/api/transactions",
        headers=headers,
        json={
            "date": "2024-03-05",
            "type": "expense",
            "amount_cents": 500,
            "category": "food",
            "account_id": checking["id"],
        },
    )
    assert broke.status_code == 400
    assert broke.json()["detail"].startswith("Insufficient funds")

    invalid = client.post(
        "/api/transactions",
        headers=headers,
        json={"date": "2024-03-05", "type": "expense", "amount_cents": 5, "category": "salary"},
    )
    assert invalid.status_code == 422

    bad_period = client.get("/api/transactions", headers=headers, params={"period": "decade"})
    assert bad_period.status_code == 400


def test_recurring_process_endpoint_is_idempotent(client):
    user = _register(client)
    headers = _headers(user)

    created = client.post(
        "/api/recurring",
        headers=headers,
        json={
            "type": "income",
            "amount_cents": 1_200,
            "category": "salary",
            "frequency": "yearly",
            "start_date": "2020-01-31",
        },
    )
    assert created.status_code == 201

    first = client.post("/api/recurring/process", headers=headers).json()
    assert first["processed"] >= 1
    assert first["errors"] == 0
    second = client.post("/api/recurring/process", headers=headers).json()
    assert second == {"processed": 0, "skipped": 0, "errors": 0}

    rules = client.get("/api/recurring", headers=headers).json()
    assert date.fromisoformat(rules[0]["next_occurrence"]) > date(2020, 1, 31)


def test_budget_goal_and_debt_endpoints(client):
    user = _register(client)
    headers = _headers(user)

    budget = client.post(
        "/api/budgets",
        headers=headers,
        json={"category": "food", "limit_cents": 1_000, "month": 3, "year": 2024},
    )
    assert budget.status_code == 200
    progress = client.get(
        "/api/budgets/progress", headers=headers, params={"month": 3, "year": 2024}
    ).json()
    assert progress[0]["spent_cents"] == 0
    assert progress[0]["remaining_cents"] == 1_000

    goal = client.post(
        "/api/goals", headers=headers, json={"name": "Trip", "target_cents": 8_000}
    ).json()
    client.post(f"/api/goals/{goal['id']}/add", headers=headers, json={"amount_cents": 1_000})
    allocations = client.get("/api/goals/allocations", headers=headers).json()
    assert allocations["pool_cents"] == 5_000
    assert allocations["allocations"][0]["allocated_cents"] == 5_000
    assert allocations["allocations"][0]["needed_cents"] == 2_000

    debt = client.post(
        "/api/debts", headers=headers, json={"name": "Loan", "amount_cents": 300}
    ).json()
    paid = client.post(
        f"/api/debts/{debt['id']}/pay", headers=headers, json={"amount_cents": 300}
    ).json()
    assert paid["status"] == "paid"
    assert paid["remaining_cents"] == 0

    assert client.get("/api/reconciliation/pending", headers=headers).json() == []


def test_recurring_patch_is_partial_and_toggle_resumes(client):
    user = _register(client)
    headers = _headers(user)
    rule = client.post(
        "/api/recurring",
        headers=headers,
        json={
            "type": "income",
            "amount_cents": 1_200,
            "category": "salary",
            "frequency": "monthly",
            "start_date": "2020-01-31",
            "active": False,
        },
    ).json()

    patched = client.patch(
        f"/api/recurring/{rule['id']}", headers=headers, json={"note": "Payroll"}
    )
    assert patched.status_code == 200
    assert patched.json()["active"] is False
    assert patched.json()["note"] == "Payroll"
    assert client.post("/api/recurring/process", headers=headers).json()["processed"] == 0

    bad = client.patch(f"/api/recurring/{rule['id']}", headers=headers, json={"colour": "red"})
    assert bad.status_code == 422

    resumed = client.post(
        f"/api/recurring/{rule['id']}/toggle", headers=headers, json={"active": True}
    )
    assert resumed.status_code == 200
    assert resumed.json()["active"] is True
    missing = client.post("/api/recurring/999/toggle", headers=headers, json={"active": True})
    assert missing.status_code == 404


def test_rollup_endpoints(client):
    user = _register(client)
    headers = _headers(user)
    for day, amount, category in (
        ("2024-02-29", 400, "food"),
        ("2024-03-01", 100, "food"),
        ("2024-03-31", 300, "housing"),
    ):
        created = client.post(
            "/api/transactions",
            headers=headers,
            json={
                "date": day,
                "type": "expense",
                "amount_cents": amount,
                "category": category,
            },
        )
        assert created.status_code == 201

    top = client.get(
        "/api/transactions/top-categories",
        headers=headers,
        params={"month": 3, "year": 2024},
    )
    assert top.status_code == 200
    assert top.json() == [
        {"category": "housing", "total_cents": 300},
        {"category": "food", "total_cents": 100},
    ]

    trend = client.get("/api/transactions/net-trend", headers=headers, params={"months": 2})
    assert trend.status_code == 200
    assert len(trend.json()) == 2
    assert client.get(
        "/api/transactions/net-trend", headers=headers, params={"months": 0}
    ).status_code == 400
