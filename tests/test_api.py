from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db
from notifications import NotificationQueue
from services import CategoryService


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with TestingSession() as session:
        CategoryService(session).seed_defaults()

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.notifications = NotificationQueue()
    # Not used as a context manager so startup hooks (scheduler) stay off.
    yield TestClient(app)
    app.dependency_overrides.clear()


def category_id(client, type, name):
    for category in client.get(f"/categories/{type}").json():
        if category["name"] == name:
            return category["id"]
    raise AssertionError(f"missing category {name}")


def auth_headers(client, username="ana"):
    response = client.post(
        "/users/register",
        json={
            "username": username,
            "email": f"{username}@example.com",
            "password": "hunter2",
        },
    )
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['token']}"}


def test_health(client):
    assert client.get("/health").json() == {"status": "OK"}


def test_requests_without_token_are_unauthorized(client):
    assert client.get("/transactions").status_code == 401
    assert (
        client.get(
            "/transactions", headers={"Authorization": "Bearer nope"}
        ).status_code
        == 401
    )


def test_register_then_login(client):
    auth_headers(client)

    response = client.post(
        "/users/login", json={"username": "ana", "password": "hunter2"}
    )
    assert response.status_code == 200
    assert response.json()["user"]["username"] == "ana"

    bad = client.post("/users/login", json={"username": "ana", "password": "x"})
    assert bad.status_code == 401

    dup = client.post(
        "/users/register",
        json={"username": "ana", "email": "other@example.com", "password": "x"},
    )
    assert dup.status_code == 400


def test_expense_over_budget_alerts_and_notifies(client):
    headers = auth_headers(client)
    food = category_id(client, "expense", "Food")

    budget = client.post(
        "/budgets", json={"category_id": food, "limit_cents": 1_000}, headers=headers
    )
    assert budget.status_code == 201

    status = client.get(f"/budgets/{food}/almost", headers=headers)
    assert status.json() == {"alert": False, "remaining_cents": 1_000}

    response = client.post(
        "/transactions",
        json={"amount_cents": 1_500, "type": "expense", "category_id": food},
        headers=headers,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["tx"]["amount_cents"] == 1_500
    assert body["alert"]["alert"] is True
    assert body["alert"]["overspent_cents"] == 500

    [notification] = client.get("/notifications", headers=headers).json()
    assert notification["type"] == "budget_overspent"

    assert client.delete("/notifications", headers=headers).status_code == 204
    assert client.get("/notifications", headers=headers).json() == []


def test_budget_status_without_budget_is_not_found(client):
    headers = auth_headers(client)
    food = category_id(client, "expense", "Food")

    assert client.get(f"/budgets/{food}/almost", headers=headers).status_code == 404


def test_duplicate_budget_is_conflict(client):
    headers = auth_headers(client)
    food = category_id(client, "expense", "Food")
    payload = {"category_id": food, "limit_cents": 1_000}

    assert client.post("/budgets", json=payload, headers=headers).status_code == 201
    assert client.post("/budgets", json=payload, headers=headers).status_code == 409


def test_transactions_are_private_to_their_owner(client):
    ana = auth_headers(client, "ana")
    ben = auth_headers(client, "ben")
    salary = category_id(client, "income", "Salary")

    created = client.post(
        "/transactions",
        json={"amount_cents": 5_000, "type": "income", "category_id": salary},
        headers=ana,
    ).json()
    txn_id = created["tx"]["id"]
    assert created["alert"] is None

    assert client.get(f"/transactions/{txn_id}", headers=ben).status_code == 404
    assert client.get("/transactions", headers=ben).json()["total"] == 0
    page = client.get("/transactions", headers=ana).json()
    assert page["total"] == 1
    assert page["last_page"] == 1


def test_deposit_reports_available_amount(client):
    headers = auth_headers(client)
    salary = category_id(client, "income", "Salary")
    client.post(
        "/transactions",
        json={"amount_cents": 2_000, "type": "income", "category_id": salary},
        headers=headers,
    )
    goal = client.post(
        "/savings-goals",
        json={
            "name": "Bike",
            "target_cents": 10_000,
            "deadline": (datetime.now(timezone.utc) + timedelta(days=30)).isoformat(),
            "frequency": "weekly",
        },
        headers=headers,
    ).json()

    response = client.post(
        f"/savings-goals/{goal['id']}/deposit",
        json={"amount_cents": 3_000},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["available_cents"] == 2_000

    ok = client.patch(
        f"/savings-goals/{goal['id']}/deposit",
        json={"amount_cents": 2_000},
        headers=headers,
    )
    assert ok.status_code == 200
    assert ok.json()["current_cents"] == 2_000

    withdraw = client.patch(
        f"/savings-goals/{goal['id']}/withdraw",
        json={"amount_cents": 5_000},
        headers=headers,
    )
    assert withdraw.status_code == 409


def test_goal_completion_flow(client):
    headers = auth_headers(client)
    salary = category_id(client, "income", "Salary")
    client.post(
        "/transactions",
        json={"amount_cents": 50_000, "type": "income", "category_id": salary},
        headers=headers,
    )
    goal = client.post(
        "/savings-goals",
        json={
            "name": "Laptop",
            "target_cents": 10_000,
            "deadline": (datetime.now(timezone.utc) + timedelta(days=9)).isoformat(),
            "frequency": "weekly",
        },
        headers=headers,
    ).json()

    rec = client.get(
        f"/savings-goals/{goal['id']}/recommendation", headers=headers
    ).json()
    assert rec["periods_left"] == 2
    assert rec["recommended_cents"] == 5_000

    client.post(
        f"/savings-goals/{goal['id']}/deposit",
        json={"amount_cents": 10_000},
        headers=headers,
    )
    assert client.get("/lifetime-savings", headers=headers).json() == {
        "total_saved_cents": 10_000,
        "goals_completed": 1,
    }

    used = client.patch(f"/savings-goals/{goal['id']}/mark-used", headers=headers)
    assert used.status_code == 200
    assert used.json()["transaction"]["amount_cents"] == 10_000
    again = client.patch(f"/savings-goals/{goal['id']}/mark-used", headers=headers)
    assert again.status_code == 400

    summary = client.get("/dashboard/summary?period=month", headers=headers).json()
    assert summary["summary"]["balance_cents"] == 40_000


def test_delete_and_refund(client):
    headers = auth_headers(client)
    salary = category_id(client, "income", "Salary")
    client.post(
        "/transactions",
        json={"amount_cents": 5_000, "type": "income", "category_id": salary},
        headers=headers,
    )
    goal = client.post(
        "/savings-goals",
        json={
            "name": "Gift",
            "target_cents": 10_000,
            "deadline": (datetime.now(timezone.utc) + timedelta(days=30)).isoformat(),
            "frequency": "monthly",
        },
        headers=headers,
    ).json()
    client.post(
        f"/savings-goals/{goal['id']}/deposit",
        json={"amount_cents": 4_000},
        headers=headers,
    )

    response = client.delete(
        f"/savings-goals/{goal['id']}/delete-and-refund", headers=headers
    )
    assert response.status_code == 200
    assert response.json()["refunded_cents"] == 4_000
    assert client.get("/savings-goals", headers=headers).json() == []


def test_recurring_template_crud(client):
    headers = auth_headers(client)
    salary = category_id(client, "income", "Salary")
    food = category_id(client, "expense", "Food")
    payload = {
        "amount_cents": 300_000,
        "type": "income",
        "category_id": salary,
        "frequency": "monthly",
        "next_run": "2025-01-31",
    }

    created = client.post("/recurring-transactions", json=payload, headers=headers)
    assert created.status_code == 201
    template_id = created.json()["id"]

    mismatch = client.post(
        "/recurring-transactions",
        json={**payload, "category_id": food},
        headers=headers,
    )
    assert mismatch.status_code == 400

    paused = client.patch(
        f"/recurring-transactions/{template_id}/active",
        json={"active": False},
        headers=headers,
    )
    assert paused.json()["active"] is False

    deleted = client.delete(f"/recurring-transactions/{template_id}", headers=headers)
    assert deleted.status_code == 204
    assert client.get("/recurring-transactions", headers=headers).json() == []


def test_report_ranges_are_validated(client):
    headers = auth_headers(client)

    assert client.get("/reports/trend", headers=headers).status_code == 400
    assert (
        client.get(
            "/reports/category?start=2025-03-10&end=2025-03-01", headers=headers
        ).status_code
        == 400
    )
    assert client.get("/dashboard/summary?period=year", headers=headers).status_code == 400


def test_csv_export_covers_requested_range(client):
    headers = auth_headers(client)
    salary = category_id(client, "income", "Salary")
    client.post(
        "/transactions",
        json={
            "amount_cents": 12_345,
            "type": "income",
            "category_id": salary,
            "description": "=bonus",
        },
        headers=headers,
    )
    today = datetime.now(timezone.utc).date().isoformat()

    response = client.get(
        f"/transactions/export.csv?start={today}&end={today}", headers=headers
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert lines[0] == "CreatedAt,Amount,Type,Description,Category"
    assert lines[1].endswith("123.45,income,\t=bonus,Salary")


def test_pdf_export_requires_dates(client):
    headers = auth_headers(client)

    response = client.get("/transactions/export.pdf?start=2025-03-01", headers=headers)

    assert response.status_code == 400
