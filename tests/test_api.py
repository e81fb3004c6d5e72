from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from categorizer import CategoryMatcher, parse_knowledge
from database import Base
from main import app, get_db, get_matcher
from recurrence import local_today


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(
        bind=engine, autoflush=False, expire_on_commit=False
    )

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    matcher = CategoryMatcher(parse_knowledge("# Subscriptions\nnetflix\n\n# Other\n"))
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_matcher] = lambda: matcher
    yield TestClient(app)
    app.dependency_overrides.clear()
    engine.dispose()


def _create(client, **overrides):
    payload = {
        "description": "Salary",
        "amount": "3000.00",
        "effective_date": (local_today() - timedelta(days=1)).isoformat(),
        "type": "income",
    }
    payload.update(overrides)
    resp = client.post("/api/transactions", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_transaction_endpoints(client):
    created = _create(client)
    assert Decimal(created["amount"]) == Decimal("3000.00")
    assert created["recurrence"] == "none"

    resp = client.get(f"/api/transactions/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["description"] == "Salary"

    resp = client.put(
        f"/api/transactions/{created['id']}",
        json={
            "description": "Salary March",
            "amount": "3100.00",
            "effective_date": created["effective_date"],
            "type": "income",
        },
    )
    assert resp.status_code == 200
    assert Decimal(resp.json()["amount"]) == Decimal("3100.00")

    assert len(client.get("/api/transactions").json()) == 1
    assert client.delete(f"/api/transactions/{created['id']}").status_code == 204
    assert client.get(f"/api/transactions/{created['id']}").status_code == 404


def test_transaction_validation(client):
    resp = client.post(
        "/api/transactions",
        json={
            "description": "Nothing",
            "amount": "0",
            "effective_date": "2025-01-01",
            "type": "expense",
        },
    )
    assert resp.status_code == 422

    resp = client.post(
        "/api/transactions",
        json={
            "description": "Bad",
            "amount": "-5",
            "effective_date": "2025-01-01",
            "type": "expense",
        },
    )
    assert resp.status_code == 422

    resp = client.post(
        "/api/transactions",
        json={
            "description": "One-off with end",
            "amount": "5",
            "effective_date": "2025-01-01",
            "type": "expense",
            "end_date": "2025-02-01",
        },
    )
    assert resp.status_code == 422

    resp = client.get("/api/transactions?start=2025-02-01&end=2025-01-01")
    assert resp.status_code == 400


def test_category_endpoints(client):
    resp = client.post("/api/categories", json={"name": "Food", "color": "#10B981"})
    assert resp.status_code == 201
    category_id = resp.json()["id"]

    assert client.post("/api/categories", json={"name": "food"}).status_code == 400
    assert client.post(
        "/api/categories", json={"name": "Bad", "color": "green"}
    ).status_code == 422

    txn = _create(client, category_id=category_id, type="expense", amount="10.00")
    assert txn["category"]["name"] == "Food"

    assert client.delete(f"/api/categories/{category_id}").status_code == 204
    assert client.get(f"/api/transactions/{txn['id']}").json()["category"] is None


def test_balance_endpoints(client):
    _create(client)
    _create(client, description="Rent", type="expense", amount="1200.00")

    body = client.get("/api/balance").json()
    assert Decimal(body["balance"]) == Decimal("1800.00")
    assert Decimal(body["total_income"]) == Decimal("3000.00")

    yesterday = (local_today() - timedelta(days=2)).isoformat()
    body = client.get(f"/api/balance/as-of?date={yesterday}").json()
    assert Decimal(body["balance"]) == Decimal("0.00")

    points = client.get("/api/balance/projection?days=7").json()
    assert len(points) == 8
    assert points[0]["date"] == local_today().isoformat()
    assert all(Decimal(p["balance"]) == Decimal("1800.00") for p in points)

    assert client.get("/api/balance/projection?days=-1").status_code == 422


def test_simulate_endpoint(client):
    _create(client)

    resp = client.get("/api/balance/simulate?amount=4000&days=10")
    assert resp.status_code == 200
    body = resp.json()
    assert body["goes_negative"] is True
    assert body["negative_date"] == local_today().isoformat()
    assert body["negative_reason"] == "Simulated purchase"
    assert Decimal(body["projections"][0]["balance"]) == Decimal("-1000.00")
    assert len(body["projections"]) == 11

    resp = client.get("/api/balance/simulate?amount=100&recurrence=MONTHLY&occurrences=2")
    assert resp.status_code == 200
    assert Decimal(resp.json()["simulated_amount"]) == Decimal("200.00")

    resp = client.get("/api/balance/simulate?amount=10&recurrence=hourly")
    assert resp.status_code == 400


def test_recurring_generate_endpoint(client):
    template = _create(
        client,
        description="Coffee",
        amount="5.00",
        type="expense",
        recurrence="daily",
        effective_date=(local_today() - timedelta(days=2)).isoformat(),
    )

    templates = client.get("/api/recurring").json()
    assert [t["id"] for t in templates] == [template["id"]]

    body = client.post("/api/recurring/generate").json()
    assert body["created"] == 2
    assert body["as_of"] == local_today().isoformat()

    assert client.post("/api/recurring/generate").json()["created"] == 0
    assert len(client.get("/api/transactions").json()) == 3


def test_csv_import_flow(client):
    content = "Date,Description,Amount\n2025-03-01,PGTO NETFLIX,-55.90\n"
    resp = client.post(
        "/api/import/csv/preview",
        files={"file": ("statement.csv", content.encode("utf-8"), "text/csv")},
    )
    assert resp.status_code == 200
    preview = resp.json()
    assert preview["errors"] == []
    assert preview["rows"][0]["category"] == "Subscriptions"
    assert preview["rows"][0]["type"] == "expense"

    resp = client.post("/api/import/csv/commit", json=preview["rows"])
    assert resp.json() == {"created": 1}

    resp = client.get("/api/transactions/export.csv")
    assert resp.status_code == 200
    assert "PGTO NETFLIX" in resp.text
    assert "Subscriptions" in resp.text
