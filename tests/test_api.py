from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database import Base, build_engine
from main import app, get_db


@pytest.fixture
def client():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _account(client, name, balance):
    response = client.post("/api/accounts", json={"name": name, "balance": balance})
    assert response.status_code == 201
    return response.json()["id"]


def test_net_worth_envelope(client) -> None:
    first = _account(client, "Checking", "120.25")
    _account(client, "Savings", "79.75")

    body = client.get("/api/analytics/net-worth").json()
    assert body["error"] is None
    assert Decimal(body["data"]) == Decimal("200.00")

    body = client.get(f"/api/analytics/net-worth?accounts={first}").json()
    assert Decimal(body["data"]) == Decimal("120.25")


def test_invalid_period_is_reported_in_envelope(client) -> None:
    response = client.get("/api/analytics/budget-progress?period=fortnight")
    assert response.status_code == 200
    body = response.json()
    assert body["data"] is None
    assert body["error"]["kind"] == "InvalidPeriod"


def test_unknown_account_is_reported_in_envelope(client) -> None:
    body = client.get("/api/analytics/net-worth?accounts=42").json()
    assert body["error"]["kind"] == "NotFound"


def test_malformed_account_filter_is_rejected(client) -> None:
    response = client.get("/api/analytics/net-worth?accounts=abc")
    assert response.status_code == 400


def test_transfer_roundtrip(client) -> None:
    checking = _account(client, "Checking", "100")
    savings = _account(client, "Savings", "0")

    response = client.post(
        "/api/transfers",
        json={
            "from_account_id": checking,
            "to_account_id": savings,
            "amount": "30",
            "date": "2025-03-01",
        },
    )
    assert response.status_code == 201
    pair = response.json()
    withdrawal, deposit = pair["withdrawal"], pair["deposit"]
    assert withdrawal["transfer_pair_id"] == deposit["id"]
    assert deposit["type"] == "income"

    listing = client.get("/api/transactions").json()
    assert len(listing["items"]) == 2

    response = client.delete(f"/api/transactions/{withdrawal['id']}")
    assert response.status_code == 200
    assert sorted(response.json()["deleted"]) == sorted(
        [withdrawal["id"], deposit["id"]]
    )
    assert client.get("/api/transactions").json()["items"] == []


def test_missing_transaction_is_404(client) -> None:
    assert client.delete("/api/transactions/999").status_code == 404


def test_recurring_occurrences_clamp_to_month_end(client) -> None:
    checking = _account(client, "Checking", "0")
    response = client.post(
        "/api/recurring",
        json={
            "account_id": checking,
            "name": "Rent",
            "type": "expense",
            "amount": "900",
            "start_date": "2024-01-31",
            "frequency": "monthly",
        },
    )
    assert response.status_code == 201
    recurring_id = response.json()["id"]

    body = client.get(
        f"/api/recurring/{recurring_id}/occurrences",
        params={"start": "2024-02-01", "end": "2024-04-30"},
    ).json()
    assert body["data"] == ["2024-02-29", "2024-03-31", "2024-04-30"]

    toggled = client.post(f"/api/recurring/{recurring_id}/toggle?is_active=false")
    assert toggled.json()["is_active"] is False


def test_upcoming_payments_count_is_an_int(client) -> None:
    body = client.get("/api/analytics/upcoming-payments").json()
    assert body == {"data": 0, "error": None}


def test_category_budget_validation(client) -> None:
    response = client.post(
        "/api/categories",
        json={"name": "Groceries", "type": "expense", "budget_amount": "300"},
    )
    assert response.status_code == 422

    response = client.post(
        "/api/categories",
        json={
            "name": "Groceries",
            "type": "expense",
            "budget_amount": "300",
            "budget_frequency": "monthly",
        },
    )
    assert response.status_code == 201
    listing = client.get("/api/categories?type=expense").json()
    assert [c["name"] for c in listing] == ["Groceries"]
    assert listing[0]["budget_frequency"] == "monthly"


def test_deleting_account_takes_transfer_partner_along(client) -> None:
    checking = _account(client, "Checking", "100")
    savings = _account(client, "Savings", "0")
    client.post(
        "/api/transfers",
        json={
            "from_account_id": checking,
            "to_account_id": savings,
            "amount": "30",
            "date": "2025-03-01",
        },
    )

    assert client.delete(f"/api/accounts/{checking}").status_code == 204
    assert client.get("/api/transactions").json()["items"] == []
    assert [a["id"] for a in client.get("/api/accounts").json()] == [savings]


def test_transaction_paging_is_validated(client) -> None:
    assert client.get("/api/transactions?page=abc").status_code == 422
    assert client.get("/api/transactions?limit=0").status_code == 422
    body = client.get("/api/transactions?page=2&limit=10").json()
    assert body["page"] == 2
    assert body["limit"] == 10
    assert body["has_more"] is False


def test_delete_category(client) -> None:
    created = client.post(
        "/api/categories", json={"name": "Fun", "type": "expense"}
    ).json()
    assert client.delete(f"/api/categories/{created['id']}").status_code == 204
    assert client.get("/api/categories").json() == []
    assert client.delete(f"/api/categories/{created['id']}").status_code == 404
