"""
Tests for the HTTP layer in main.py (FastAPI TestClient).
"""

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

import business_logic
import database_manager as db
import import_logic
from main import app

OWNER = "owner-http"


@pytest.fixture
def client(setup_test_db, monkeypatch):
    monkeypatch.setattr(business_logic, "DATABASE_CONFIGURED", True)
    return TestClient(app)


def _document():
    return {
        "categories": ["Food"],
        "months": [
            {
                "year": 2024,
                "month": 1,
                "salary": 2500,
                "expenses": [
                    {"itemName": "Milk", "amount": 3.5, "categoryName": "Food", "expenseDate": "2024-01-05"}
                ],
                "incomes": [
                    {"source": "Salary", "amount": 2500, "incomeDate": "2024-01-10"}
                ]
            }
        ]
    }


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_health_not_configured(monkeypatch):
    monkeypatch.setattr(business_logic, "DATABASE_CONFIGURED", False)
    response = TestClient(app).get("/health")
    assert response.status_code == 503


def test_formats(client):
    response = client.get("/api/import/formats")
    assert response.json() == {"success": True, "data": ["tomas", "ugne"]}


def test_parse_upload(client, make_workbook):
    content = make_workbook(
        {"2024-01": {"E6": "Kategorija", "J3": 2500, "A7": "Milk", "B7": 3.5, "E7": "Food"}},
        categories=["Food"]
    )

    response = client.post(
        "/api/import/parse",
        files={"file": ("budget.xlsx", content, "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")},
        data={"format": "tomas"}
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["summary"]["monthCount"] == 1
    assert data["document"]["categories"] == ["Food", "Kita"]
    assert data["document"]["months"][0]["expenses"][0]["amount"] == 3.5


def test_parse_rejects_wrong_extension(client):
    response = client.post(
        "/api/import/parse",
        files={"file": ("budget.csv", b"a,b", "text/csv")},
        data={"format": "tomas"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Only .xlsx files supported"


def test_parse_rejects_unknown_format(client, make_workbook):
    content = make_workbook({"2024-01": {"J3": 1}})
    response = client.post(
        "/api/import/parse",
        files={"file": ("budget.xlsx", content, "application/octet-stream")},
        data={"format": "csv"}
    )
    assert response.status_code == 400


def test_execute_import(client):
    response = client.post(
        "/api/import/execute",
        json={"document": _document(), "confirm": True},
        headers={"X-User-Id": OWNER}
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["categoriesCreated"] == 1
    assert data["monthsCreated"] == 1
    assert data["expensesCreated"] == 1
    assert data["incomesCreated"] == 1

    summary = client.get("/api/data/summary", headers={"X-User-Id": OWNER}).json()["data"]
    assert summary["expenses"] == 1


def test_execute_requires_owner(client):
    response = client.post("/api/import/execute", json={"document": _document(), "confirm": True})
    assert response.status_code == 401


def test_execute_requires_confirmation(client):
    response = client.post(
        "/api/import/execute",
        json={"document": _document()},
        headers={"X-User-Id": OWNER}
    )
    assert response.status_code == 400
    assert db.count_owner_data(OWNER)["months"] == 0


def test_execute_validation_error_is_returned_verbatim(client):
    document = _document()
    document["categories"] = []

    response = client.post(
        "/api/import/execute",
        json={"document": document, "confirm": True},
        headers={"X-User-Id": OWNER}
    )

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "At least one category is required"}


def test_execute_store_failure_is_opaque(client, monkeypatch):
    def failing_wipe(user_id):
        raise RuntimeError("secret connection string in message")

    monkeypatch.setattr(db, "wipe_owner_data", failing_wipe)

    response = client.post(
        "/api/import/execute",
        json={"document": _document(), "confirm": True},
        headers={"X-User-Id": OWNER}
    )

    assert response.status_code == 500
    assert response.json()["error"] == "Import failed - no changes were made"


def test_execute_rejects_concurrent_import(client, monkeypatch):
    def busy(owner_id):
        raise import_logic.ImportInProgressError(f"An import is already running for user {owner_id}")

    monkeypatch.setattr(import_logic, "_acquire_owner_lock", busy)

    response = client.post(
        "/api/import/execute",
        json={"document": _document(), "confirm": True},
        headers={"X-User-Id": OWNER}
    )

    assert response.status_code == 409
    assert response.json() == {"success": False, "error": "An import is already running for this account"}


def test_execute_client_disconnect_rolls_back(client, seed_owner_data, monkeypatch):
    """A client that goes away before commit leaves the owner's data untouched."""
    seed_owner_data(OWNER)
    before = db.count_owner_data(OWNER)

    async def disconnected(self):
        return True

    monkeypatch.setattr(Request, "is_disconnected", disconnected)

    response = client.post(
        "/api/import/execute",
        json={"document": _document(), "confirm": True},
        headers={"X-User-Id": OWNER}
    )

    assert response.status_code == 499
    assert response.json()["error"] == "Import cancelled - no changes were made"
    assert db.count_owner_data(OWNER) == before
