from decimal import Decimal
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from spog.api.dependencies import build_services
from spog.core.errors import PersistenceFailure
from spog.main import app
from spog.services.inventory_service import InventoryService
from spog.testing.memory_datastore import MemoryDatastore

USER = {"X-User-Id": "tech-7"}
ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}


@pytest.fixture
def client():
    # Without the context manager the lifespan (and its database) is skipped
    app.state.services = build_services(MemoryDatastore())
    yield TestClient(app)
    app.state.services = None


@pytest.fixture
def location_id(client):
    response = client.post("/api/v1/inventory/locations", json={"name": "Hangar 1"})
    assert response.status_code == 201
    return response.json()["data"]["id"]


@pytest.fixture
def item(client, location_id):
    payload = {
        "item_code": "SEA-001",
        "name": "PR-1422 Sealant",
        "location_id": location_id,
        "unit": "l",
        "consumption_unit": "ml",
        "original_amount": "5",
        "category": "Sealant",
    }
    response = client.post("/api/v1/inventory/items", json=payload, headers=USER)
    assert response.status_code == 201
    return response.json()["data"]


class TestInventoryRoutes:
    def test_create_item(self, item):
        """Defaults are filled in and the status is derived"""
        assert Decimal(item["current_balance"]) == Decimal("5")
        assert Decimal(item["min_threshold"]) == Decimal("1")
        assert Decimal(item["critical_threshold"]) == Decimal("0")
        assert item["status"] == "normal"

    def test_create_item_missing_field(self, client, location_id):
        response = client.post(
            "/api/v1/inventory/items",
            json={"item_code": "X-1", "name": "Thing", "location_id": location_id, "unit": "ml"},
            headers=USER,
        )
        assert response.status_code == 422
        assert response.json()["success"] is False
        assert response.json()["error"]["code"] == "validation_error"

    def test_create_item_unknown_location(self, client):
        payload = {"item_code": "X-1", "name": "Thing", "location_id": str(uuid4()), "unit": "ml", "original_amount": "1"}
        response = client.post("/api/v1/inventory/items", json=payload, headers=USER)
        assert response.status_code == 400
        assert "Location" in response.json()["error"]["message"]

    def test_create_item_requires_user(self, client, location_id):
        payload = {"item_code": "X-1", "name": "Thing", "location_id": location_id, "unit": "ml", "original_amount": "1"}
        response = client.post("/api/v1/inventory/items", json=payload)
        assert response.status_code == 422

    def test_get_and_lookup(self, client, item):
        response = client.get(f"/api/v1/inventory/items/{item['id']}")
        assert response.status_code == 200
        assert response.json()["data"]["item_code"] == "SEA-001"

        response = client.get("/api/v1/inventory/items/by-code/SEA-001")
        assert response.json()["data"]["id"] == item["id"]

        response = client.get("/api/v1/inventory/items/search", params={"q": "pr-1422"})
        assert [i["id"] for i in response.json()["data"]] == [item["id"]]

        response = client.get("/api/v1/inventory/items")
        assert len(response.json()["data"]) == 1

    def test_list_items_datastore_failure(self, client):
        """Datastore errors surface as a 500 without leaking details"""
        with patch.object(InventoryService, "list_items", AsyncMock(side_effect=PersistenceFailure("db down"))):
            response = client.get("/api/v1/inventory/items")
        assert response.status_code == 500
        assert response.json()["error"]["message"] == "Server failed to fetch inventory items."

    def test_get_unknown_item(self, client):
        response = client.get(f"/api/v1/inventory/items/{uuid4()}")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "http_error"

    def test_patch_item(self, client, item):
        response = client.patch(f"/api/v1/inventory/items/{item['id']}", json={"min_threshold": "5"})
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "low"

        response = client.patch(f"/api/v1/inventory/items/{item['id']}", json={})
        assert response.status_code == 400

    def test_patch_can_not_set_the_balance(self, client, item):
        client.patch(f"/api/v1/inventory/items/{item['id']}", json={"current_balance": "999"})
        response = client.get(f"/api/v1/inventory/items/{item['id']}")
        assert Decimal(response.json()["data"]["current_balance"]) == Decimal("5")

    def test_delete_item(self, client, item):
        assert client.delete(f"/api/v1/inventory/items/{item['id']}").status_code == 200
        assert client.delete(f"/api/v1/inventory/items/{item['id']}").status_code == 404

    def test_stock_level_lists(self, client, item):
        client.post("/api/v1/consumption", json={"item_id": item["id"], "amount": "5000"}, headers=USER)
        assert [i["id"] for i in client.get("/api/v1/inventory/items/critical-stock").json()["data"]] == [item["id"]]
        assert client.get("/api/v1/inventory/items/low-stock").json()["data"] == []

    def test_locations(self, client, location_id):
        response = client.get("/api/v1/inventory/locations")
        assert [l["name"] for l in response.json()["data"]] == ["Hangar 1"]
        assert client.get(f"/api/v1/inventory/locations/{location_id}").status_code == 200
        assert client.post("/api/v1/inventory/locations", json={"name": "Hangar 1"}).status_code == 400

    def test_update_location(self, client, location_id):
        response = client.patch(f"/api/v1/inventory/locations/{location_id}", json={"name": "Hangar 1A"})
        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Hangar 1A"
        assert client.patch(f"/api/v1/inventory/locations/{location_id}", json={}).status_code == 400
        assert client.patch(f"/api/v1/inventory/locations/{uuid4()}", json={"name": "Apron"}).status_code == 404

    def test_delete_location_in_use(self, client, item, location_id):
        response = client.delete(f"/api/v1/inventory/locations/{location_id}")
        assert response.status_code == 409
        assert response.json()["success"] is False

        assert client.delete(f"/api/v1/inventory/items/{item['id']}").status_code == 200
        assert client.delete(f"/api/v1/inventory/locations/{location_id}").status_code == 200
        assert client.delete(f"/api/v1/inventory/locations/{location_id}").status_code == 404

    def test_units(self, client):
        response = client.get("/api/v1/inventory/units", params={"unit": "kg"})
        body = response.json()
        assert body["unit"] == "kg"
        assert body["dimension"] == "Weight"
        assert {"g", "kg", "lb", "oz_wt", "mg"} == {u["code"] for u in body["units"]}


class TestTransactionRoutes:
    def test_consumption_success(self, client, item):
        response = client.post(
            "/api/v1/consumption",
            json={"item_id": item["id"], "amount": "4000", "reason": "Wing panel"},
            headers=USER,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["state"] == "LOGGED"
        assert Decimal(body["updated_item"]["current_balance"]) == Decimal("1")

    def test_consumption_insufficient(self, client, item):
        response = client.post("/api/v1/consumption", json={"item_id": item["id"], "amount": "6000"}, headers=USER)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["outcome"] == "insufficient_balance"
        assert body["failed_at"] == "BALANCE_CHECKING"

    def test_consumption_unknown_item(self, client):
        response = client.post("/api/v1/consumption", json={"item_id": str(uuid4()), "amount": "1"}, headers=USER)
        assert response.json()["outcome"] == "not_found"

    def test_consumption_requires_user(self, client, item):
        response = client.post("/api/v1/consumption", json={"item_id": item["id"], "amount": "10"})
        assert response.status_code == 422

    def test_consumption_rejects_non_positive_amounts(self, client, item):
        response = client.post("/api/v1/consumption", json={"item_id": item["id"], "amount": "0"}, headers=USER)
        assert response.status_code == 422

    def test_adjustment_requires_admin(self, client, item):
        response = client.post("/api/v1/adjustment", json={"item_id": item["id"], "new_balance": "3"}, headers=USER)
        assert response.status_code == 403
        assert response.json()["success"] is False

    def test_adjustment(self, client, item):
        response = client.post(
            "/api/v1/adjustment",
            json={"item_id": item["id"], "new_balance": "3", "reason": "Recount"},
            headers=ADMIN,
        )
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert Decimal(response.json()["updated_item"]["current_balance"]) == Decimal("3")


class TestLedgerRoutes:
    def test_ledger_lists(self, client, item):
        client.post("/api/v1/consumption", json={"item_id": item["id"], "amount": "250"}, headers=USER)
        client.post("/api/v1/adjustment", json={"item_id": item["id"], "new_balance": "4"}, headers=ADMIN)

        records = client.get("/api/v1/ledger/consumption", params={"item_id": item["id"]}).json()["data"]
        assert len(records) == 1
        assert Decimal(records[0]["amount"]) == Decimal("250")
        assert records[0]["user_id"] == "tech-7"

        activity = client.get("/api/v1/ledger/activity", params={"item_id": item["id"]}).json()["data"]
        assert sorted(entry["action_type"] for entry in activity) == ["addition", "adjustment", "consumption"]

        by_user = client.get("/api/v1/ledger/activity", params={"user_id": "admin-1"}).json()["data"]
        assert [entry["action_type"] for entry in by_user] == ["adjustment"]

    def test_consumption_range_must_be_ordered(self, client):
        response = client.get(
            "/api/v1/ledger/consumption",
            params={"start": "2024-02-01T00:00:00", "end": "2024-01-01T00:00:00"},
        )
        assert response.status_code == 400
