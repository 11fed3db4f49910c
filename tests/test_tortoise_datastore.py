import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from spog.api.dependencies import build_services
from spog.core.datastore import TortoiseDatastore
from spog.core.db import close_db, init_db
from spog.core.errors import ImmutableRecordError, PersistenceFailure
from spog.schemas.transactions import TransactionOutcome
from spog.models.ledger import ActivityLog, ActivityType, ConsumptionRecord


@pytest_asyncio.fixture
async def store():
    await init_db("sqlite://:memory:")
    yield TortoiseDatastore()
    await close_db()


async def _location(store, name="Hangar 1"):
    return await store.insert("locations", {"id": uuid.uuid4(), "name": name})


@pytest.mark.asyncio
async def test_insert_get_list_and_delete(store):
    location = await _location(store)
    item = await store.insert("inventory_items", {
        "id": uuid.uuid4(),
        "item_code": "SEA-001",
        "name": "PR-1422 Sealant",
        "current_balance": Decimal("5"),
        "original_amount": Decimal("5"),
        "min_threshold": Decimal("1"),
        "critical_threshold": Decimal("0"),
        "unit": "l",
        "consumption_unit": "ml",
        "location_id": location["id"],
    })

    fetched = await store.get("inventory_items", item["id"])
    assert fetched["item_code"] == "SEA-001"
    assert fetched["current_balance"] == Decimal("5")

    rows = await store.list("inventory_items", {"item_code": "SEA-001"})
    assert [r["id"] for r in rows] == [item["id"]]
    assert await store.list("inventory_items", {"item_code": "NOPE"}) == []

    updated = await store.update("inventory_items", item["id"], {"name": "Sealant B"})
    assert updated["name"] == "Sealant B"

    assert await store.delete("inventory_items", item["id"]) is True
    assert await store.get("inventory_items", item["id"]) is None
    assert await store.get("inventory_items", "not-a-uuid") is None


@pytest.mark.asyncio
async def test_update_of_missing_row_returns_none(store):
    assert await store.update("locations", uuid.uuid4(), {"name": "Apron"}) is None


@pytest.mark.asyncio
async def test_ledger_tables_are_append_only(store):
    entry = await store.insert("consumption_records", {
        "id": uuid.uuid4(),
        "item_id": uuid.uuid4(),
        "user_id": "tech-7",
        "amount": Decimal("4000"),
        "timestamp": datetime.now(timezone.utc),
    })

    with pytest.raises(ImmutableRecordError):
        await store.update("consumption_records", entry["id"], {"amount": Decimal("1")})
    with pytest.raises(ImmutableRecordError):
        await store.delete("consumption_records", entry["id"])
    assert (await store.get("consumption_records", entry["id"]))["amount"] == Decimal("4000")


@pytest.mark.asyncio
async def test_ledger_models_refuse_save_and_delete(store):
    record = await ConsumptionRecord.create(
        item_id=uuid.uuid4(), user_id="tech-7", amount=Decimal("1"), timestamp=datetime.now(timezone.utc)
    )
    record.amount = Decimal("2")
    with pytest.raises(ImmutableRecordError):
        await record.save()
    with pytest.raises(ImmutableRecordError):
        await record.delete()

    entry = await ActivityLog.create(
        user_id="tech-7", action_type=ActivityType.CONSUMPTION, item_id=uuid.uuid4(),
        details={"amount": "1"}, timestamp=datetime.now(timezone.utc),
    )
    with pytest.raises(ImmutableRecordError):
        await entry.delete()
    assert await ConsumptionRecord.filter(id=record.id).count() == 1


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(store):
    location_id = uuid.uuid4()
    with pytest.raises(RuntimeError):
        async with store.transaction():
            await store.insert("locations", {"id": location_id, "name": "Temporary"})
            assert await store.get("locations", location_id) is not None
            raise RuntimeError("boom")

    assert await store.get("locations", location_id) is None


@pytest.mark.asyncio
async def test_transaction_commits(store):
    async with store.transaction():
        location = await _location(store, "Paint Shop")
    assert (await store.get("locations", location["id"]))["name"] == "Paint Shop"


# --- Consumption over the ORM (transactions and compare-and-set on SQLite) ---

@pytest_asyncio.fixture
async def services(store):
    return build_services(store)


@pytest.fixture
def stored_item(services):
    async def _make(unit="ml", consumption_unit=None, original_amount="100"):
        location = await services.inventory.create_location(f"Hangar {uuid.uuid4().hex[:4]}")
        return await services.inventory.create_item({
            "item_code": f"SEA-{uuid.uuid4().hex[:6]}",
            "name": "PR-1422 Sealant",
            "location_id": location.id,
            "unit": unit,
            "consumption_unit": consumption_unit,
            "original_amount": original_amount,
        })
    return _make


async def _balance(services, item):
    return (await services.inventory.get_item(item.id)).current_balance


@pytest.mark.asyncio
async def test_consumption_converts_ml_to_liters(services, stored_item):
    item = await stored_item(unit="l", consumption_unit="ml", original_amount="5")

    result = await services.consumption.record_consumption(item.id, "tech-7", "4000")

    assert result.success is True
    assert await _balance(services, item) == Decimal("1")
    records = await services.ledger.get_consumption_records_by_item(item.id)
    assert [r.amount for r in records] == [Decimal("4000")]


@pytest.mark.asyncio
async def test_fractional_conversions_keep_the_item_consumable(services, stored_item):
    item = await stored_item(unit="gal", consumption_unit="fl_oz", original_amount="10")

    results = [await services.consumption.record_consumption(item.id, "tech-7", "1") for _ in range(3)]

    assert [r.outcome for r in results] == [TransactionOutcome.OK] * 3
    assert await _balance(services, item) == Decimal("9.976564")
    adjusted = await services.consumption.adjust_balance(item.id, "admin-1", "5")
    assert adjusted.success is True
    assert await _balance(services, item) == Decimal("5")


@pytest.mark.asyncio
async def test_fine_amount_does_not_lock_the_item(services, stored_item):
    item = await stored_item()

    outcomes = [
        (await services.consumption.record_consumption(item.id, "tech-7", "0.0000001")).outcome,
        (await services.consumption.record_consumption(item.id, "tech-7", "1")).outcome,
        (await services.consumption.adjust_balance(item.id, "admin-1", "50")).outcome,
    ]

    assert outcomes == [TransactionOutcome.VALIDATION_FAILURE, TransactionOutcome.OK, TransactionOutcome.OK]
    assert await _balance(services, item) == Decimal("50")


@pytest.mark.asyncio
async def test_concurrent_consumptions_never_overdraw(services, stored_item):
    item = await stored_item()

    results = await asyncio.gather(
        services.consumption.record_consumption(item.id, "tech-1", "60"),
        services.consumption.record_consumption(item.id, "tech-2", "60"),
    )

    assert sorted(r.outcome.value for r in results) == ["insufficient_balance", "ok"]
    assert await _balance(services, item) == Decimal("40")
    assert len(await services.ledger.get_consumption_records_by_item(item.id)) == 1


@pytest.mark.asyncio
async def test_ledger_failure_rolls_back_the_whole_consumption(services, store, stored_item, monkeypatch):
    item = await stored_item()
    insert = store.insert

    async def insert_without_activity_log(table, record):
        if table == "activity_logs":
            raise PersistenceFailure("activity log unavailable")
        return await insert(table, record)

    monkeypatch.setattr(store, "insert", insert_without_activity_log)

    result = await services.consumption.record_consumption(item.id, "tech-7", "60")

    assert result.outcome == TransactionOutcome.FAILED
    assert await _balance(services, item) == Decimal("100")
    assert await services.ledger.get_consumption_records_by_item(item.id) == []
