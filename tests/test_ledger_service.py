from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from spog.models.ledger import ActivityType

T0 = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def ledger(services):
    return services.ledger


@pytest.mark.asyncio
async def test_consumption_records_filters(ledger):
    item_a, item_b = uuid4(), uuid4()
    for hours, item, user in [(0, item_a, "tech-1"), (1, item_b, "tech-2"), (2, item_a, "tech-2")]:
        await ledger.record_consumption_entry(item, user, Decimal(hours + 1), timestamp=T0 + timedelta(hours=hours))

    newest_first = await ledger.get_consumption_records()
    assert [r.amount for r in newest_first] == [Decimal("3"), Decimal("2"), Decimal("1")]

    assert [r.amount for r in await ledger.get_consumption_records_by_item(item_a)] == [Decimal("3"), Decimal("1")]
    assert [r.amount for r in await ledger.get_consumption_records_by_user("tech-2")] == [Decimal("3"), Decimal("2")]
    assert [r.amount for r in await ledger.get_recent_consumption_records(limit=1)] == [Decimal("3")]

    # Both bounds are inclusive
    in_range = await ledger.get_consumption_records(start=T0 + timedelta(hours=1), end=T0 + timedelta(hours=2))
    assert [r.amount for r in in_range] == [Decimal("3"), Decimal("2")]


@pytest.mark.asyncio
async def test_activity_log_details_are_stored_as_json(ledger):
    item_id = uuid4()
    entry = await ledger.log_activity("admin-1", ActivityType.ADJUSTMENT, item_id, {
        "amount": Decimal("-2.5"),
        "unit": "l",
        "reason": None,
        "previous_balance": Decimal("10"),
        "new_balance": Decimal("7.5"),
    }, timestamp=T0)

    assert entry.details == {
        "amount": "-2.5", "unit": "l", "reason": None, "previous_balance": "10", "new_balance": "7.5",
    }
    assert [e.id for e in await ledger.get_activity_logs_by_user("admin-1")] == [entry.id]
    assert [e.id for e in await ledger.get_activity_logs_by_item(item_id)] == [entry.id]
    assert await ledger.get_activity_logs_by_user("someone-else") == []


@pytest.mark.asyncio
async def test_recent_activity_logs_are_limited(ledger):
    for minutes in range(12):
        await ledger.log_activity("tech-1", ActivityType.CONSUMPTION, uuid4(), {}, timestamp=T0 + timedelta(minutes=minutes))

    recent = await ledger.get_recent_activity_logs()
    assert len(recent) == 10
    assert recent[0].timestamp == T0 + timedelta(minutes=11)
