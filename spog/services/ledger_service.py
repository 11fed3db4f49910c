import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from spog.core.datastore import ACTIVITY_LOGS, CONSUMPTION_RECORDS, Datastore
from spog.models.ledger import ActivityType
from spog.schemas.ledger import ActivityLogResponse, ConsumptionRecordResponse

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    """Makes an activity payload storable in a JSON column."""
    if isinstance(value, Decimal):
        # Plain notation without the column's trailing zeros: "100", not "100.000000"
        return format(value.normalize(), "f")
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class LedgerService:
    """
    Appends consumption records and activity log entries, and reads them back.

    Nothing here updates or deletes an entry; the datastore refuses both for the
    ledger tables.
    """

    def __init__(self, datastore: Datastore):
        self.datastore = datastore

    async def record_consumption_entry(
        self,
        item_id,
        user_id: str,
        amount: Decimal,
        reason: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> ConsumptionRecordResponse:
        record = await self.datastore.insert(CONSUMPTION_RECORDS, {
            "id": uuid.uuid4(),
            "item_id": item_id,
            "user_id": user_id,
            "amount": amount,
            "reason": reason,
            "timestamp": timestamp or _utcnow(),
        })
        return ConsumptionRecordResponse.model_validate(record)

    async def log_activity(
        self,
        user_id: str,
        action_type: ActivityType,
        item_id,
        details: Dict[str, Any],
        timestamp: Optional[datetime] = None,
    ) -> ActivityLogResponse:
        log.debug(f"Activity {action_type.value} on item {item_id} by {user_id}: {details}")
        record = await self.datastore.insert(ACTIVITY_LOGS, {
            "id": uuid.uuid4(),
            "user_id": user_id,
            "action_type": action_type,
            "item_id": item_id,
            "details": _jsonable(details),
            "timestamp": timestamp or _utcnow(),
        })
        return ActivityLogResponse.model_validate(record)

    # --- Reads (reporting layer) ---

    async def get_consumption_records(
        self,
        item_id=None,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[ConsumptionRecordResponse]:
        """Newest first. ``start`` and ``end`` are inclusive bounds on the timestamp."""
        filters: Dict[str, Any] = {}
        if item_id is not None:
            filters["item_id"] = item_id
        if user_id is not None:
            filters["user_id"] = user_id
        if start is not None:
            filters["timestamp__gte"] = start
        if end is not None:
            filters["timestamp__lte"] = end
        rows = await self.datastore.list(CONSUMPTION_RECORDS, filters, order_by=["-timestamp"], limit=limit)
        return [ConsumptionRecordResponse.model_validate(row) for row in rows]

    async def get_consumption_records_by_item(self, item_id) -> List[ConsumptionRecordResponse]:
        return await self.get_consumption_records(item_id=item_id)

    async def get_consumption_records_by_user(self, user_id: str) -> List[ConsumptionRecordResponse]:
        return await self.get_consumption_records(user_id=user_id)

    async def get_recent_consumption_records(self, limit: int = 10) -> List[ConsumptionRecordResponse]:
        return await self.get_consumption_records(limit=limit)

    async def get_activity_logs(
        self,
        item_id=None,
        user_id: Optional[str] = None,
        limit: Optional[int] = 50,
    ) -> List[ActivityLogResponse]:
        filters: Dict[str, Any] = {}
        if item_id is not None:
            filters["item_id"] = item_id
        if user_id is not None:
            filters["user_id"] = user_id
        rows = await self.datastore.list(ACTIVITY_LOGS, filters, order_by=["-timestamp"], limit=limit)
        return [ActivityLogResponse.model_validate(row) for row in rows]

    async def get_recent_activity_logs(self, limit: int = 10) -> List[ActivityLogResponse]:
        return await self.get_activity_logs(limit=limit)

    async def get_activity_logs_by_user(self, user_id: str, limit: int = 50) -> List[ActivityLogResponse]:
        return await self.get_activity_logs(user_id=user_id, limit=limit)

    async def get_activity_logs_by_item(self, item_id, limit: int = 50) -> List[ActivityLogResponse]:
        return await self.get_activity_logs(item_id=item_id, limit=limit)
