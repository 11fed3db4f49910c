import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel

from spog.models.ledger import ActivityType


class ConsumptionRecordResponse(BaseModel):
    """Ledger entry. ``amount`` is in the item's consumption unit, as entered."""
    id: uuid.UUID
    item_id: uuid.UUID
    user_id: str
    amount: Decimal
    reason: Optional[str] = None
    timestamp: datetime
    created_at: Optional[datetime] = None


class ActivityLogResponse(BaseModel):
    id: uuid.UUID
    user_id: str
    action_type: ActivityType
    item_id: uuid.UUID
    details: Dict[str, Any]
    timestamp: datetime
    created_at: Optional[datetime] = None
