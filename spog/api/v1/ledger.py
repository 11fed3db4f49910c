import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from spog.api.dependencies import get_ledger_service
from spog.core.errors import PersistenceFailure
from spog.schemas.response import SuccessResponse
from spog.services.ledger_service import LedgerService

log = logging.getLogger(__name__)

router = APIRouter()


@router.get("/consumption", response_model=SuccessResponse)
async def list_consumption_records(
    item_id: Optional[UUID] = None,
    user_id: Optional[str] = None,
    start: Optional[datetime] = Query(None, description="Inclusive lower bound on the timestamp."),
    end: Optional[datetime] = Query(None, description="Inclusive upper bound on the timestamp."),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    service: LedgerService = Depends(get_ledger_service),
):
    """Consumption ledger, newest first. Amounts are in each item's consumption unit."""
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must not be after end.")
    try:
        records = await service.get_consumption_records(item_id=item_id, user_id=user_id, start=start, end=end, limit=limit)
        return SuccessResponse(data=[r.model_dump(mode="json") for r in records])
    except PersistenceFailure as e:
        log.error(f"Error fetching consumption records: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch consumption records.")


@router.get("/activity", response_model=SuccessResponse)
async def list_activity_logs(
    item_id: Optional[UUID] = None,
    user_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=1000),
    service: LedgerService = Depends(get_ledger_service),
):
    """Activity log (consumptions, adjustments, additions), newest first."""
    try:
        logs = await service.get_activity_logs(item_id=item_id, user_id=user_id, limit=limit)
        return SuccessResponse(data=[entry.model_dump(mode="json") for entry in logs])
    except PersistenceFailure as e:
        log.error(f"Error fetching activity logs: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch activity logs.")
