import logging

from fastapi import APIRouter, Depends, status

from spog.api.dependencies import get_consumption_service, get_user_id, require_admin
from spog.schemas.transactions import AdjustmentRequest, ConsumptionRequest, TransactionResult
from spog.services.consumption_service import ConsumptionService

log = logging.getLogger(__name__)

router = APIRouter()

# Business rejections (not found, insufficient balance, ...) come back as 200 with
# success=false; the caller re-renders from the returned item, never optimistically.


@router.post("/consumption", status_code=status.HTTP_200_OK, response_model=TransactionResult)
async def record_consumption_endpoint(
    request_data: ConsumptionRequest,
    user_id: str = Depends(get_user_id),
    service: ConsumptionService = Depends(get_consumption_service),
):
    """Records a consumption, in the item's consumption unit, against its balance."""
    result = await service.record_consumption(
        request_data.item_id, user_id, request_data.amount, request_data.reason
    )
    if result.success:
        log.info(f"Consumption of {request_data.amount} on item {request_data.item_id} recorded for user {user_id}.")
    return result


@router.post("/adjustment", status_code=status.HTTP_200_OK, response_model=TransactionResult)
async def adjust_balance_endpoint(
    request_data: AdjustmentRequest,
    user_id: str = Depends(get_user_id),
    _role: str = Depends(require_admin),
    service: ConsumptionService = Depends(get_consumption_service),
):
    """Overwrites an item's balance (e.g. after a physical recount). Admin only."""
    result = await service.adjust_balance(
        request_data.item_id, user_id, request_data.new_balance, request_data.reason
    )
    if result.success:
        log.info(f"Balance of item {request_data.item_id} set to {request_data.new_balance} by user {user_id}.")
    return result
