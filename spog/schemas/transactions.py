import uuid
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from spog.schemas.inventory import InventoryItemResponse


class TransactionState(str, Enum):
    VALIDATING = "VALIDATING"
    CONVERTING = "CONVERTING"
    BALANCE_CHECKING = "BALANCE_CHECKING"
    COMMITTING = "COMMITTING"
    LOGGED = "LOGGED"        # Success
    REJECTED = "REJECTED"    # Refused before any effect
    FAILED = "FAILED"        # Datastore failure, effects may be partial


class TransactionOutcome(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    VALIDATION_FAILURE = "validation_failure"
    UNSUPPORTED_CONVERSION = "unsupported_conversion"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    FAILED = "failed"
    # Compensation did not restore the balance: needs manual reconciliation
    FAILED_UNCOMPENSATED = "failed_uncompensated"


class ConsumptionRequest(BaseModel):
    item_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, description="Amount consumed, in the item's consumption unit.")
    reason: Optional[str] = Field(None, description="Optional free-text reason.")


class AdjustmentRequest(BaseModel):
    item_id: uuid.UUID
    new_balance: Decimal = Field(..., ge=0, description="New balance, in the item's stocking unit.")
    reason: Optional[str] = Field(None, description="Why the balance is being corrected (e.g., physical recount).")


class TransactionResult(BaseModel):
    """Returned by consumption and adjustment, on success and on failure alike."""
    success: bool
    message: str
    outcome: TransactionOutcome
    state: TransactionState
    failed_at: Optional[TransactionState] = None
    updated_item: Optional[InventoryItemResponse] = None
    warnings: List[str] = Field(default_factory=list)
