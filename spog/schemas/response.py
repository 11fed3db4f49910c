import uuid
from typing import Any, Optional

from pydantic import BaseModel, Field


def new_request_id() -> str:
    return uuid.uuid4().hex


class SuccessResponse(BaseModel):
    """Envelope for the inventory and ledger read/CRUD endpoints."""
    success: Optional[bool] = Field(default=True)
    request_id: str = Field(default_factory=new_request_id)
    data: Optional[Any] = None


class ErrorDetail(BaseModel):
    code: str
    message: Any
    details: Optional[Any] = None  # Field errors, when there are any


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail
    request_id: str = Field(default_factory=new_request_id)
