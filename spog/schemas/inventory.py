import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from spog.models.inventory import ItemCategory, StockStatus


class LocationRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Name of the storage location (e.g., Hangar 2).")
    description: Optional[str] = Field(None, description="Free-text description of the location.")


class LocationUpdate(BaseModel):
    """Partial patch; only the fields that are set are applied."""
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None


class LocationResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class InventoryItemCreate(BaseModel):
    item_code: str = Field(..., min_length=1, description="User-assigned unique code.")
    name: str = Field(..., min_length=1)
    location_id: uuid.UUID
    unit: str = Field(..., min_length=1, description="Stocking unit the balance is tracked in.")
    original_amount: Decimal = Field(..., gt=0, description="Initial / reference fill level.")
    current_balance: Optional[Decimal] = Field(None, ge=0, description="Defaults to original_amount.")
    consumption_unit: Optional[str] = Field(None, description="Defaults to the stocking unit.")
    min_threshold: Optional[Decimal] = Field(None, ge=0, description="Defaults to 20% of original_amount.")
    critical_threshold: Optional[Decimal] = Field(None, ge=0, description="Defaults to 10% of original_amount.")
    category: Optional[ItemCategory] = None
    description: Optional[str] = None


class InventoryItemUpdate(BaseModel):
    """Partial patch; only the fields that are set are applied."""
    item_code: Optional[str] = Field(None, min_length=1)
    name: Optional[str] = Field(None, min_length=1)
    location_id: Optional[uuid.UUID] = None
    unit: Optional[str] = Field(None, min_length=1)
    consumption_unit: Optional[str] = Field(None, min_length=1)
    original_amount: Optional[Decimal] = Field(None, gt=0)
    min_threshold: Optional[Decimal] = Field(None, ge=0)
    critical_threshold: Optional[Decimal] = Field(None, ge=0)
    category: Optional[ItemCategory] = None
    description: Optional[str] = None


class InventoryItemResponse(BaseModel):
    """Item as read from the store, with its derived stock status."""
    id: uuid.UUID
    item_code: str
    name: str
    category: Optional[ItemCategory] = None
    description: Optional[str] = None
    current_balance: Decimal
    original_amount: Decimal
    unit: str
    consumption_unit: str
    min_threshold: Decimal
    critical_threshold: Decimal
    location_id: uuid.UUID
    status: StockStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UnitResponse(BaseModel):
    code: str
    label: str
    dimension: str


class UnitCatalogResponse(BaseModel):
    unit: Optional[str] = None
    dimension: Optional[str] = None
    units: List[UnitResponse]
