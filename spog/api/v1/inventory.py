import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from spog.api.dependencies import get_inventory_service, get_user_id
from spog.core.errors import PersistenceFailure, ValidationFailure
from spog.schemas.inventory import (
    InventoryItemCreate,
    InventoryItemUpdate,
    LocationRequest,
    LocationUpdate,
    UnitCatalogResponse,
    UnitResponse,
)
from spog.schemas.response import SuccessResponse
from spog.services.inventory_service import InventoryService
from spog.services.units import UNITS, compatible_units, dimension_of, normalize_unit

log = logging.getLogger(__name__)

router = APIRouter()


def _dump(model):
    return model.model_dump(mode="json")


# ----------- Items -----------

@router.get("/items", response_model=SuccessResponse)
async def list_items(
    location_id: Optional[UUID] = None,
    service: InventoryService = Depends(get_inventory_service),
):
    """Lists items ordered by name, optionally for a single location."""
    try:
        items = await service.list_items(location_id=location_id)
        return SuccessResponse(data=[_dump(i) for i in items])
    except PersistenceFailure as e:
        log.error(f"Error listing inventory items: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch inventory items.")


@router.get("/items/search", response_model=SuccessResponse)
async def search_items(
    q: str = Query(..., min_length=1, description="Matches item name or code."),
    service: InventoryService = Depends(get_inventory_service),
):
    try:
        items = await service.search_items(q)
        return SuccessResponse(data=[_dump(i) for i in items])
    except PersistenceFailure as e:
        log.error(f"Error searching inventory items for '{q}': {e}")
        raise HTTPException(status_code=500, detail="Server failed to search inventory items.")


@router.get("/items/low-stock", response_model=SuccessResponse)
async def low_stock_items(service: InventoryService = Depends(get_inventory_service)):
    try:
        return SuccessResponse(data=[_dump(i) for i in await service.get_low_stock_items()])
    except PersistenceFailure as e:
        log.error(f"Error fetching low stock items: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch low stock items.")


@router.get("/items/critical-stock", response_model=SuccessResponse)
async def critical_stock_items(service: InventoryService = Depends(get_inventory_service)):
    try:
        return SuccessResponse(data=[_dump(i) for i in await service.get_critical_stock_items()])
    except PersistenceFailure as e:
        log.error(f"Error fetching critical stock items: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch critical stock items.")


@router.get("/items/by-code/{item_code}", response_model=SuccessResponse)
async def get_item_by_code(item_code: str, service: InventoryService = Depends(get_inventory_service)):
    try:
        item = await service.get_item_by_code(item_code)
    except PersistenceFailure as e:
        log.error(f"Error fetching item with code {item_code}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch inventory item.")
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory item not found.")
    return SuccessResponse(data=_dump(item))


@router.get("/items/{item_id}", response_model=SuccessResponse)
async def get_item(item_id: UUID, service: InventoryService = Depends(get_inventory_service)):
    """Fetches one item with its current stock status."""
    try:
        item = await service.get_item(item_id)
    except PersistenceFailure as e:
        log.error(f"Error fetching item {item_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch inventory item.")
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory item not found.")
    return SuccessResponse(data=_dump(item))


@router.post("/items", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def add_item(
    item_data: InventoryItemCreate,
    user_id: str = Depends(get_user_id),
    service: InventoryService = Depends(get_inventory_service),
):
    """
    Adds a new item. Balance defaults to the original amount, the consumption
    unit to the stocking unit and the thresholds to 20% / 10% of the original amount.
    """
    try:
        item = await service.create_item(item_data.model_dump(), user_id=user_id)
        log.info(f"Inventory item '{item.name}' created by user {user_id}.")
        return SuccessResponse(data=_dump(item))
    except ValidationFailure as e:
        log.error(f"Validation error adding inventory item: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceFailure as e:
        log.error(f"Error adding inventory item: {e}")
        raise HTTPException(status_code=500, detail="Server failed to add inventory item.")


@router.patch("/items/{item_id}", response_model=SuccessResponse)
async def update_item(
    item_id: UUID,
    patch: InventoryItemUpdate,
    service: InventoryService = Depends(get_inventory_service),
):
    """
    Edits item details. The balance is not editable here: it changes only through
    consumption and adjustment.
    """
    changes = patch.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update.")
    try:
        item = await service.update_item(item_id, changes)
    except ValidationFailure as e:
        log.error(f"Validation error updating item {item_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceFailure as e:
        log.error(f"Error updating item {item_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to update inventory item.")
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory item not found.")
    return SuccessResponse(data=_dump(item))


@router.delete("/items/{item_id}", response_model=SuccessResponse)
async def delete_item(item_id: UUID, service: InventoryService = Depends(get_inventory_service)):
    try:
        deleted = await service.delete_item(item_id)
    except PersistenceFailure as e:
        log.error(f"Error deleting item {item_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to delete inventory item.")
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory item not found.")
    return SuccessResponse(data={"id": str(item_id), "deleted": True})


# ----------- Locations -----------

@router.get("/locations", response_model=SuccessResponse)
async def list_locations(service: InventoryService = Depends(get_inventory_service)):
    try:
        return SuccessResponse(data=[_dump(l) for l in await service.list_locations()])
    except PersistenceFailure as e:
        log.error(f"Error listing locations: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch locations.")


@router.get("/locations/{location_id}", response_model=SuccessResponse)
async def get_location(location_id: UUID, service: InventoryService = Depends(get_inventory_service)):
    try:
        location = await service.get_location(location_id)
    except PersistenceFailure as e:
        log.error(f"Error fetching location {location_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch location.")
    if not location:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Location not found.")
    return SuccessResponse(data=_dump(location))


@router.post("/locations", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def add_location(location_data: LocationRequest, service: InventoryService = Depends(get_inventory_service)):
    try:
        location = await service.create_location(location_data.name, location_data.description)
        return SuccessResponse(data=_dump(location))
    except ValidationFailure as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceFailure as e:
        log.error(f"Error creating location: {e}")
        raise HTTPException(status_code=500, detail="Server failed to create location.")


@router.patch("/locations/{location_id}", response_model=SuccessResponse)
async def update_location(
    location_id: UUID,
    patch: LocationUpdate,
    service: InventoryService = Depends(get_inventory_service),
):
    changes = patch.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update.")
    try:
        location = await service.update_location(location_id, changes)
    except ValidationFailure as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceFailure as e:
        log.error(f"Error updating location {location_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to update location.")
    if not location:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Location not found.")
    return SuccessResponse(data=_dump(location))


@router.delete("/locations/{location_id}", response_model=SuccessResponse)
async def delete_location(location_id: UUID, service: InventoryService = Depends(get_inventory_service)):
    """Deletes a location. Refused with 409 while items are still stored there."""
    try:
        deleted = await service.delete_location(location_id)
    except ValidationFailure as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PersistenceFailure as e:
        log.error(f"Error deleting location {location_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to delete location.")
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Location not found.")
    return SuccessResponse(data={"id": str(location_id), "deleted": True})


# ----------- Units -----------

@router.get("/units", response_model=UnitCatalogResponse)
async def list_units(unit: Optional[str] = Query(None, description="Only units compatible with this one.")):
    """Unit catalogue; with ``unit`` set, the consumption units it can be converted from."""
    if unit is None:
        units = list(UNITS.values())
    else:
        units = compatible_units(unit)
    dimension = dimension_of(unit) if unit else None
    return UnitCatalogResponse(
        unit=normalize_unit(unit) if unit else None,
        dimension=dimension.value if dimension else None,
        units=[UnitResponse(code=u.code, label=u.label, dimension=u.dimension.value) for u in units],
    )
