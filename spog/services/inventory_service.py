import logging
import uuid
from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Dict, List, Mapping, Optional

from spog.core.config import CRITICAL_THRESHOLD_RATIO, MIN_THRESHOLD_RATIO
from spog.core.datastore import INVENTORY_ITEMS, LOCATIONS, Datastore
from spog.core.errors import ItemNotFound, PersistenceFailure, ValidationFailure
from spog.models.inventory import (
    AMOUNT_DECIMAL_PLACES,
    AMOUNT_MAX_DIGITS,
    AMOUNT_QUANTUM,
    ItemCategory,
    StockStatus,
)
from spog.models.ledger import ActivityType
from spog.schemas.inventory import InventoryItemResponse, LocationResponse
from spog.services.ledger_service import LedgerService
from spog.services.units import dimension_of, is_known_unit, normalize_unit, to_decimal

log = logging.getLogger(__name__)

REQUIRED_ITEM_FIELDS = ("item_code", "name", "location_id", "unit", "original_amount")
UPDATABLE_ITEM_FIELDS = frozenset({
    "item_code", "name", "category", "description", "current_balance", "original_amount",
    "unit", "consumption_unit", "min_threshold", "critical_threshold", "location_id",
})
UPDATABLE_LOCATION_FIELDS = frozenset({"name", "description"})
DECIMAL_FIELDS = ("current_balance", "original_amount", "min_threshold", "critical_threshold")
MAX_AMOUNT = Decimal(10) ** (AMOUNT_MAX_DIGITS - AMOUNT_DECIMAL_PLACES)


def to_amount(value, field: str = "amount") -> Decimal:
    """
    Parses a user-entered quantity that has to fit the DECIMAL(18,6) columns
    exactly. Finer or larger values raise ValidationFailure instead of being
    rounded on write.
    """
    number = to_decimal(value, field)
    if abs(number) >= MAX_AMOUNT or number != number.quantize(AMOUNT_QUANTUM):
        raise ValidationFailure(
            f"Invalid {field}: at most {AMOUNT_MAX_DIGITS - AMOUNT_DECIMAL_PLACES} digits before "
            f"and {AMOUNT_DECIMAL_PLACES} after the decimal point",
            fields=[field],
        )
    return number


def quantize_amount(value: Decimal) -> Decimal:
    """Rounds a computed quantity (e.g. a converted balance) to the stored precision."""
    return value.quantize(AMOUNT_QUANTUM)


def _value(item: Any, name: str):
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name)


def calculate_item_status(item: Any) -> StockStatus:
    """
    Classifies an item from its balance and thresholds.

    Works on a stored record or a response model. Ties go to the more severe
    status: a balance equal to a threshold is already in that band.
    """
    balance = to_decimal(_value(item, "current_balance"), "current_balance")
    critical = to_decimal(_value(item, "critical_threshold") or 0, "critical_threshold")
    minimum = to_decimal(_value(item, "min_threshold") or 0, "min_threshold")

    if balance <= critical:
        return StockStatus.CRITICAL
    if balance <= minimum:
        return StockStatus.LOW
    return StockStatus.NORMAL


def default_thresholds(original_amount: Decimal) -> Dict[str, Decimal]:
    """Low and critical thresholds as whole-number shares of the original amount."""
    return {
        "min_threshold": (original_amount * Decimal(str(MIN_THRESHOLD_RATIO))).to_integral_value(rounding=ROUND_FLOOR),
        "critical_threshold": (original_amount * Decimal(str(CRITICAL_THRESHOLD_RATIO))).to_integral_value(rounding=ROUND_FLOOR),
    }


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _to_item(record: Dict[str, Any]) -> InventoryItemResponse:
    return InventoryItemResponse.model_validate({**record, "status": calculate_item_status(record)})


class InventoryService:
    """Item store: CRUD over inventory items and their locations."""

    def __init__(self, datastore: Datastore, ledger: Optional[LedgerService] = None):
        self.datastore = datastore
        self.ledger = ledger

    # --- Items: reads ---

    async def get_item(self, item_id) -> Optional[InventoryItemResponse]:
        record = await self.datastore.get(INVENTORY_ITEMS, item_id)
        return _to_item(record) if record else None

    async def get_item_by_code(self, item_code: str) -> Optional[InventoryItemResponse]:
        rows = await self.datastore.list(INVENTORY_ITEMS, {"item_code": item_code}, limit=1)
        return _to_item(rows[0]) if rows else None

    async def list_items(self, location_id=None) -> List[InventoryItemResponse]:
        filters = {"location_id": location_id} if location_id is not None else None
        rows = await self.datastore.list(INVENTORY_ITEMS, filters, order_by=["name"])
        return [_to_item(row) for row in rows]

    async def search_items(self, query: str) -> List[InventoryItemResponse]:
        """Case-insensitive match on name or item code."""
        needle = (query or "").strip().lower()
        items = await self.list_items()
        if not needle:
            return items
        return [i for i in items if needle in i.name.lower() or needle in i.item_code.lower()]

    async def get_items_by_status(self, status: StockStatus) -> List[InventoryItemResponse]:
        return [item for item in await self.list_items() if item.status == status]

    async def get_low_stock_items(self) -> List[InventoryItemResponse]:
        return await self.get_items_by_status(StockStatus.LOW)

    async def get_critical_stock_items(self) -> List[InventoryItemResponse]:
        return await self.get_items_by_status(StockStatus.CRITICAL)

    # --- Items: writes ---

    async def create_item(self, data: Mapping[str, Any], user_id: Optional[str] = None) -> InventoryItemResponse:
        """
        Validates and stores a new item, filling in defaults.

        Raises ValidationFailure before touching the datastore when a required
        field is missing or malformed. When ``user_id`` is given an ``addition``
        entry is written to the activity log.
        """
        missing = [f for f in REQUIRED_ITEM_FIELDS if _is_blank(data.get(f))]
        if missing:
            raise ValidationFailure(f"Missing required fields: {', '.join(missing)}", fields=missing)

        original_amount = to_amount(data["original_amount"], "original_amount")
        if original_amount <= 0:
            raise ValidationFailure("original_amount must be greater than zero", fields=["original_amount"])

        record: Dict[str, Any] = {
            "id": uuid.uuid4(),
            "item_code": str(data["item_code"]).strip(),
            "name": str(data["name"]).strip(),
            "description": data.get("description"),
            "category": self._category(data.get("category")),
            "original_amount": original_amount,
            "location_id": data["location_id"],
        }
        record["current_balance"] = (
            original_amount if data.get("current_balance") is None
            else self._non_negative(data["current_balance"], "current_balance")
        )
        defaults = default_thresholds(original_amount)
        for field in ("min_threshold", "critical_threshold"):
            record[field] = (
                defaults[field] if data.get(field) is None
                else self._non_negative(data[field], field)
            )

        unit = normalize_unit(data["unit"])
        consumption_unit = normalize_unit(data.get("consumption_unit")) or unit
        self._check_units(unit, consumption_unit)
        record["unit"], record["consumption_unit"] = unit, consumption_unit

        if not await self.datastore.get(LOCATIONS, record["location_id"]):
            raise ValidationFailure(f"Location {record['location_id']} not found", fields=["location_id"])
        if await self.get_item_by_code(record["item_code"]):
            raise ValidationFailure(f"Item code '{record['item_code']}' already exists", fields=["item_code"])

        stored = await self.datastore.insert(INVENTORY_ITEMS, record)
        item = _to_item(stored)
        log.info(f"Inventory item '{item.name}' ({item.item_code}) created with {item.current_balance} {item.unit}")

        if user_id and self.ledger:
            try:
                await self.ledger.log_activity(user_id, ActivityType.ADDITION, item.id, {
                    "amount": item.original_amount,
                    "unit": item.unit,
                    "previous_balance": Decimal(0),
                    "new_balance": item.current_balance,
                    "reason": None,
                })
            except PersistenceFailure as e:
                # The item exists either way; the audit gap is reported, not rolled back
                log.error(f"Activity log for new item {item.id} was not written: {e}")
        return item

    async def update_item(
        self,
        item_id,
        patch: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Optional[InventoryItemResponse]:
        """
        Applies a partial patch. ``status`` is derived and can not be patched.

        ``expected`` makes the write conditional on the stored values (see
        ``Datastore.update``). Returns None when the item is gone or the
        condition did not hold.
        """
        unknown = set(patch) - UPDATABLE_ITEM_FIELDS
        if unknown:
            raise ValidationFailure(f"Fields can not be updated: {', '.join(sorted(unknown))}", fields=sorted(unknown))

        changes: Dict[str, Any] = {}
        for field, value in patch.items():
            if field in DECIMAL_FIELDS:
                changes[field] = self._non_negative(value, field)
            elif field in ("item_code", "name", "unit", "location_id"):
                if _is_blank(value):
                    raise ValidationFailure(f"{field} can not be empty", fields=[field])
                changes[field] = value.strip() if isinstance(value, str) else value
            elif field == "category":
                changes[field] = self._category(value)
            else:
                changes[field] = value
        if changes.get("original_amount") == 0:
            raise ValidationFailure("original_amount must be greater than zero", fields=["original_amount"])

        if "unit" in changes or "consumption_unit" in changes:
            current = await self.datastore.get(INVENTORY_ITEMS, item_id)
            if current is None:
                return None
            unit = normalize_unit(changes.get("unit", current["unit"]))
            if "consumption_unit" in changes:
                # An explicitly cleared consumption unit falls back to the stocking unit
                consumption_unit = normalize_unit(changes["consumption_unit"]) or unit
            else:
                consumption_unit = normalize_unit(current["consumption_unit"]) or unit
            self._check_units(unit, consumption_unit)
            changes["unit"], changes["consumption_unit"] = unit, consumption_unit

        if "location_id" in changes and not await self.datastore.get(LOCATIONS, changes["location_id"]):
            raise ValidationFailure(f"Location {changes['location_id']} not found", fields=["location_id"])
        if "item_code" in changes:
            existing = await self.get_item_by_code(changes["item_code"])
            if existing and str(existing.id) != str(item_id):
                raise ValidationFailure(f"Item code '{changes['item_code']}' already exists", fields=["item_code"])

        changes["updated_at"] = datetime.now(timezone.utc)
        stored = await self.datastore.update(INVENTORY_ITEMS, item_id, changes, expected=expected)
        return _to_item(stored) if stored else None

    async def delete_item(self, item_id) -> bool:
        """Admin operation. Ledger entries that reference the item are kept."""
        deleted = await self.datastore.delete(INVENTORY_ITEMS, item_id)
        if deleted:
            log.info(f"Inventory item {item_id} deleted")
        return deleted

    async def require_item(self, item_id) -> InventoryItemResponse:
        item = await self.get_item(item_id)
        if item is None:
            raise ItemNotFound(item_id)
        return item

    # --- Locations ---

    async def list_locations(self) -> List[LocationResponse]:
        rows = await self.datastore.list(LOCATIONS, order_by=["name"])
        return [LocationResponse.model_validate(row) for row in rows]

    async def get_location(self, location_id) -> Optional[LocationResponse]:
        record = await self.datastore.get(LOCATIONS, location_id)
        return LocationResponse.model_validate(record) if record else None

    async def create_location(self, name: str, description: Optional[str] = None) -> LocationResponse:
        if _is_blank(name):
            raise ValidationFailure("Missing required fields: name", fields=["name"])
        name = name.strip()
        if await self.datastore.list(LOCATIONS, {"name": name}, limit=1):
            raise ValidationFailure(f"Location '{name}' already exists", fields=["name"])
        record = await self.datastore.insert(LOCATIONS, {"id": uuid.uuid4(), "name": name, "description": description})
        return LocationResponse.model_validate(record)

    async def update_location(self, location_id, patch: Mapping[str, Any]) -> Optional[LocationResponse]:
        """Renames or re-describes a location. Returns None when it does not exist."""
        unknown = set(patch) - UPDATABLE_LOCATION_FIELDS
        if unknown:
            raise ValidationFailure(f"Fields can not be updated: {', '.join(sorted(unknown))}", fields=sorted(unknown))

        changes: Dict[str, Any] = dict(patch)
        if "name" in changes:
            if _is_blank(changes["name"]):
                raise ValidationFailure("name can not be empty", fields=["name"])
            changes["name"] = changes["name"].strip()
            existing = await self.datastore.list(LOCATIONS, {"name": changes["name"]}, limit=1)
            if existing and str(existing[0]["id"]) != str(location_id):
                raise ValidationFailure(f"Location '{changes['name']}' already exists", fields=["name"])

        changes["updated_at"] = datetime.now(timezone.utc)
        record = await self.datastore.update(LOCATIONS, location_id, changes)
        return LocationResponse.model_validate(record) if record else None

    async def delete_location(self, location_id) -> bool:
        """
        Deletes an empty location. Items only hold a weak reference, so a
        location that still has items is refused rather than orphaning them.
        """
        if not await self.datastore.get(LOCATIONS, location_id):
            return False
        in_use = await self.datastore.list(INVENTORY_ITEMS, {"location_id": location_id}, limit=1)
        if in_use:
            raise ValidationFailure(
                f"Location {location_id} still holds items; move or delete them first",
                fields=["location_id"],
            )
        deleted = await self.datastore.delete(LOCATIONS, location_id)
        if deleted:
            log.info(f"Location {location_id} deleted")
        return deleted

    # --- Helpers ---

    @staticmethod
    def _non_negative(value, field: str) -> Decimal:
        number = to_amount(value, field)
        if number < 0:
            raise ValidationFailure(f"{field} can not be negative", fields=[field])
        return number

    @staticmethod
    def _category(value) -> Optional[ItemCategory]:
        if _is_blank(value):
            return None
        if isinstance(value, ItemCategory):
            return value
        for category in ItemCategory:
            if str(value).strip().lower() == category.value.lower():
                return category
        raise ValidationFailure(f"Unknown category: {value!r}", fields=["category"])

    @staticmethod
    def _check_units(unit: str, consumption_unit: str):
        if not is_known_unit(unit):
            log.warning(f"Stocking unit '{unit}' is not in the unit table; consumptions will not be converted")
            return
        if is_known_unit(consumption_unit) and dimension_of(unit) != dimension_of(consumption_unit):
            raise ValidationFailure(
                f"Consumption unit '{consumption_unit}' ({dimension_of(consumption_unit).value}) is not compatible "
                f"with stocking unit '{unit}' ({dimension_of(unit).value})",
                fields=["consumption_unit"],
            )
