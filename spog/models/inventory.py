from decimal import Decimal
from enum import Enum
from tortoise import fields, models
import uuid

# Every quantity column is DECIMAL(18,6); values are quantized to this before they are written
AMOUNT_MAX_DIGITS = 18
AMOUNT_DECIMAL_PLACES = 6
AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_DECIMAL_PLACES)


class ItemCategory(str, Enum):
    SEALANT = "Sealant"
    PAINT = "Paint"
    OIL = "Oil"
    GREASE = "Grease"


class StockStatus(str, Enum):
    """Derived from balance vs thresholds on every read, never stored."""
    NORMAL = "normal"
    LOW = "low"
    CRITICAL = "critical"


class Location(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    name = fields.CharField(max_length=255, unique=True)
    description = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "locations"


class InventoryItem(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    item_code = fields.CharField(max_length=64, unique=True)
    name = fields.CharField(max_length=255)
    category = fields.CharEnumField(ItemCategory, max_length=16, null=True)
    description = fields.TextField(null=True)
    # Balance and thresholds are expressed in the stocking unit
    current_balance = fields.DecimalField(max_digits=AMOUNT_MAX_DIGITS, decimal_places=AMOUNT_DECIMAL_PLACES)
    original_amount = fields.DecimalField(max_digits=AMOUNT_MAX_DIGITS, decimal_places=AMOUNT_DECIMAL_PLACES)
    unit = fields.CharField(max_length=16)
    consumption_unit = fields.CharField(max_length=16)
    min_threshold = fields.DecimalField(max_digits=AMOUNT_MAX_DIGITS, decimal_places=AMOUNT_DECIMAL_PLACES, default=0)
    critical_threshold = fields.DecimalField(max_digits=AMOUNT_MAX_DIGITS, decimal_places=AMOUNT_DECIMAL_PLACES, default=0)
    # Weak reference: no foreign key, the item store refuses to delete a location that still has items
    location_id = fields.UUIDField()
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "inventory_items"
        indexes = [
            ("location_id",),   # Per-location stock views
            ("name",),          # Default ordering
        ]
