# spog/models/__init__.py
from .inventory import InventoryItem, ItemCategory, Location, StockStatus
from .ledger import ActivityLog, ActivityType, ConsumptionRecord

# Export all models
__all__ = [
    "ActivityLog",
    "ActivityType",
    "ConsumptionRecord",
    "InventoryItem",
    "ItemCategory",
    "Location",
    "StockStatus",
]
