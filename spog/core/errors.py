"""Error taxonomy for the inventory core.

Services raise these internally; the consumption coordinator turns them into
``TransactionResult`` values and the routers turn the rest into HTTP errors.
"""


class InventoryError(Exception):
    """Base class for every error raised by the inventory core."""


class ItemNotFound(InventoryError):
    def __init__(self, item_id):
        self.item_id = item_id
        super().__init__(f"Item {item_id} not found")


class UnsupportedConversion(InventoryError, ValueError):
    """No conversion rule exists between the two units."""

    def __init__(self, from_unit: str, to_unit: str):
        self.from_unit = from_unit
        self.to_unit = to_unit
        super().__init__(f"Cannot convert from '{from_unit}' to '{to_unit}'")


class InsufficientBalance(InventoryError):
    def __init__(self, message: str, available=None, requested=None):
        self.available = available
        self.requested = requested
        super().__init__(message)


class ValidationFailure(InventoryError, ValueError):
    def __init__(self, message: str, fields=None):
        self.fields = list(fields or [])
        super().__init__(message)


class PersistenceFailure(InventoryError):
    """A datastore call failed."""


class ConcurrentModification(PersistenceFailure):
    """A compare-and-set write lost against another writer."""


class CompensationFailure(InventoryError):
    """Restoring the previous balance after a partial failure did not succeed."""


class ImmutableRecordError(InventoryError):
    """Attempt to modify or delete a ledger or audit entry."""
