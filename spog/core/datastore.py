"""
Datastore handle shared by the inventory services.

Services never talk to the ORM directly: the application entry point creates one
handle and injects it into each service, so tests can swap in
``spog.testing.memory_datastore.MemoryDatastore``.

Records travel as plain dicts keyed by column name.
"""
import contextvars
import uuid
from decimal import Decimal
from contextlib import asynccontextmanager
from typing import Any, Dict, Iterable, List, Optional

from tortoise.exceptions import BaseORMException
from tortoise.fields import DecimalField
from tortoise.transactions import in_transaction

from spog.core.errors import ImmutableRecordError, PersistenceFailure
from spog.models.inventory import InventoryItem, Location
from spog.models.ledger import ActivityLog, ConsumptionRecord

LOCATIONS = "locations"
INVENTORY_ITEMS = "inventory_items"
CONSUMPTION_RECORDS = "consumption_records"
ACTIVITY_LOGS = "activity_logs"

# Ledger tables only ever receive inserts
APPEND_ONLY_TABLES = frozenset({CONSUMPTION_RECORDS, ACTIVITY_LOGS})


class Datastore:
    """
    Small CRUD interface over the tables of the inventory core.

    Filters use ORM-style lookups: ``field``, ``field__gte``, ``field__lte``,
    ``field__in`` and ``field__icontains``. ``order_by`` entries prefixed with
    ``-`` sort descending. Any backend failure surfaces as PersistenceFailure.
    """

    supports_transactions = False

    async def get(self, table: str, record_id: Any) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def list(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def update(
        self,
        table: str,
        record_id: Any,
        patch: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Applies ``patch`` and returns the stored record.

        When ``expected`` is given the write only happens if the stored row
        still holds those values (compare-and-set). Returns None when no row
        matched, either because it is gone or because ``expected`` is stale.
        """
        self._guard_mutable(table, "update")
        return await self._update(table, record_id, patch, expected)

    async def delete(self, table: str, record_id: Any) -> bool:
        self._guard_mutable(table, "delete")
        return await self._delete(table, record_id)

    @asynccontextmanager
    async def transaction(self):
        """No-op for datastores without multi-statement atomicity."""
        yield self

    async def _update(self, table, record_id, patch, expected):
        raise NotImplementedError

    async def _delete(self, table, record_id):
        raise NotImplementedError

    @staticmethod
    def _guard_mutable(table: str, operation: str):
        if table in APPEND_ONLY_TABLES:
            raise ImmutableRecordError(f"Cannot {operation} rows of append-only table '{table}'")


class TortoiseDatastore(Datastore):
    """Datastore backed by Tortoise ORM. Requires ``init_db()`` to have run."""

    supports_transactions = True

    MODELS = {
        LOCATIONS: Location,
        INVENTORY_ITEMS: InventoryItem,
        CONSUMPTION_RECORDS: ConsumptionRecord,
        ACTIVITY_LOGS: ActivityLog,
    }

    def __init__(self):
        # Connection of the transaction the current task is running in, if any
        self._conn = contextvars.ContextVar(f"spog_tx_{id(self)}", default=None)

    def _model(self, table: str):
        try:
            return self.MODELS[table]
        except KeyError:
            raise PersistenceFailure(f"Unknown table '{table}'")

    def _using(self, queryset):
        conn = self._conn.get()
        return queryset.using_db(conn) if conn is not None else queryset

    @staticmethod
    def _to_record(obj) -> Dict[str, Any]:
        record = {}
        for name, field in obj._meta.fields_map.items():
            value = getattr(obj, name)
            if isinstance(field, DecimalField) and value is not None:
                # Tortoise normalizes on read (100 -> 1E+2); hand out the column scale instead
                value = Decimal(value).quantize(field.quant)
            record[name] = value
        return record

    @staticmethod
    def _coerce(model, values: Dict[str, Any]) -> Dict[str, Any]:
        """
        Rounds Decimal values to their column's scale. SQLite keeps decimals as
        text, so an unrounded write would never match a later compare-and-set
        against the rounded value read back.
        """
        coerced = {}
        for key, value in values.items():
            field = model._meta.fields_map.get(key.split("__", 1)[0])
            if isinstance(field, DecimalField) and isinstance(value, Decimal):
                value = value.quantize(field.quant)
            coerced[key] = value
        return coerced

    @staticmethod
    def _as_uuid(record_id) -> Optional[uuid.UUID]:
        try:
            return record_id if isinstance(record_id, uuid.UUID) else uuid.UUID(str(record_id))
        except ValueError:
            return None

    async def get(self, table, record_id):
        model = self._model(table)
        pk = self._as_uuid(record_id)
        if pk is None:
            return None
        try:
            obj = await self._using(model.filter(id=pk)).first()
        except BaseORMException as e:
            raise PersistenceFailure(f"Failed to fetch {table}/{record_id}: {e}") from e
        return self._to_record(obj) if obj else None

    async def list(self, table, filters=None, order_by=None, limit=None):
        model = self._model(table)
        query = model.filter(**(filters or {}))
        if order_by:
            query = query.order_by(*order_by)
        if limit:
            query = query.limit(limit)
        try:
            rows = await self._using(query)
        except BaseORMException as e:
            raise PersistenceFailure(f"Failed to list {table}: {e}") from e
        return [self._to_record(row) for row in rows]

    async def insert(self, table, record):
        model = self._model(table)
        conn = self._conn.get()
        try:
            obj = await model.create(using_db=conn, **self._coerce(model, record))
        except BaseORMException as e:
            raise PersistenceFailure(f"Failed to insert into {table}: {e}") from e
        return self._to_record(obj)

    async def _update(self, table, record_id, patch, expected):
        model = self._model(table)
        pk = self._as_uuid(record_id)
        if pk is None:
            return None
        try:
            # Conditional UPDATE ... WHERE id = :id AND <expected>; affected rows tell who won
            conditions = self._coerce(model, expected or {})
            updated = await self._using(model.filter(id=pk, **conditions)).update(**self._coerce(model, patch))
        except BaseORMException as e:
            raise PersistenceFailure(f"Failed to update {table}/{record_id}: {e}") from e
        if not updated:
            return None
        return await self.get(table, pk)

    async def _delete(self, table, record_id):
        model = self._model(table)
        pk = self._as_uuid(record_id)
        if pk is None:
            return False
        try:
            deleted = await self._using(model.filter(id=pk)).delete()
        except BaseORMException as e:
            raise PersistenceFailure(f"Failed to delete {table}/{record_id}: {e}") from e
        return bool(deleted)

    @asynccontextmanager
    async def transaction(self):
        if self._conn.get() is not None:
            # Already inside a transaction for this task
            yield self
            return
        try:
            async with in_transaction() as conn:
                token = self._conn.set(conn)
                try:
                    yield self
                finally:
                    self._conn.reset(token)
        except BaseORMException as e:
            raise PersistenceFailure(f"Transaction failed: {e}") from e
