"""
Consumption and balance adjustment transactions.

Both paths run their read-check-write sequence under a per-item lock, so no two
transactions against the same item interleave inside one process. The balance
write is also a compare-and-set on the previous balance, which catches writers
in other processes; a lost race is re-read and re-validated.

When the datastore supports transactions, the balance update and the ledger
writes commit together. Otherwise the ledger writes follow the balance update
and a failure there restores the previous balance (best effort).
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Dict, List, Optional

from spog.core.config import MAX_COMMIT_RETRIES, UNSUPPORTED_CONVERSION_POLICY
from spog.core.datastore import Datastore
from spog.core.errors import (
    CompensationFailure,
    ConcurrentModification,
    ImmutableRecordError,
    InsufficientBalance,
    ItemNotFound,
    PersistenceFailure,
    UnsupportedConversion,
    ValidationFailure,
)
from spog.models.ledger import ActivityType
from spog.schemas.inventory import InventoryItemResponse
from spog.schemas.transactions import TransactionOutcome, TransactionResult, TransactionState
from spog.services.inventory_service import InventoryService, quantize_amount, to_amount
from spog.services.ledger_service import LedgerService
from spog.services.units import convert, normalize_unit

log = logging.getLogger(__name__)


def _fmt(value: Decimal) -> str:
    """Renders a Decimal without exponent or trailing zeros."""
    text = format(value.normalize(), "f")
    return "0" if text in ("-0", "") else text


class ItemLockRegistry:
    """One asyncio.Lock per item id; entries are dropped once nobody waits on them."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, item_id):
        key = str(item_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self):
        return len(self._locks)


class _Attempt:
    """Progress of one request through the transaction states."""

    def __init__(self, item_id):
        self.item_id = item_id
        self.state = TransactionState.VALIDATING
        self.warnings: List[str] = []


class ConsumptionService:
    """Records consumption events and privileged balance adjustments."""

    def __init__(
        self,
        datastore: Datastore,
        inventory: InventoryService,
        ledger: LedgerService,
        locks: Optional[ItemLockRegistry] = None,
        conversion_policy: str = UNSUPPORTED_CONVERSION_POLICY,
        max_retries: int = MAX_COMMIT_RETRIES,
    ):
        if conversion_policy not in ("fallback", "reject"):
            raise ValueError(f"Unknown unsupported-conversion policy: {conversion_policy}")
        self.datastore = datastore
        self.inventory = inventory
        self.ledger = ledger
        self.locks = locks or ItemLockRegistry()
        self.conversion_policy = conversion_policy
        self.max_retries = max_retries

    # --- Public operations ---

    async def record_consumption(self, item_id, user_id: str, amount, reason: Optional[str] = None) -> TransactionResult:
        """
        Deducts ``amount`` (in the item's consumption unit) from the item's balance
        and writes the ledger entry and activity log. Never raises.
        """
        attempt = _Attempt(item_id)
        try:
            value = to_amount(amount)
            if value <= 0:
                raise ValidationFailure("Consumption amount must be greater than zero", fields=["amount"])
            self._require_user(user_id)
            async with self.locks.hold(item_id):
                item = await self._with_retries(attempt, lambda: self._consume_once(attempt, user_id, value, _clean(reason)))
            return self._success(attempt, "Consumption recorded successfully", item)
        except Exception as e:
            return self._failure(attempt, e)

    async def adjust_balance(self, item_id, user_id: str, new_balance, reason: Optional[str] = None) -> TransactionResult:
        """
        Overwrites the item's balance (stocking unit) and logs an ``adjustment``.

        No conversion and no insufficiency check. The caller must have verified
        that the acting user holds the privileged role.
        """
        attempt = _Attempt(item_id)
        try:
            value = to_amount(new_balance, "new_balance")
            if value < 0:
                raise ValidationFailure("New balance can not be negative", fields=["new_balance"])
            self._require_user(user_id)
            async with self.locks.hold(item_id):
                item = await self._with_retries(attempt, lambda: self._adjust_once(attempt, user_id, value, _clean(reason)))
            return self._success(attempt, "Balance adjusted successfully", item)
        except Exception as e:
            return self._failure(attempt, e)

    # --- Steps ---

    async def _consume_once(self, attempt: _Attempt, user_id: str, amount: Decimal, reason: Optional[str]):
        attempt.state = TransactionState.VALIDATING
        attempt.warnings = []
        item = await self.inventory.require_item(attempt.item_id)

        attempt.state = TransactionState.CONVERTING
        converted = self._to_stocking_unit(attempt, item, amount)

        attempt.state = TransactionState.BALANCE_CHECKING
        if item.current_balance < converted:
            raise InsufficientBalance(
                f"Not enough balance: available {_fmt(item.current_balance)} {item.unit}, "
                f"requested {_fmt(amount)} {item.consumption_unit} "
                f"({_fmt(converted)} {item.unit} after conversion)",
                available=item.current_balance,
                requested=converted,
            )

        attempt.state = TransactionState.COMMITTING
        # Stored at column precision, so the next compare-and-set sees exactly this value
        new_balance = quantize_amount(item.current_balance - converted)
        details = {
            "amount": amount,
            "unit": item.consumption_unit,
            "converted_amount": converted,
            "stocking_unit": item.unit,
            "reason": reason,
            "previous_balance": item.current_balance,
            "new_balance": new_balance,
        }

        async def write_ledger():
            await self.ledger.record_consumption_entry(item.id, user_id, amount, reason)
            try:
                await self.ledger.log_activity(user_id, ActivityType.CONSUMPTION, item.id, details)
            except PersistenceFailure as e:
                if self.datastore.supports_transactions:
                    raise
                # The ledger entry is the record of the consumption and can not be taken back
                log.error(f"Activity log for consumption on item {item.id} was not written: {e}")
                attempt.warnings.append("Consumption recorded but the activity log entry could not be written")

        return await self._commit(item, new_balance, write_ledger)

    async def _adjust_once(self, attempt: _Attempt, user_id: str, new_balance: Decimal, reason: Optional[str]):
        attempt.state = TransactionState.VALIDATING
        item = await self.inventory.require_item(attempt.item_id)

        attempt.state = TransactionState.COMMITTING
        details = {
            "amount": new_balance - item.current_balance,
            "unit": item.unit,
            "reason": reason,
            "previous_balance": item.current_balance,
            "new_balance": new_balance,
        }

        async def write_ledger():
            await self.ledger.log_activity(user_id, ActivityType.ADJUSTMENT, item.id, details)

        return await self._commit(item, new_balance, write_ledger)

    def _to_stocking_unit(self, attempt: _Attempt, item: InventoryItemResponse, amount: Decimal) -> Decimal:
        if normalize_unit(item.consumption_unit) == normalize_unit(item.unit):
            return amount
        try:
            return convert(amount, item.consumption_unit, item.unit)
        except UnsupportedConversion:
            if self.conversion_policy == "reject":
                raise
            warning = (
                f"No conversion from '{item.consumption_unit}' to '{item.unit}'; "
                f"{_fmt(amount)} was applied to the balance unconverted"
            )
            log.warning(f"Item {item.id} ({item.item_code}): {warning}")
            attempt.warnings.append(warning)
            return amount

    async def _commit(self, item: InventoryItemResponse, new_balance: Decimal, write_ledger):
        """
        Writes the new balance, then the ledger entries. Returns the updated item,
        or None when another writer changed the balance first.
        """
        expected = {"current_balance": item.current_balance}

        if self.datastore.supports_transactions:
            async with self.datastore.transaction():
                updated = await self.inventory.update_item(item.id, {"current_balance": new_balance}, expected=expected)
                if updated is None:
                    return None
                await write_ledger()
            return updated

        updated = await self.inventory.update_item(item.id, {"current_balance": new_balance}, expected=expected)
        if updated is None:
            return None
        try:
            await write_ledger()
        except Exception as e:
            await self._compensate(item, new_balance, e)
            raise
        return updated

    async def _compensate(self, item: InventoryItemResponse, new_balance: Decimal, cause: Exception):
        log.warning(f"Ledger write failed for item {item.id} ({cause}); restoring balance {item.current_balance}")
        try:
            restored = await self.inventory.update_item(
                item.id,
                {"current_balance": item.current_balance},
                expected={"current_balance": new_balance},
            )
        except Exception as e:
            restored = None
            cause = e
        if restored is None:
            log.error(
                f"UNCOMPENSATED: item {item.id} ({item.item_code}) balance left at {new_balance} {item.unit}, "
                f"expected {item.current_balance} {item.unit}; reconcile manually"
            )
            raise CompensationFailure(
                f"Balance of item {item.id} could not be restored to {_fmt(item.current_balance)} {item.unit}"
            ) from cause

    async def _with_retries(self, attempt: _Attempt, run_once):
        for retry in range(self.max_retries + 1):
            item = await run_once()
            if item is not None:
                attempt.state = TransactionState.LOGGED
                return item
            log.warning(f"Balance of item {attempt.item_id} changed concurrently (attempt {retry + 1}); re-reading")
        raise ConcurrentModification(
            f"Balance of item {attempt.item_id} kept changing; gave up after {self.max_retries + 1} attempts"
        )

    # --- Results ---

    @staticmethod
    def _require_user(user_id):
        if not user_id or not str(user_id).strip():
            raise ValidationFailure("Acting user is required", fields=["user_id"])

    @staticmethod
    def _success(attempt: _Attempt, message: str, item: InventoryItemResponse) -> TransactionResult:
        return TransactionResult(
            success=True,
            message=message,
            outcome=TransactionOutcome.OK,
            state=TransactionState.LOGGED,
            updated_item=item,
            warnings=attempt.warnings,
        )

    @staticmethod
    def _failure(attempt: _Attempt, error: Exception) -> TransactionResult:
        failed_at = attempt.state
        if isinstance(error, ItemNotFound):
            outcome, state, message = TransactionOutcome.NOT_FOUND, TransactionState.REJECTED, "Item not found"
        elif isinstance(error, InsufficientBalance):
            outcome, state, message = TransactionOutcome.INSUFFICIENT_BALANCE, TransactionState.REJECTED, str(error)
        elif isinstance(error, UnsupportedConversion):
            outcome, state, message = TransactionOutcome.UNSUPPORTED_CONVERSION, TransactionState.REJECTED, str(error)
        elif isinstance(error, ValidationFailure):
            outcome, state, message = TransactionOutcome.VALIDATION_FAILURE, TransactionState.REJECTED, str(error)
        elif isinstance(error, CompensationFailure):
            outcome, state = TransactionOutcome.FAILED_UNCOMPENSATED, TransactionState.FAILED
            message = f"Transaction failed and could not be rolled back: {error}"
        elif isinstance(error, (PersistenceFailure, ImmutableRecordError)):
            log.error(f"Transaction on item {attempt.item_id} failed in {failed_at.value}: {error}")
            outcome, state, message = TransactionOutcome.FAILED, TransactionState.FAILED, f"Transaction failed: {error}"
        else:
            log.exception(f"Unexpected error in transaction on item {attempt.item_id}")
            outcome, state, message = TransactionOutcome.FAILED, TransactionState.FAILED, "An unexpected error occurred"

        if state == TransactionState.REJECTED:
            log.info(f"Transaction on item {attempt.item_id} rejected in {failed_at.value}: {message}")
        return TransactionResult(
            success=False,
            message=message,
            outcome=outcome,
            state=state,
            failed_at=failed_at,
            warnings=attempt.warnings,
        )


def _clean(reason: Optional[str]) -> Optional[str]:
    if reason is None:
        return None
    return reason.strip() or None
