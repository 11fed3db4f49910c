from enum import Enum
from tortoise import fields, models
import uuid

from spog.core.errors import ImmutableRecordError
from spog.models.inventory import AMOUNT_DECIMAL_PLACES, AMOUNT_MAX_DIGITS


class ActivityType(str, Enum):
    CONSUMPTION = "consumption"
    ADJUSTMENT = "adjustment"
    ADDITION = "addition"


class AppendOnlyModel(models.Model):
    """
    Rows are written once. Saving an already persisted instance or deleting one
    raises ImmutableRecordError before any SQL is sent.
    """

    async def save(self, *args, **kwargs):
        if self._saved_in_db:
            raise ImmutableRecordError(f"{self.__class__.__name__} {self.pk} is append-only")
        await super().save(*args, **kwargs)

    async def delete(self, *args, **kwargs):
        raise ImmutableRecordError(f"{self.__class__.__name__} {self.pk} cannot be deleted")

    class Meta:
        abstract = True


class ConsumptionRecord(AppendOnlyModel):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    item_id = fields.UUIDField()
    user_id = fields.CharField(max_length=64)
    # As entered by the user, in the item's consumption unit (never converted)
    amount = fields.DecimalField(max_digits=AMOUNT_MAX_DIGITS, decimal_places=AMOUNT_DECIMAL_PLACES)
    reason = fields.TextField(null=True)
    timestamp = fields.DatetimeField()
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "consumption_records"
        indexes = [
            ("item_id",),               # Item history
            ("user_id",),               # User history
            ("timestamp",),             # Date-range reports
            ("item_id", "timestamp"),   # Composite: item history in range
        ]


class ActivityLog(AppendOnlyModel):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    user_id = fields.CharField(max_length=64)
    action_type = fields.CharEnumField(ActivityType, max_length=16)
    item_id = fields.UUIDField()
    details = fields.JSONField()  # amount, unit, reason, previous/new balance
    timestamp = fields.DatetimeField()
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "activity_logs"
        indexes = [
            ("item_id",),
            ("user_id",),
            ("timestamp",),
        ]
