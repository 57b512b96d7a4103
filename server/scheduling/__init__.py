# 周期配送排期引擎：重复规则、下次配送计算、状态迁移

from .calculator import (
    compute_next_delivery, resolve_weekday_slot, validate_recurrence_pattern, upcoming_deliveries
)
from .errors import (
    ScheduleError, InvalidTransitionError, InvalidRecurrenceError, InvalidWeekdayError,
    RecordNotFoundError, OwnershipError, ConcurrentModificationError, PartialCancellationError
)
from .models import RecurrenceRule, ScheduleState, DeliverySlot

__all__ = [
    "compute_next_delivery",
    "resolve_weekday_slot",
    "validate_recurrence_pattern",
    "upcoming_deliveries",
    "RecurrenceRule",
    "ScheduleState",
    "DeliverySlot",
    "ScheduleError",
    "InvalidTransitionError",
    "InvalidRecurrenceError",
    "InvalidWeekdayError",
    "RecordNotFoundError",
    "OwnershipError",
    "ConcurrentModificationError",
    "PartialCancellationError",
]
