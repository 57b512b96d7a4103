# 周期订单模块

from .routes import router as recurring_orders_router
from .models import (
    RecurrenceRequest, CreateRecurringOrderRequest, UpdateRecurrenceRequest, RecurringActionRequest
)

__all__ = [
    "recurring_orders_router",
    "RecurrenceRequest",
    "CreateRecurringOrderRequest",
    "UpdateRecurrenceRequest",
    "RecurringActionRequest"
]
