# 订阅模块

from .routes import router as subscriptions_router
from .models import DeliverySlotRequest, CreateSubscriptionRequest, SubscriptionActionRequest

__all__ = [
    "subscriptions_router",
    "DeliverySlotRequest",
    "CreateSubscriptionRequest",
    "SubscriptionActionRequest"
]
