# 订阅相关的数据模型

from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, Field


class DeliverySlotRequest(BaseModel):
    """配送时段"""
    day: str = Field(..., min_length=1, max_length=20, description="星期名称，如 saturday")
    time_slot: str = Field(..., min_length=1, max_length=50, description="时间段，如 9am-12pm")


class CreateSubscriptionRequest(BaseModel):
    """创建订阅请求模型"""
    plan_id: int = Field(..., description="套餐ID")
    delivery_slot: DeliverySlotRequest
    delivery_address: Optional[Dict[str, Any]] = Field(None, description="配送地址")
    payment_method: str = Field('cod', description="付款方式：cod / card / bank_transfer")
    start_date: Optional[str] = Field(None, description="开始日期，默认今天")


class SubscriptionActionRequest(BaseModel):
    """订阅状态操作请求模型"""
    action: Literal['pause', 'resume', 'skip', 'cancel']
    paused_until: Optional[str] = Field(None, description="暂停截止时间（仅 pause）")
    reason: Optional[str] = Field(None, max_length=500, description="取消原因（仅 cancel）")
