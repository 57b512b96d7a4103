# 周期订单相关的数据模型

from typing import List, Literal, Optional
from pydantic import BaseModel, Field


class RecurrenceRequest(BaseModel):
    """
    重复规则请求模型

    日期使用 YYYY-MM-DD 或 ISO 8601 文本，具体取值在业务层校验
    """
    start_date: Optional[str] = Field(None, description="开始日期")
    end_date: Optional[str] = Field(None, description="结束日期（不含）")
    days_of_week: Optional[List[int]] = Field(None, description="星期编号，0=周日 … 6=周六")
    include_dates: Optional[List[str]] = Field(None, description="额外配送日期")
    exclude_dates: Optional[List[str]] = Field(None, description="排除日期")
    selected_dates: Optional[List[str]] = Field(None, description="指定配送日期（非空时只在这些日期配送）")
    notes: Optional[str] = Field(None, max_length=1000, description="备注")


class CreateRecurringOrderRequest(BaseModel):
    """创建周期订单请求模型"""
    source_order_id: int = Field(..., description="来源订单ID")
    recurrence: RecurrenceRequest
    initial_status: Literal['active', 'paused'] = Field('active', description="初始排期状态")
    next_delivery_at: Optional[str] = Field(None, description="首次配送日期，为空时按规则计算")


class UpdateRecurrenceRequest(BaseModel):
    """修改重复规则请求模型（只需提供要修改的字段）"""
    recurrence: RecurrenceRequest
    next_delivery_at: Optional[str] = Field(None, description="下次配送日期，为空时重新计算")


class RecurringActionRequest(BaseModel):
    """周期订单状态操作请求模型"""
    action: Literal['pause', 'resume', 'skip', 'end', 'cancel']
    paused_until: Optional[str] = Field(None, description="暂停截止时间（仅 pause）")
    reason: Optional[str] = Field(None, max_length=500, description="结束原因（仅 end / cancel）")
