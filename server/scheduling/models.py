# 排期相关数据模型
# 重复规则、排期状态、订阅配送时段

import json
from datetime import date, datetime
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator, model_validator

from utils.validators import coerce_date
from .weekdays import WEEKDAY_NAMES, day_of_week, normalize_weekday_name

# 周期订单排期状态
RECURRING_ORDER_STATUSES = ('active', 'paused', 'ended')
# 订阅状态
SUBSCRIPTION_STATUSES = ('pending', 'active', 'paused', 'cancelled')
TERMINAL_STATUSES = frozenset({'ended', 'cancelled'})


class RecurrenceRule(BaseModel):
    """
    重复规则

    selected_dates 非空时单独决定可配送日期；否则为 days_of_week 命中日期
    与 include_dates 的并集。exclude_dates 始终优先，且所有日期都必须落在
    [start_date, end_date) 区间内。
    """
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    days_of_week: List[int] = Field(default_factory=list, description="0=周日 … 6=周六")
    include_dates: List[date] = Field(default_factory=list)
    exclude_dates: List[date] = Field(default_factory=list)
    selected_dates: List[date] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator('start_date', 'end_date', mode='before')
    @classmethod
    def parse_bound(cls, value):
        if value is None or value == '':
            return None
        return coerce_date(value)

    @field_validator('include_dates', 'exclude_dates', 'selected_dates', mode='before')
    @classmethod
    def parse_date_set(cls, value):
        if value is None:
            return []
        return sorted({coerce_date(item) for item in value})

    @field_validator('days_of_week', mode='before')
    @classmethod
    def parse_days_of_week(cls, value):
        if value is None:
            return []
        days = set()
        for item in value:
            day = int(item)
            if day < 0 or day > 6:
                raise ValueError("星期编号必须在 0（周日）到 6（周六）之间")
            days.add(day)
        return sorted(days)

    @model_validator(mode='after')
    def check_window(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("开始日期不能晚于结束日期")
        return self

    @classmethod
    def single_weekday(cls, weekday: int, start_date: Optional[date] = None) -> "RecurrenceRule":
        """只在某一个星期几配送的规则（订阅配送时段）"""
        return cls(days_of_week=[weekday], start_date=start_date)

    @classmethod
    def from_storage(cls, raw: Optional[str]) -> Optional["RecurrenceRule"]:
        if not raw:
            return None
        return cls.model_validate(json.loads(raw))

    def to_storage(self) -> str:
        return json.dumps(self.model_dump(mode='json'), ensure_ascii=False)

    def merged(self, patch: Dict[str, Any]) -> "RecurrenceRule":
        """合并部分字段更新，返回新规则（未出现的字段保持不变）"""
        data = self.model_dump()
        data.update({k: v for k, v in patch.items() if v is not None})
        return RecurrenceRule.model_validate(data)

    def is_degenerate(self) -> bool:
        return not (self.days_of_week or self.include_dates or self.selected_dates)

    def in_window(self, day: date) -> bool:
        if self.start_date and day < self.start_date:
            return False
        if self.end_date and day >= self.end_date:
            return False
        return True

    def is_eligible(self, day: date) -> bool:
        """判断某天是否为可配送日期"""
        if day in self.exclude_dates or not self.in_window(day):
            return False
        if self.selected_dates:
            return day in self.selected_dates
        return day_of_week(day) in self.days_of_week or day in self.include_dates


class ScheduleState(BaseModel):
    """订阅/周期订单内嵌的排期状态"""
    status: str
    next_delivery: Optional[date] = None
    paused_until: Optional[datetime] = None
    skipped_dates: List[date] = Field(default_factory=list)
    skipped_deliveries: int = Field(0, ge=0)
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class DeliverySlot(BaseModel):
    """订阅配送时段：星期几 + 时间段标签"""
    day: str = Field(..., description="星期名称，如 saturday")
    time_slot: str = Field(..., min_length=1, max_length=50, description="如 9am-12pm")

    @field_validator('day')
    @classmethod
    def normalize_day(cls, value: str) -> str:
        return normalize_weekday_name(value)

    def weekday(self) -> int:
        return WEEKDAY_NAMES.index(self.day)
