# 数据验证与日期解析工具

from datetime import date, datetime
from typing import Any, Optional


def coerce_date(value: Any) -> date:
    """
    将文本/日期时间转换为日期

    支持 'YYYY-MM-DD'、ISO 8601 日期时间（含 'Z' 时区后缀）、date、datetime

    Raises:
        ValueError: 无法解析
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if 'T' in text or ' ' in text:
            return coerce_datetime(text).date()
        try:
            return date.fromisoformat(text)
        except ValueError:
            raise ValueError(f"日期格式错误: {value!r}")
    raise ValueError(f"无法解析为日期: {value!r}")


def coerce_datetime(value: Any) -> Optional[datetime]:
    """
    将文本转换为日期时间，空值返回 None

    Raises:
        ValueError: 无法解析
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"日期时间格式错误: {value!r}")
    raise ValueError(f"无法解析为日期时间: {value!r}")


def validate_schedule_status(status: str) -> bool:
    """验证周期订单排期状态"""
    return status in ['active', 'paused', 'ended']


def validate_subscription_status(status: str) -> bool:
    """验证订阅状态"""
    return status in ['pending', 'active', 'paused', 'cancelled']


def validate_payment_method(method: str) -> bool:
    """验证订阅付款方式"""
    return method in ['cod', 'card', 'bank_transfer']
