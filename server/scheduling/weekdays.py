# 星期编号工具
# 统一使用 Sunday=0 … Saturday=6 的编号，与前端及历史数据保持一致

from datetime import date
from typing import Optional

from .errors import InvalidWeekdayError

WEEKDAY_NAMES = (
    'sunday', 'monday', 'tuesday', 'wednesday',
    'thursday', 'friday', 'saturday',
)

_WEEKDAY_LOOKUP = {}
for _index, _name in enumerate(WEEKDAY_NAMES):
    _WEEKDAY_LOOKUP[_name] = _index
    _WEEKDAY_LOOKUP[_name[:3]] = _index


def day_of_week(value: date) -> int:
    """返回日期的星期编号（Sunday=0）"""
    # date.weekday() 以 Monday=0 计
    return (value.weekday() + 1) % 7


def weekday_index(name: str, fallback: Optional[str] = None) -> int:
    """
    星期名称转编号，忽略大小写与首尾空白

    Args:
        name: 星期名称，如 'Saturday'、'sat'
        fallback: 名称无法识别时使用的星期名称，None 表示直接报错

    Returns:
        星期编号 0-6

    Raises:
        InvalidWeekdayError: 名称（及回退值）无法识别
    """
    key = name.strip().lower() if isinstance(name, str) else ''
    if key in _WEEKDAY_LOOKUP:
        return _WEEKDAY_LOOKUP[key]

    if fallback is not None:
        fallback_key = fallback.strip().lower()
        if fallback_key in _WEEKDAY_LOOKUP:
            return _WEEKDAY_LOOKUP[fallback_key]
        raise InvalidWeekdayError(f"回退星期名称无效: {fallback!r}")

    raise InvalidWeekdayError(f"无法识别的星期名称: {name!r}")


def normalize_weekday_name(name: str) -> str:
    """返回规范化的星期全称（小写）"""
    return WEEKDAY_NAMES[weekday_index(name)]
