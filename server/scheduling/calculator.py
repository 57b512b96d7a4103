# 下次配送日期计算
# 纯函数，不做任何 I/O

from datetime import date, datetime, timedelta
from typing import List, Optional, Union

from .models import RecurrenceRule
from .weekdays import weekday_index

DEFAULT_SEARCH_HORIZON_DAYS = 366

Instant = Union[date, datetime]


def _reference_day(reference: Instant) -> date:
    if isinstance(reference, datetime):
        return reference.date()
    return reference


def compute_next_delivery(rule: RecurrenceRule, reference: Instant,
                          horizon_days: int = DEFAULT_SEARCH_HORIZON_DAYS) -> Optional[date]:
    """
    计算参考时刻之后最早的可配送日期

    Args:
        rule: 重复规则
        reference: 参考时刻（通常为当前时间），结果严格晚于该时刻所在日期
        horizon_days: 按星期逐日搜索的最大天数

    Returns:
        下次配送日期；规则为空、已过结束日期或搜索范围内无匹配时返回 None
    """
    if rule is None or rule.is_degenerate():
        return None

    today = _reference_day(reference)

    if rule.selected_dates:
        for candidate in rule.selected_dates:
            if candidate > today and rule.is_eligible(candidate):
                return candidate
        return None

    # 显式附加日期直接检查，不受搜索范围限制
    best = None
    for candidate in rule.include_dates:
        if candidate > today and rule.is_eligible(candidate):
            best = candidate
            break

    if not rule.days_of_week:
        return best

    cursor = today + timedelta(days=1)
    if rule.start_date and cursor < rule.start_date:
        cursor = rule.start_date
    # 搜索范围从实际起点（参考日次日或开始日期）起算
    last_day = cursor + timedelta(days=horizon_days - 1)
    if best is not None and best < last_day:
        last_day = best

    while cursor <= last_day:
        if rule.end_date and cursor >= rule.end_date:
            break
        if rule.is_eligible(cursor):
            return cursor
        cursor += timedelta(days=1)

    return best


def upcoming_deliveries(rule: RecurrenceRule, reference: Instant, count: int = 5,
                        horizon_days: int = DEFAULT_SEARCH_HORIZON_DAYS) -> List[date]:
    """依次列出参考时刻之后的若干个配送日期（用于预览）"""
    dates = []
    cursor = reference
    while len(dates) < count:
        next_day = compute_next_delivery(rule, cursor, horizon_days)
        if next_day is None:
            break
        dates.append(next_day)
        cursor = next_day
    return dates


def resolve_weekday_slot(day_name: str, reference: Instant, allow_same_day: bool = False,
                         fallback: Optional[str] = None) -> date:
    """
    计算某个星期几在参考时刻之后的下一次出现

    Args:
        day_name: 星期名称，忽略大小写
        reference: 参考时刻
        allow_same_day: 参考日期本身匹配时是否直接返回（恢复订阅时必须为 False）
        fallback: 名称无法识别时使用的星期名称，None 表示报错

    Returns:
        7 天以内星期匹配的日期

    Raises:
        InvalidWeekdayError: 星期名称无法识别且未配置回退值
    """
    weekday = weekday_index(day_name, fallback=fallback)
    today = _reference_day(reference)
    if allow_same_day:
        # 以前一天为参考，使当天也成为候选
        today = today - timedelta(days=1)

    # 单星期规则每 7 天必有一次命中
    return compute_next_delivery(RecurrenceRule.single_weekday(weekday), today, horizon_days=7)


def validate_recurrence_pattern(rule: RecurrenceRule, now: Optional[Instant] = None) -> List[str]:
    """
    校验重复规则是否可用于排期

    星期编号范围与起止日期顺序已在 RecurrenceRule 构造时校验

    Returns:
        错误信息列表，为空表示校验通过
    """
    errors = []
    today = _reference_day(now or datetime.now())

    if rule.is_degenerate():
        errors.append("至少需要指定一种重复方式（days_of_week、include_dates 或 selected_dates）")

    if any(selected <= today for selected in rule.selected_dates):
        errors.append("指定配送日期必须晚于今天")

    return errors
