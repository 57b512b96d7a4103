# 排期状态机
# 只描述状态迁移规则与字段变化，持久化与并发控制见 db/schedule_operations.py

from datetime import date, datetime, timedelta
from typing import Optional

from .errors import InvalidTransitionError
from .models import ScheduleState, TERMINAL_STATUSES

DEFAULT_SKIP_INTERVAL_DAYS = 7

# 各操作允许的当前状态
ALLOWED_SOURCE_STATUSES = {
    'pause': frozenset({'active'}),
    'resume': frozenset({'paused'}),
    'skip': frozenset({'active'}),
    'cancel': frozenset({'active', 'paused', 'pending'}),
}


def check_transition(action: str, state: ScheduleState):
    """
    校验操作是否可在当前状态执行

    Raises:
        InvalidTransitionError: 终止状态或状态不匹配
    """
    if action not in ALLOWED_SOURCE_STATUSES:
        raise ValueError(f"未知的排期操作: {action}")

    if state.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(action, state.status, f"排期已终止（{state.status}），无法执行 {action} 操作")

    if state.status not in ALLOWED_SOURCE_STATUSES[action]:
        raise InvalidTransitionError(action, state.status)


def apply_pause(state: ScheduleState, paused_until: Optional[datetime] = None) -> ScheduleState:
    """暂停：下次配送日期保持不变"""
    check_transition('pause', state)
    return state.model_copy(update={
        'status': 'paused',
        'paused_until': paused_until,
    })


def apply_resume(state: ScheduleState, next_delivery: Optional[date],
                 exhausted_status: Optional[str] = None) -> ScheduleState:
    """
    恢复：下次配送日期由调用方按当前时间重新计算后传入

    Args:
        next_delivery: 重新计算的下次配送日期
        exhausted_status: 规则已无后续日期时进入的状态（周期订单为 'ended'）
    """
    check_transition('resume', state)
    if next_delivery is None and exhausted_status:
        return state.model_copy(update={
            'status': exhausted_status,
            'paused_until': None,
            'next_delivery': None,
        })
    return state.model_copy(update={
        'status': 'active',
        'paused_until': None,
        'next_delivery': next_delivery,
    })


def apply_skip(state: ScheduleState, interval_days: int = DEFAULT_SKIP_INTERVAL_DAYS) -> ScheduleState:
    """跳过下一次配送：固定顺延一个周期，不重新搜索重复规则"""
    check_transition('skip', state)
    if state.next_delivery is None:
        raise InvalidTransitionError('skip', state.status, "当前没有待配送日期，无法跳过")

    skipped_dates = list(state.skipped_dates)
    if state.next_delivery not in skipped_dates:
        skipped_dates.append(state.next_delivery)

    return state.model_copy(update={
        'skipped_dates': skipped_dates,
        'skipped_deliveries': state.skipped_deliveries + 1,
        'next_delivery': state.next_delivery + timedelta(days=interval_days),
    })


def apply_cancel(state: ScheduleState, terminal_status: str, cancelled_at: datetime,
                 reason: Optional[str] = None) -> ScheduleState:
    """取消：进入终止状态，清空下次配送日期"""
    check_transition('cancel', state)
    return state.model_copy(update={
        'status': terminal_status,
        'next_delivery': None,
        'paused_until': None,
        'cancelled_at': cancelled_at,
        'cancel_reason': reason,
    })
