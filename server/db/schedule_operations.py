# 排期状态机持久化：暂停、恢复、跳过、取消
# 状态迁移规则见 scheduling/transitions.py，这里负责读取、归属校验、版本校验和写回

import json
import logging
from datetime import datetime
from typing import Callable, Dict, Any, NamedTuple, Optional, Tuple, Union

from scheduling.calculator import compute_next_delivery, resolve_weekday_slot
from scheduling.errors import (
    ConcurrentModificationError, OwnershipError, PartialCancellationError, RecordNotFoundError
)
from scheduling.models import RecurrenceRule, ScheduleState
from scheduling import transitions
from utils.config import DEFAULT_SCHEDULING_CONFIG
from utils.validators import coerce_date, coerce_datetime
from .manager import DatabaseManager
from .supporting_operations import PlanRegistry

logger = logging.getLogger(__name__)


class ScheduleKind(NamedTuple):
    """排期所在的表及各状态字段的列名"""
    name: str
    table: str
    id_column: str
    owner_column: str
    status_column: str
    next_column: str
    terminal_status: str
    row_filter: str = ""


RECURRING_ORDER = ScheduleKind(
    name='recurring_order',
    table='orders',
    id_column='order_id',
    owner_column='customer_id',
    status_column='schedule_status',
    next_column='next_delivery_at',
    terminal_status='ended',
    row_filter="AND is_recurring = 1",
)

SUBSCRIPTION = ScheduleKind(
    name='subscription',
    table='subscriptions',
    id_column='subscription_id',
    owner_column='user_id',
    status_column='status',
    next_column='next_delivery_date',
    terminal_status='cancelled',
)

SCHEDULE_KINDS = {kind.name: kind for kind in (RECURRING_ORDER, SUBSCRIPTION)}

KIND_LABELS = {
    'recurring_order': '周期订单',
    'subscription': '订阅',
}


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def state_to_dict(kind: ScheduleKind, record_id: int, state: ScheduleState) -> Dict[str, Any]:
    """排期状态转为接口返回格式"""
    return {
        kind.id_column: record_id,
        "kind": kind.name,
        "status": state.status,
        "next_delivery": _iso(state.next_delivery),
        "paused_until": _iso(state.paused_until),
        "skipped_dates": [d.isoformat() for d in state.skipped_dates],
        "skipped_deliveries": state.skipped_deliveries,
        "cancelled_at": _iso(state.cancelled_at),
        "cancel_reason": state.cancel_reason,
        "version": state.version,
    }


class ScheduleOperations:
    """
    排期状态迁移操作类

    每次迁移是单行的读-改-写，在一个事务内完成，写回时按 version 做乐观锁校验
    """
    def __init__(self, db_manager: DatabaseManager, plan_registry: PlanRegistry = None,
                 scheduling_config: Dict[str, Any] = None):
        self.db = db_manager
        self.plan_registry = plan_registry or PlanRegistry(db_manager)
        self.config = dict(DEFAULT_SCHEDULING_CONFIG)
        self.config.update(scheduling_config or {})

    @staticmethod
    def resolve_kind(kind: Union[str, ScheduleKind]) -> ScheduleKind:
        if isinstance(kind, ScheduleKind):
            return kind
        if kind not in SCHEDULE_KINDS:
            raise ValueError(f"未知的排期类型: {kind}")
        return SCHEDULE_KINDS[kind]

    def _load_schedule(self, kind: ScheduleKind, record_id: int) -> Dict[str, Any]:
        """读取排期所在行"""
        row = self.db.conn.execute(
            f"SELECT * FROM {kind.table} WHERE {kind.id_column} = ? {kind.row_filter}",
            [record_id]
        ).fetchone()

        if not row:
            raise RecordNotFoundError(f"{KIND_LABELS[kind.name]}ID {record_id} 不存在")

        return dict(row)

    def _to_state(self, kind: ScheduleKind, row: Dict[str, Any]) -> ScheduleState:
        next_delivery = row[kind.next_column]
        return ScheduleState(
            status=row[kind.status_column],
            next_delivery=coerce_date(next_delivery) if next_delivery else None,
            paused_until=coerce_datetime(row['paused_until']),
            skipped_dates=json.loads(row['skipped_dates']) if row['skipped_dates'] else [],
            skipped_deliveries=row['skipped_deliveries'] or 0,
            cancelled_at=coerce_datetime(row['cancelled_at']),
            cancel_reason=row['cancel_reason'],
            version=row['version'],
        )

    def _check_owner(self, kind: ScheduleKind, row: Dict[str, Any], user_id: Optional[int]):
        """校验调用者为所有者或管理员，user_id 为空表示内部调用"""
        if user_id is None or row[kind.owner_column] == user_id:
            return

        admin = self.db.conn.execute(
            "SELECT is_admin FROM users WHERE user_id = ? AND status = 'active'",
            [user_id]
        ).fetchone()
        if not admin or not admin['is_admin']:
            raise OwnershipError(f"无权操作该{KIND_LABELS[kind.name]}")

    def _save_schedule(self, kind: ScheduleKind, record_id: int, state: ScheduleState,
                       expected_version: int) -> ScheduleState:
        """
        写回排期状态，版本不一致时不写入

        Raises:
            ConcurrentModificationError: 读取后记录已被其他请求修改
        """
        cursor = self.db.conn.execute(f"""
            UPDATE {kind.table}
            SET {kind.status_column} = ?,
                {kind.next_column} = ?,
                paused_until = ?,
                skipped_dates = ?,
                skipped_deliveries = ?,
                cancelled_at = ?,
                cancel_reason = ?,
                version = version + 1,
                updated_at = CURRENT_TIMESTAMP
            WHERE {kind.id_column} = ? AND version = ?
        """, [
            state.status,
            _iso(state.next_delivery),
            _iso(state.paused_until),
            json.dumps([d.isoformat() for d in state.skipped_dates]),
            state.skipped_deliveries,
            _iso(state.cancelled_at),
            state.cancel_reason,
            record_id,
            expected_version,
        ])

        if cursor.rowcount == 0:
            raise ConcurrentModificationError(kind.name, record_id, expected_version)

        return state.model_copy(update={'version': expected_version + 1})

    def _transition(self, kind: ScheduleKind, record_id: int, user_id: Optional[int],
                    mutate: Callable[[Dict[str, Any], ScheduleState], ScheduleState]
                    ) -> Tuple[Dict[str, Any], ScheduleState]:
        def transition_operation():
            row = self._load_schedule(kind, record_id)
            self._check_owner(kind, row, user_id)
            state = self._to_state(kind, row)
            new_state = mutate(row, state)
            return row, self._save_schedule(kind, record_id, new_state, state.version)

        return self.db.execute_transaction([transition_operation])[0]

    def get_schedule(self, kind: Union[str, ScheduleKind], record_id: int) -> Dict[str, Any]:
        """读取当前排期状态"""
        kind = self.resolve_kind(kind)
        row = self._load_schedule(kind, record_id)
        return state_to_dict(kind, record_id, self._to_state(kind, row))

    def pause_schedule(self, kind: Union[str, ScheduleKind], record_id: int,
                       user_id: Optional[int] = None, paused_until=None) -> Dict[str, Any]:
        """
        暂停排期，下次配送日期保持不变

        Args:
            kind: 排期类型（recurring_order / subscription）
            record_id: 周期订单ID或订阅ID
            user_id: 操作者ID，为空表示内部调用
            paused_until: 可选的暂停截止时间（仅记录，不会自动恢复）
        """
        kind = self.resolve_kind(kind)
        until = coerce_datetime(paused_until)

        _, state = self._transition(
            kind, record_id, user_id,
            lambda row, current: transitions.apply_pause(current, until)
        )

        logger.info(f"{kind.name} {record_id} 已暂停，截止: {_iso(until)}")
        result = state_to_dict(kind, record_id, state)
        result["message"] = f"{KIND_LABELS[kind.name]}已暂停"
        return result

    def resume_schedule(self, kind: Union[str, ScheduleKind], record_id: int,
                        user_id: Optional[int] = None, now: datetime = None) -> Dict[str, Any]:
        """
        恢复排期，按当前时间重新计算下次配送日期

        周期订单的规则已无后续日期时进入 ended；订阅按配送时段的星期计算
        """
        kind = self.resolve_kind(kind)
        now = now or datetime.now()

        def resume(row, current):
            transitions.check_transition('resume', current)
            if kind == RECURRING_ORDER:
                rule = RecurrenceRule.from_storage(row['recurrence'])
                next_delivery = compute_next_delivery(rule, now, self.config['search_horizon_days'])
                return transitions.apply_resume(current, next_delivery, exhausted_status=kind.terminal_status)

            next_delivery = resolve_weekday_slot(
                row['delivery_day'], now, allow_same_day=False,
                fallback=self.config.get('unknown_weekday_fallback')
            )
            return transitions.apply_resume(current, next_delivery)

        _, state = self._transition(kind, record_id, user_id, resume)

        logger.info(f"{kind.name} {record_id} 已恢复，状态: {state.status}，下次配送: {_iso(state.next_delivery)}")
        result = state_to_dict(kind, record_id, state)
        if state.status == kind.terminal_status:
            result["message"] = f"{KIND_LABELS[kind.name]}已无后续配送日期，排期结束"
        else:
            result["message"] = f"{KIND_LABELS[kind.name]}已恢复"
        return result

    def skip_schedule(self, kind: Union[str, ScheduleKind], record_id: int,
                      user_id: Optional[int] = None) -> Dict[str, Any]:
        """跳过下一次配送，下次配送日期顺延一个周期"""
        kind = self.resolve_kind(kind)
        interval = self.config['skip_interval_days']

        _, state = self._transition(
            kind, record_id, user_id,
            lambda row, current: transitions.apply_skip(current, interval)
        )

        logger.info(f"{kind.name} {record_id} 跳过一次配送，下次配送: {_iso(state.next_delivery)}")
        result = state_to_dict(kind, record_id, state)
        result["message"] = "已跳过下一次配送"
        return result

    def cancel_schedule(self, kind: Union[str, ScheduleKind], record_id: int,
                        user_id: Optional[int] = None, reason: str = None,
                        now: datetime = None) -> Dict[str, Any]:
        """
        取消排期，进入终止状态

        订阅取消提交后再扣减套餐订阅人数；扣减失败时取消仍然有效

        Raises:
            PartialCancellationError: 取消已提交但套餐订阅人数扣减失败
        """
        kind = self.resolve_kind(kind)
        cancelled_at = now or datetime.now()

        row, state = self._transition(
            kind, record_id, user_id,
            lambda row, current: transitions.apply_cancel(
                current, kind.terminal_status, cancelled_at, reason
            )
        )

        logger.info(f"{kind.name} {record_id} 已取消，原因: {reason}")
        result = state_to_dict(kind, record_id, state)
        result["message"] = f"{KIND_LABELS[kind.name]}已取消"

        if kind == SUBSCRIPTION:
            try:
                self.plan_registry.decrement_subscriber_count(row['plan_id'])
            except Exception as e:
                logger.error(f"订阅 {record_id} 已取消，但套餐 {row['plan_id']} 订阅人数扣减失败: {str(e)}")
                raise PartialCancellationError(result, e) from e

        return result

    def apply_action(self, kind: Union[str, ScheduleKind], record_id: int, action: str,
                     user_id: Optional[int] = None, **options) -> Dict[str, Any]:
        """
        按操作名执行状态迁移（接口层使用）

        周期订单额外接受 end 作为 cancel 的别名
        """
        kind = self.resolve_kind(kind)
        if action == 'end' and kind == RECURRING_ORDER:
            action = 'cancel'

        if action == 'pause':
            return self.pause_schedule(kind, record_id, user_id, paused_until=options.get('paused_until'))
        if action == 'resume':
            return self.resume_schedule(kind, record_id, user_id, now=options.get('now'))
        if action == 'skip':
            return self.skip_schedule(kind, record_id, user_id)
        if action == 'cancel':
            return self.cancel_schedule(kind, record_id, user_id, reason=options.get('reason'),
                                        now=options.get('now'))

        raise ValueError(f"不支持的操作: {action}")
