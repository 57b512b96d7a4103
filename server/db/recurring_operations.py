# 周期订单生成、重复规则修改与订阅创建

import json
import logging
from datetime import datetime
from typing import Dict, Any, Optional, Union

from pydantic import ValidationError

from scheduling.calculator import compute_next_delivery, resolve_weekday_slot, validate_recurrence_pattern
from scheduling.errors import (
    ConcurrentModificationError, InvalidRecurrenceError, InvalidTransitionError,
    OwnershipError, RecordNotFoundError
)
from scheduling.models import RecurrenceRule, DeliverySlot
from scheduling.weekdays import WEEKDAY_NAMES, weekday_index
from utils.config import DEFAULT_SCHEDULING_CONFIG
from utils.validators import coerce_date, validate_payment_method
from .manager import DatabaseManager
from .supporting_operations import PlanRegistry, SupportingOperations, generate_order_number

logger = logging.getLogger(__name__)

# 未完成结账的来源订单不能生成周期订单：已取消/已退款，或尚未付款
UNCHECKED_OUT_STATUSES = ('cancelled', 'refunded')
CHECKED_OUT_PAYMENT_STATUS = 'paid'


def _validation_messages(error: ValidationError):
    return [f"{'.'.join(str(p) for p in err['loc']) or 'rule'}: {err['msg']}" for err in error.errors()]


def parse_recurrence(rule: Union[RecurrenceRule, Dict[str, Any]]) -> RecurrenceRule:
    """
    将请求中的重复规则转换为 RecurrenceRule

    Raises:
        InvalidRecurrenceError: 字段格式或取值错误
    """
    if isinstance(rule, RecurrenceRule):
        return rule
    try:
        return RecurrenceRule.model_validate(rule or {})
    except ValidationError as e:
        raise InvalidRecurrenceError(_validation_messages(e)) from e


class RecurringOperations:
    """
    周期订单与订阅创建操作类
    """
    def __init__(self, db_manager: DatabaseManager, plan_registry: PlanRegistry = None,
                 scheduling_config: Dict[str, Any] = None):
        self.db = db_manager
        self.plan_registry = plan_registry or PlanRegistry(db_manager)
        self.supporting = SupportingOperations(db_manager)
        self.config = dict(DEFAULT_SCHEDULING_CONFIG)
        self.config.update(scheduling_config or {})

    def _next_delivery(self, rule: RecurrenceRule, now: datetime, next_delivery_at=None):
        if next_delivery_at:
            return coerce_date(next_delivery_at)
        return compute_next_delivery(rule, now, self.config['search_horizon_days'])

    def materialize_recurring_order(self, source_order_id: int, caller_id: int,
                                    rule: Union[RecurrenceRule, Dict[str, Any]],
                                    initial_status: str = 'active', next_delivery_at=None,
                                    now: datetime = None) -> Dict[str, Any]:
        """
        以一次性订单为模板生成周期订单

        Args:
            source_order_id: 来源订单ID（必须已完成结账：已付款且未取消/退款）
            caller_id: 调用者ID，必须是来源订单的所有者
            rule: 重复规则
            initial_status: 初始排期状态（active / paused）
            next_delivery_at: 指定的首次配送日期，为空时按规则计算
            now: 参考时间

        Returns:
            新周期订单信息

        Raises:
            RecordNotFoundError: 来源订单不存在
            OwnershipError: 来源订单不属于调用者
            InvalidRecurrenceError: 重复规则无效
        """
        if initial_status not in ('active', 'paused'):
            raise ValueError(f"初始排期状态只能是 active 或 paused，当前: {initial_status}")

        now = now or datetime.now()
        recurrence = parse_recurrence(rule)
        errors = validate_recurrence_pattern(recurrence, now)
        if errors:
            raise InvalidRecurrenceError(errors)

        def materialize_operation():
            if not self.supporting.is_owned_by(source_order_id, caller_id):
                raise OwnershipError("只能以自己的订单创建周期订单")

            source = self.db.conn.execute(
                "SELECT * FROM orders WHERE order_id = ?", [source_order_id]
            ).fetchone()
            if source['status'] in UNCHECKED_OUT_STATUSES:
                raise ValueError(f"来源订单状态为 {source['status']}，无法创建周期订单")
            if source['payment_status'] != CHECKED_OUT_PAYMENT_STATUS:
                raise ValueError(f"来源订单尚未完成付款（{source['payment_status']}），无法创建周期订单")

            next_delivery = self._next_delivery(recurrence, now, next_delivery_at)
            schedule_status = initial_status
            if schedule_status == 'active' and next_delivery is None:
                schedule_status = 'ended'

            order_id = self.db.conn.execute(
                "SELECT COALESCE(MAX(order_id), 0) + 1 FROM orders"
            ).fetchone()[0]
            order_number = generate_order_number()

            self.db.conn.execute("""
                INSERT INTO orders (order_id, order_number, customer_id, bag_name, items,
                                    subtotal_cents, tax_cents, shipping_cents, discount_cents,
                                    total_cents, status, payment_method, payment_status,
                                    shipping_address, billing_address, notes,
                                    is_recurring, source_order_id, recurrence, next_delivery_at,
                                    schedule_status, skipped_dates, skipped_deliveries, version,
                                    created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, 'pending', ?, ?, ?,
                        1, ?, ?, ?, ?, '[]', 0, 0, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            """, [order_id, order_number, source['customer_id'], source['bag_name'], source['items'],
                  source['subtotal_cents'], source['tax_cents'], source['shipping_cents'],
                  source['discount_cents'], source['total_cents'], source['payment_method'],
                  source['shipping_address'], source['billing_address'], source['notes'],
                  source_order_id, recurrence.to_storage(),
                  next_delivery.isoformat() if next_delivery else None, schedule_status])

            return {
                "order_id": order_id,
                "order_number": order_number,
                "source_order_id": source_order_id,
                "customer_id": source['customer_id'],
                "total_cents": source['total_cents'],
                "schedule_status": schedule_status,
                "next_delivery_at": next_delivery.isoformat() if next_delivery else None,
                "recurrence": recurrence.model_dump(mode='json'),
                "message": "周期订单创建成功"
            }

        result = self.db.execute_transaction([materialize_operation])[0]
        logger.info(f"由订单 {source_order_id} 生成周期订单 {result['order_number']}，"
                    f"状态: {result['schedule_status']}，下次配送: {result['next_delivery_at']}")
        return result

    def update_recurrence(self, order_id: int, user_id: Optional[int], rule_patch: Dict[str, Any],
                          next_delivery_at=None, now: datetime = None) -> Dict[str, Any]:
        """
        修改周期订单的重复规则（部分字段合并），并重新计算下次配送日期

        已结束的周期订单不能修改；新规则没有后续日期时，进行中的排期结束
        """
        now = now or datetime.now()

        def update_operation():
            row = self.db.conn.execute(
                "SELECT * FROM orders WHERE order_id = ? AND is_recurring = 1", [order_id]
            ).fetchone()
            if not row:
                raise RecordNotFoundError(f"周期订单ID {order_id} 不存在")
            if user_id is not None and row['customer_id'] != user_id and not self.supporting.is_admin(user_id):
                raise OwnershipError("无权修改该周期订单")
            if row['schedule_status'] == 'ended':
                raise InvalidTransitionError('update', 'ended', "周期订单已结束，无法修改重复规则")

            current = RecurrenceRule.from_storage(row['recurrence']) or RecurrenceRule()
            try:
                recurrence = current.merged(rule_patch or {})
            except ValidationError as e:
                raise InvalidRecurrenceError(_validation_messages(e)) from e

            errors = validate_recurrence_pattern(recurrence, now)
            if errors:
                raise InvalidRecurrenceError(errors)

            next_delivery = self._next_delivery(recurrence, now, next_delivery_at)
            schedule_status = row['schedule_status']
            if schedule_status == 'active' and next_delivery is None:
                schedule_status = 'ended'

            cursor = self.db.conn.execute("""
                UPDATE orders
                SET recurrence = ?, next_delivery_at = ?, schedule_status = ?,
                    version = version + 1, updated_at = CURRENT_TIMESTAMP
                WHERE order_id = ? AND version = ?
            """, [recurrence.to_storage(), next_delivery.isoformat() if next_delivery else None,
                  schedule_status, order_id, row['version']])
            if cursor.rowcount == 0:
                raise ConcurrentModificationError('recurring_order', order_id, row['version'])

            return {
                "order_id": order_id,
                "schedule_status": schedule_status,
                "next_delivery_at": next_delivery.isoformat() if next_delivery else None,
                "recurrence": recurrence.model_dump(mode='json'),
                "version": row['version'] + 1,
                "message": "重复规则已更新"
            }

        result = self.db.execute_transaction([update_operation])[0]
        logger.info(f"周期订单 {order_id} 重复规则已更新，下次配送: {result['next_delivery_at']}")
        return result

    def create_subscription(self, user_id: int, plan_id: int,
                            delivery_slot: Union[DeliverySlot, Dict[str, Any]],
                            delivery_address: Dict[str, Any] = None, payment_method: str = 'cod',
                            start_date=None, now: datetime = None) -> Dict[str, Any]:
        """
        创建订阅

        首次配送日期为开始日期当天或之后最近的配送星期，并增加套餐订阅人数

        Raises:
            RecordNotFoundError: 套餐不存在
            InvalidWeekdayError: 配送星期无法识别
            ValueError: 套餐未启用、已满员或已有进行中的同套餐订阅
        """
        if not validate_payment_method(payment_method):
            raise ValueError(f"不支持的支付方式: {payment_method}")

        fallback = self.config.get('unknown_weekday_fallback')
        if not isinstance(delivery_slot, DeliverySlot):
            slot = dict(delivery_slot)
            # 配置了回退星期时，无法识别的名称在这里替换
            slot['day'] = WEEKDAY_NAMES[weekday_index(slot.get('day'), fallback=fallback)]
            delivery_slot = DeliverySlot.model_validate(slot)

        start = coerce_date(start_date) if start_date else (now or datetime.now()).date()
        next_delivery = resolve_weekday_slot(delivery_slot.day, start, allow_same_day=True)

        def create_subscription_operation():
            plan = self.plan_registry.get_plan(plan_id)
            if not plan['is_active']:
                raise ValueError(f"套餐 '{plan['name']}' 未启用")
            if plan['max_subscribers'] is not None and plan['current_subscribers'] >= plan['max_subscribers']:
                raise ValueError(f"套餐 '{plan['name']}' 订阅人数已满")

            existing = self.db.conn.execute("""
                SELECT subscription_id FROM subscriptions
                WHERE user_id = ? AND plan_id = ? AND status IN ('active', 'pending')
            """, [user_id, plan_id]).fetchone()
            if existing:
                raise ValueError("已存在该套餐的进行中订阅")

            subscription_id = self.db.conn.execute(
                "SELECT COALESCE(MAX(subscription_id), 0) + 1 FROM subscriptions"
            ).fetchone()[0]

            self.db.conn.execute("""
                INSERT INTO subscriptions (subscription_id, user_id, plan_id, status, start_date,
                                           next_delivery_date, delivery_day, delivery_time_slot,
                                           delivery_address, payment_method, total_deliveries,
                                           skipped_deliveries, skipped_dates, version,
                                           created_at, updated_at)
                VALUES (?, ?, ?, 'active', ?, ?, ?, ?, ?, ?, 0, 0, '[]', 0,
                        CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            """, [subscription_id, user_id, plan_id, start.isoformat(), next_delivery.isoformat(),
                  delivery_slot.day, delivery_slot.time_slot,
                  json.dumps(delivery_address, ensure_ascii=False) if delivery_address else None,
                  payment_method])

            subscribers = self.plan_registry.increment_subscriber_count(plan_id)

            return {
                "subscription_id": subscription_id,
                "plan_id": plan_id,
                "status": "active",
                "start_date": start.isoformat(),
                "next_delivery_date": next_delivery.isoformat(),
                "delivery_slot": delivery_slot.model_dump(),
                "plan_subscribers": subscribers,
                "message": "订阅创建成功"
            }

        result = self.db.execute_transaction([create_subscription_operation])[0]
        logger.info(f"用户 {user_id} 订阅套餐 {plan_id}，首次配送: {result['next_delivery_date']}")
        return result
