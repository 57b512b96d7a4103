# 周期订单生成与订阅创建测试

import json
import re
import pytest
from datetime import datetime

from db.recurring_operations import RecurringOperations
from scheduling.errors import (
    InvalidRecurrenceError, InvalidTransitionError, InvalidWeekdayError,
    OwnershipError, RecordNotFoundError
)

MONDAY = datetime(2024, 1, 1, 10, 0)
FRIDAY = datetime(2024, 3, 1, 9, 0)


def count_orders(test_db):
    return test_db.conn.execute("SELECT COUNT(*) FROM orders").fetchone()[0]


class TestMaterializeRecurringOrder:
    """以一次性订单生成周期订单"""

    def test_materialize_copies_source(self, recurring_ops, sample_order, sample_customer, test_db):
        """复制商品、金额与地址，排期按规则计算"""
        result = recurring_ops.materialize_recurring_order(
            source_order_id=sample_order,
            caller_id=sample_customer,
            rule={"days_of_week": [6], "notes": "放门口"},
            now=MONDAY
        )

        assert re.match(r'^REC-\d{13}-[0-9a-z]{9}$', result['order_number'])
        assert result['schedule_status'] == 'active'
        assert result['next_delivery_at'] == '2024-01-06'
        assert "创建成功" in result['message']

        source = test_db.conn.execute("SELECT * FROM orders WHERE order_id = ?", [sample_order]).fetchone()
        created = test_db.conn.execute("SELECT * FROM orders WHERE order_id = ?", [result['order_id']]).fetchone()

        assert created['is_recurring'] == 1
        assert created['source_order_id'] == sample_order
        assert created['status'] == 'pending'
        assert json.loads(created['items']) == json.loads(source['items'])
        assert created['total_cents'] == source['total_cents'] == 2999 + 1600 + 500
        assert created['shipping_address'] == source['shipping_address']
        assert json.loads(created['recurrence'])['notes'] == "放门口"

    def test_other_customer_rejected_nothing_created(self, recurring_ops, sample_order, other_customer, test_db):
        """非所有者生成失败且不产生记录"""
        before = count_orders(test_db)

        with pytest.raises(OwnershipError):
            recurring_ops.materialize_recurring_order(sample_order, other_customer, {"days_of_week": [6]}, now=MONDAY)

        assert count_orders(test_db) == before

    def test_missing_source(self, recurring_ops, sample_customer):
        """来源订单不存在"""
        with pytest.raises(RecordNotFoundError):
            recurring_ops.materialize_recurring_order(9999, sample_customer, {"days_of_week": [6]}, now=MONDAY)

    def test_cancelled_source_rejected(self, recurring_ops, support_ops, sample_customer):
        """已取消的订单不能作为来源"""
        order_id = support_ops.record_order(
            customer_id=sample_customer,
            items=[{"name": "水果箱", "quantity": 1, "unit_price_cents": 1999}],
            payment_method="cod",
            status="cancelled"
        )['order_id']

        with pytest.raises(ValueError):
            recurring_ops.materialize_recurring_order(order_id, sample_customer, {"days_of_week": [6]}, now=MONDAY)

    def test_unpaid_source_rejected(self, recurring_ops, sample_order, sample_customer, test_db):
        """未付款的订单不能作为来源"""
        test_db.execute_single(
            "UPDATE orders SET payment_status = 'pending' WHERE order_id = ?", [sample_order]
        )
        before = count_orders(test_db)

        with pytest.raises(ValueError, match="尚未完成付款"):
            recurring_ops.materialize_recurring_order(sample_order, sample_customer, {"days_of_week": [6]}, now=MONDAY)

        assert count_orders(test_db) == before

    def test_far_future_start_stays_active(self, recurring_ops, schedule_ops, sample_order, sample_customer):
        """开始日期超过一年后仍能排期，且可以正常暂停恢复"""
        result = recurring_ops.materialize_recurring_order(
            sample_order, sample_customer, {"days_of_week": [6], "start_date": "2025-03-01"}, now=MONDAY
        )

        assert result['schedule_status'] == 'active'
        assert result['next_delivery_at'] == '2025-03-01'

        schedule_ops.pause_schedule('recurring_order', result['order_id'])
        resumed = schedule_ops.resume_schedule('recurring_order', result['order_id'], now=MONDAY)
        assert resumed['status'] == 'active'
        assert resumed['next_delivery'] == '2025-03-01'

    @pytest.mark.parametrize("rule", [
        {},
        {"notes": "没有重复方式"},
        {"days_of_week": [9]},
        {"include_dates": ["2024/01/05"]},
        {"days_of_week": [6], "start_date": "2024-03-01", "end_date": "2024-02-01"},
        {"selected_dates": ["2023-12-25"]},
    ])
    def test_invalid_rule_rejected(self, recurring_ops, sample_order, sample_customer, test_db, rule):
        """无效重复规则被拒绝"""
        before = count_orders(test_db)

        with pytest.raises(InvalidRecurrenceError) as exc_info:
            recurring_ops.materialize_recurring_order(sample_order, sample_customer, rule, now=MONDAY)

        assert exc_info.value.errors
        assert count_orders(test_db) == before

    def test_paused_initial_status(self, recurring_ops, sample_order, sample_customer):
        """初始状态为暂停"""
        result = recurring_ops.materialize_recurring_order(
            sample_order, sample_customer, {"days_of_week": [2]}, initial_status='paused', now=MONDAY
        )
        assert result['schedule_status'] == 'paused'
        assert result['next_delivery_at'] == '2024-01-02'

    def test_invalid_initial_status(self, recurring_ops, sample_order, sample_customer):
        """初始状态只能是 active 或 paused"""
        with pytest.raises(ValueError):
            recurring_ops.materialize_recurring_order(
                sample_order, sample_customer, {"days_of_week": [6]}, initial_status='ended', now=MONDAY
            )

    def test_explicit_first_delivery(self, recurring_ops, sample_order, sample_customer):
        """使用指定的首次配送日期"""
        result = recurring_ops.materialize_recurring_order(
            sample_order, sample_customer, {"days_of_week": [6]},
            next_delivery_at="2024-01-20T00:00:00.000Z", now=MONDAY
        )
        assert result['next_delivery_at'] == '2024-01-20'

    def test_rule_without_future_date_ends(self, recurring_ops, sample_order, sample_customer):
        """规则在结束日期前没有配送日时直接结束"""
        result = recurring_ops.materialize_recurring_order(
            sample_order, sample_customer, {"days_of_week": [6], "end_date": "2024-01-03"}, now=MONDAY
        )
        assert result['schedule_status'] == 'ended'
        assert result['next_delivery_at'] is None


class TestUpdateRecurrence:
    """修改重复规则"""

    def test_update_days_recomputes(self, recurring_ops, recurring_order, sample_customer):
        """修改星期后重新计算"""
        result = recurring_ops.update_recurrence(
            recurring_order, sample_customer, {"days_of_week": [3]}, now=MONDAY
        )
        assert result['next_delivery_at'] == '2024-01-03'
        assert result['recurrence']['days_of_week'] == [3]
        assert result['version'] == 1

    def test_patch_keeps_other_fields(self, recurring_ops, recurring_order, sample_customer):
        """未提供的字段保持不变"""
        recurring_ops.update_recurrence(
            recurring_order, sample_customer, {"exclude_dates": ["2024-01-06"]}, now=MONDAY
        )
        result = recurring_ops.update_recurrence(
            recurring_order, sample_customer, {"notes": "周末送"}, now=MONDAY
        )
        assert result['recurrence']['days_of_week'] == [6]
        assert result['recurrence']['exclude_dates'] == ['2024-01-06']
        assert result['next_delivery_at'] == '2024-01-13'

    def test_update_ended_rejected(self, recurring_ops, schedule_ops, recurring_order, sample_customer):
        """已结束的周期订单不能修改"""
        schedule_ops.cancel_schedule('recurring_order', recurring_order)
        with pytest.raises(InvalidTransitionError):
            recurring_ops.update_recurrence(recurring_order, sample_customer, {"days_of_week": [1]}, now=MONDAY)

    def test_update_by_other_customer_rejected(self, recurring_ops, recurring_order, other_customer):
        """非所有者不能修改"""
        with pytest.raises(OwnershipError):
            recurring_ops.update_recurrence(recurring_order, other_customer, {"days_of_week": [1]}, now=MONDAY)

    def test_update_invalid_rule(self, recurring_ops, recurring_order, sample_customer):
        """合并后的规则无效"""
        with pytest.raises(InvalidRecurrenceError):
            recurring_ops.update_recurrence(
                recurring_order, sample_customer, {"start_date": "2025-01-01", "end_date": "2024-01-01"},
                now=MONDAY
            )


class TestCreateSubscription:
    """创建订阅"""

    def test_create_subscription(self, recurring_ops, sample_customer, sample_plan, plan_registry):
        """首次配送为开始日之后最近的周六"""
        result = recurring_ops.create_subscription(
            sample_customer, sample_plan, {"day": "Saturday", "time_slot": "9am-12pm"},
            delivery_address={"line1": "1 Market St"}, now=FRIDAY
        )

        assert result['status'] == 'active'
        assert result['start_date'] == '2024-03-01'
        assert result['next_delivery_date'] == '2024-03-02'
        assert result['delivery_slot'] == {"day": "saturday", "time_slot": "9am-12pm"}
        assert plan_registry.get_plan(sample_plan)['current_subscribers'] == 1

    def test_start_day_counts(self, recurring_ops, sample_customer, sample_plan):
        """开始日期当天就是配送日时当天配送"""
        result = recurring_ops.create_subscription(
            sample_customer, sample_plan, {"day": "sat", "time_slot": "9am-12pm"}, start_date="2024-03-02"
        )
        assert result['next_delivery_date'] == '2024-03-02'

    def test_duplicate_subscription_rejected(self, recurring_ops, subscription, sample_customer, sample_plan):
        """同一套餐不能重复订阅"""
        with pytest.raises(ValueError):
            recurring_ops.create_subscription(
                sample_customer, sample_plan, {"day": "sunday", "time_slot": "2pm-5pm"}, now=FRIDAY
            )

    def test_resubscribe_after_cancel(self, recurring_ops, schedule_ops, subscription, sample_customer, sample_plan):
        """取消后可以重新订阅"""
        schedule_ops.cancel_schedule('subscription', subscription)
        result = recurring_ops.create_subscription(
            sample_customer, sample_plan, {"day": "sunday", "time_slot": "2pm-5pm"}, now=FRIDAY
        )
        assert result['next_delivery_date'] == '2024-03-03'

    def test_plan_full(self, recurring_ops, support_ops, sample_customer, other_customer, sample_plan):
        """套餐人数已满"""
        slot = {"day": "saturday", "time_slot": "9am-12pm"}
        recurring_ops.create_subscription(sample_customer, sample_plan, slot, now=FRIDAY)
        recurring_ops.create_subscription(other_customer, sample_plan, slot, now=FRIDAY)
        third = support_ops.register_customer("第三位客户")['user_id']

        with pytest.raises(ValueError, match="已满"):
            recurring_ops.create_subscription(third, sample_plan, slot, now=FRIDAY)

    def test_inactive_plan(self, recurring_ops, support_ops, sample_customer):
        """未启用的套餐"""
        plan_id = support_ops.create_plan("停售套餐", "retired", 1999, is_active=False)['plan_id']
        with pytest.raises(ValueError, match="未启用"):
            recurring_ops.create_subscription(
                sample_customer, plan_id, {"day": "saturday", "time_slot": "9am-12pm"}, now=FRIDAY
            )

    def test_missing_plan(self, recurring_ops, sample_customer):
        """套餐不存在"""
        with pytest.raises(RecordNotFoundError):
            recurring_ops.create_subscription(
                sample_customer, 9999, {"day": "saturday", "time_slot": "9am-12pm"}, now=FRIDAY
            )

    def test_unknown_weekday_rejected(self, recurring_ops, sample_customer, sample_plan, plan_registry):
        """无法识别的配送星期"""
        with pytest.raises(InvalidWeekdayError):
            recurring_ops.create_subscription(
                sample_customer, sample_plan, {"day": "someday", "time_slot": "9am-12pm"}, now=FRIDAY
            )
        assert plan_registry.get_plan(sample_plan)['current_subscribers'] == 0

    def test_unknown_weekday_with_fallback(self, test_db, plan_registry, sample_customer, sample_plan):
        """配置了回退星期"""
        recurring_ops = RecurringOperations(
            test_db, plan_registry, scheduling_config={"unknown_weekday_fallback": "saturday"}
        )
        result = recurring_ops.create_subscription(
            sample_customer, sample_plan, {"day": "someday", "time_slot": "9am-12pm"}, now=FRIDAY
        )
        assert result['delivery_slot']['day'] == 'saturday'
        assert result['next_delivery_date'] == '2024-03-02'

    def test_unsupported_payment_method(self, recurring_ops, sample_customer, sample_plan):
        """不支持的付款方式"""
        with pytest.raises(ValueError):
            recurring_ops.create_subscription(
                sample_customer, sample_plan, {"day": "saturday", "time_slot": "9am-12pm"},
                payment_method="bitcoin", now=FRIDAY
            )
