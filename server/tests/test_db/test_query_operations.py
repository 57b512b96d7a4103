# 查询操作测试

import pytest
from datetime import datetime

from scheduling.errors import OwnershipError, RecordNotFoundError

MONDAY = datetime(2024, 1, 1, 10, 0)
FRIDAY = datetime(2024, 3, 1, 9, 0)
ORDER_TOTAL = 2999 + 2 * 800 + 500


class TestFindDueSchedules:
    """到期排期查询"""

    def test_window_includes_due_only(self, query_ops, recurring_order, subscription):
        """窗口内的周期订单被返回，窗口外的订阅不返回"""
        result = query_ops.find_due_schedules(within_days=7, now=MONDAY)

        assert result['success'] is True
        assert result['data']['until'] == '2024-01-08'
        assert [o['order_id'] for o in result['data']['recurring_orders']] == [recurring_order]
        assert result['data']['subscriptions'] == []
        assert result['data']['total_count'] == 1

    def test_overdue_included(self, query_ops, recurring_order, subscription):
        """逾期未派单的排期也包含在内"""
        result = query_ops.find_due_schedules(within_days=1, now=FRIDAY)

        assert len(result['data']['recurring_orders']) == 1
        subscriptions = result['data']['subscriptions']
        assert [s['subscription_id'] for s in subscriptions] == [subscription]
        assert subscriptions[0]['plan']['slug'] == 'weekly-veg-box'
        assert subscriptions[0]['delivery_slot'] == {"day": "saturday", "time_slot": "9am-12pm"}

    def test_paused_excluded(self, query_ops, schedule_ops, recurring_order, subscription):
        """暂停的排期不派单"""
        schedule_ops.pause_schedule('recurring_order', recurring_order)
        schedule_ops.pause_schedule('subscription', subscription)

        result = query_ops.find_due_schedules(within_days=30, now=FRIDAY)
        assert result['data']['total_count'] == 0

    def test_default_window_from_config(self, query_ops, recurring_order):
        """未指定窗口时使用配置值"""
        result = query_ops.find_due_schedules(now=MONDAY)
        assert result['data']['until'] == '2024-01-08'

    def test_negative_window_rejected(self, query_ops):
        """负数窗口"""
        with pytest.raises(ValueError):
            query_ops.find_due_schedules(within_days=-1)


class TestListRecurringOrders:
    """周期订单列表"""

    def _create(self, recurring_ops, sample_order, sample_customer, days):
        return recurring_ops.materialize_recurring_order(
            sample_order, sample_customer, {"days_of_week": days}, now=MONDAY
        )['order_id']

    def test_list_only_recurring(self, query_ops, recurring_order, sample_order, sample_customer):
        """一次性订单不出现在列表中"""
        result = query_ops.list_recurring_orders(customer_id=sample_customer)

        orders = result['data']['orders']
        assert [o['order_id'] for o in orders] == [recurring_order]
        assert orders[0]['source_order_id'] == sample_order
        assert orders[0]['status_text'] == "进行中"
        assert orders[0]['recurrence']['days_of_week'] == [6]

    def test_filter_by_customer(self, query_ops, recurring_order, other_customer):
        """按客户过滤"""
        result = query_ops.list_recurring_orders(customer_id=other_customer)
        assert result['data']['orders'] == []
        assert result['data']['pagination']['total_count'] == 0

    def test_filter_by_status(self, query_ops, schedule_ops, recurring_ops, recurring_order,
                              sample_order, sample_customer):
        """按排期状态过滤"""
        second = self._create(recurring_ops, sample_order, sample_customer, [3])
        schedule_ops.pause_schedule('recurring_order', second)

        paused = query_ops.list_recurring_orders(status='paused')['data']['orders']
        assert [o['order_id'] for o in paused] == [second]

    def test_sort_by_next_delivery(self, query_ops, recurring_ops, recurring_order, sample_order, sample_customer):
        """按下次配送日期升序"""
        wednesday = self._create(recurring_ops, sample_order, sample_customer, [3])

        orders = query_ops.list_recurring_orders(sort_by='next_delivery_at', sort_order='asc')['data']['orders']
        assert [o['order_id'] for o in orders] == [wednesday, recurring_order]

    def test_pagination(self, query_ops, recurring_ops, sample_order, sample_customer):
        """分页信息"""
        for days in ([1], [2], [3]):
            self._create(recurring_ops, sample_order, sample_customer, days)

        result = query_ops.list_recurring_orders(offset=2, limit=2)
        pagination = result['data']['pagination']

        assert len(result['data']['orders']) == 1
        assert pagination['total_count'] == 3
        assert pagination['current_page'] == 2
        assert pagination['total_pages'] == 2
        assert pagination['has_next'] is False
        assert pagination['has_prev'] is True

    @pytest.mark.parametrize("kwargs", [
        {"offset": -1},
        {"limit": 0},
        {"limit": 101},
        {"sort_by": "order_id; DROP TABLE orders"},
        {"sort_order": "sideways"},
        {"status": "archived"},
    ])
    def test_invalid_arguments(self, query_ops, kwargs):
        """非法查询参数"""
        with pytest.raises(ValueError):
            query_ops.list_recurring_orders(**kwargs)


class TestGetRecurringOrder:
    """周期订单详情"""

    def test_detail_with_upcoming(self, query_ops, recurring_order, sample_customer):
        """进行中的订单附带后续配送预览"""
        result = query_ops.get_recurring_order(recurring_order, user_id=sample_customer, preview_count=3, now=MONDAY)

        order = result['data']
        assert order['next_delivery_at'] == '2024-01-06'
        assert order['total_cents'] == ORDER_TOTAL
        assert order['upcoming_deliveries'] == ['2024-01-06', '2024-01-13', '2024-01-20']

    def test_paused_has_no_preview(self, query_ops, schedule_ops, recurring_order):
        """暂停的订单没有预览"""
        schedule_ops.pause_schedule('recurring_order', recurring_order)
        result = query_ops.get_recurring_order(recurring_order, now=MONDAY)
        assert result['data']['upcoming_deliveries'] == []

    def test_other_customer_rejected(self, query_ops, recurring_order, other_customer):
        """非所有者不能查看"""
        with pytest.raises(OwnershipError):
            query_ops.get_recurring_order(recurring_order, user_id=other_customer)

    def test_admin_can_view(self, query_ops, recurring_order, sample_admin):
        """管理员可以查看"""
        result = query_ops.get_recurring_order(recurring_order, user_id=sample_admin, now=MONDAY)
        assert result['data']['order_id'] == recurring_order

    def test_one_time_order_not_found(self, query_ops, sample_order):
        """一次性订单不作为周期订单返回"""
        with pytest.raises(RecordNotFoundError):
            query_ops.get_recurring_order(sample_order)


class TestSubscriptionQueries:
    """订阅查询"""

    def test_list_includes_cancelled(self, query_ops, schedule_ops, subscription, sample_customer):
        """列表包含已取消的订阅"""
        schedule_ops.cancel_schedule('subscription', subscription, reason="搬家")

        result = query_ops.list_user_subscriptions(sample_customer)
        subscriptions = result['data']['subscriptions']

        assert result['data']['total_count'] == 1
        assert subscriptions[0]['status'] == 'cancelled'
        assert subscriptions[0]['cancel_reason'] == "搬家"
        assert subscriptions[0]['plan']['name'] == "每周蔬菜箱"

    def test_list_filter_status(self, query_ops, subscription, sample_customer):
        """按状态过滤"""
        assert query_ops.list_user_subscriptions(sample_customer, status='paused')['data']['total_count'] == 0
        assert query_ops.list_user_subscriptions(sample_customer, status='active')['data']['total_count'] == 1

    def test_list_invalid_status(self, query_ops, sample_customer):
        """无效状态"""
        with pytest.raises(ValueError):
            query_ops.list_user_subscriptions(sample_customer, status='ended')

    def test_get_subscription(self, query_ops, subscription, sample_customer):
        """订阅详情"""
        result = query_ops.get_subscription(subscription, user_id=sample_customer)
        assert result['data']['next_delivery_date'] == '2024-03-02'
        assert result['data']['plan']['price_cents'] == 2999

    def test_get_subscription_other_customer(self, query_ops, subscription, other_customer):
        """非所有者不能查看"""
        with pytest.raises(OwnershipError):
            query_ops.get_subscription(subscription, user_id=other_customer)

    def test_get_missing_subscription(self, query_ops):
        """订阅不存在"""
        with pytest.raises(RecordNotFoundError):
            query_ops.get_subscription(9999)


class TestRecurringOrderStatistics:
    """周期订单统计"""

    def test_empty_statistics(self, query_ops):
        """没有周期订单"""
        data = query_ops.recurring_order_statistics(now=MONDAY)['data']
        assert data['total'] == 0
        assert data['by_status'] == {"active": 0, "paused": 0, "ended": 0}
        assert data['avg_value_cents'] == 0
        assert data['upcoming_deliveries'] == []

    def test_statistics_by_status(self, query_ops, schedule_ops, recurring_ops, recurring_order,
                                  sample_order, sample_customer):
        """按状态统计数量与金额"""
        paused = recurring_ops.materialize_recurring_order(
            sample_order, sample_customer, {"days_of_week": [2]}, now=MONDAY
        )['order_id']
        ended = recurring_ops.materialize_recurring_order(
            sample_order, sample_customer, {"days_of_week": [4]}, now=MONDAY
        )['order_id']
        schedule_ops.pause_schedule('recurring_order', paused)
        schedule_ops.cancel_schedule('recurring_order', ended)

        data = query_ops.recurring_order_statistics(now=MONDAY)['data']

        assert data['total'] == 3
        assert data['by_status'] == {"active": 1, "paused": 1, "ended": 1}
        assert data['total_value_cents'] == 3 * ORDER_TOTAL
        assert data['active_value_cents'] == ORDER_TOTAL
        assert data['avg_value_cents'] == ORDER_TOTAL
        assert [d['order_id'] for d in data['upcoming_deliveries']] == [recurring_order]
