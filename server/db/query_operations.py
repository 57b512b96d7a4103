# 查询业务操作：到期排期、周期订单与订阅列表、统计
# 统一返回 {"success", "data", "message"} 格式

import json
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from scheduling.calculator import upcoming_deliveries
from scheduling.errors import OwnershipError, RecordNotFoundError
from scheduling.models import RecurrenceRule
from utils.config import DEFAULT_SCHEDULING_CONFIG
from utils.validators import validate_schedule_status, validate_subscription_status
from .manager import DatabaseManager

RECURRING_SORT_COLUMNS = ('created_at', 'next_delivery_at', 'updated_at')

SCHEDULE_STATUS_TEXT = {
    "active": "进行中",
    "paused": "已暂停",
    "ended": "已结束",
    "pending": "待生效",
    "cancelled": "已取消",
}


def _loads(raw, default=None):
    return json.loads(raw) if raw else default


class QueryOperations:
    """
    查询业务操作类
    """
    def __init__(self, db_manager: DatabaseManager, scheduling_config: Dict[str, Any] = None):
        self.db = db_manager
        self.config = dict(DEFAULT_SCHEDULING_CONFIG)
        self.config.update(scheduling_config or {})

    def _validate_pagination(self, offset: int, limit: int, max_limit: int):
        """验证分页参数"""
        if offset < 0:
            raise ValueError("偏移量不能为负数")
        if limit <= 0 or limit > max_limit:
            raise ValueError(f"每页条数必须在1-{max_limit}之间")

    def _pagination(self, total_count: int, offset: int, limit: int) -> Dict[str, Any]:
        return {
            "total_count": total_count,
            "current_page": offset // limit + 1,
            "per_page": limit,
            "total_pages": (total_count + limit - 1) // limit,
            "has_next": offset + limit < total_count,
            "has_prev": offset > 0
        }

    def _is_admin(self, user_id: int) -> bool:
        row = self.db.conn.execute(
            "SELECT is_admin FROM users WHERE user_id = ? AND status = 'active'", [user_id]
        ).fetchone()
        return bool(row and row['is_admin'])

    def _format_recurring_order(self, row) -> Dict[str, Any]:
        return {
            "order_id": row['order_id'],
            "order_number": row['order_number'],
            "customer_id": row['customer_id'],
            "source_order_id": row['source_order_id'],
            "bag_name": row['bag_name'],
            "items": _loads(row['items'], []),
            "total_cents": row['total_cents'],
            "payment_method": row['payment_method'],
            "shipping_address": _loads(row['shipping_address']),
            "recurrence": _loads(row['recurrence']),
            "schedule_status": row['schedule_status'],
            "status_text": SCHEDULE_STATUS_TEXT.get(row['schedule_status'], row['schedule_status']),
            "next_delivery_at": row['next_delivery_at'],
            "paused_until": row['paused_until'],
            "skipped_dates": _loads(row['skipped_dates'], []),
            "skipped_deliveries": row['skipped_deliveries'],
            "cancelled_at": row['cancelled_at'],
            "cancel_reason": row['cancel_reason'],
            "version": row['version'],
            "created_at": row['created_at'],
            "updated_at": row['updated_at']
        }

    def _format_subscription(self, row) -> Dict[str, Any]:
        return {
            "subscription_id": row['subscription_id'],
            "user_id": row['user_id'],
            "plan": {
                "plan_id": row['plan_id'],
                "name": row['plan_name'],
                "slug": row['plan_slug'],
                "price_cents": row['plan_price_cents'],
                "frequency": row['plan_frequency']
            },
            "status": row['status'],
            "status_text": SCHEDULE_STATUS_TEXT.get(row['status'], row['status']),
            "start_date": row['start_date'],
            "next_delivery_date": row['next_delivery_date'],
            "delivery_slot": {
                "day": row['delivery_day'],
                "time_slot": row['delivery_time_slot']
            },
            "delivery_address": _loads(row['delivery_address']),
            "payment_method": row['payment_method'],
            "paused_until": row['paused_until'],
            "total_deliveries": row['total_deliveries'],
            "skipped_dates": _loads(row['skipped_dates'], []),
            "skipped_deliveries": row['skipped_deliveries'],
            "cancelled_at": row['cancelled_at'],
            "cancel_reason": row['cancel_reason'],
            "version": row['version'],
            "created_at": row['created_at'],
            "updated_at": row['updated_at']
        }

    _SUBSCRIPTION_SELECT = """
        SELECT s.*,
               p.name AS plan_name,
               p.slug AS plan_slug,
               p.price_cents AS plan_price_cents,
               p.frequency AS plan_frequency
        FROM subscriptions s
        LEFT JOIN plans p ON s.plan_id = p.plan_id
    """

    # 1. 查询即将到期的排期（配送派单读取）
    def find_due_schedules(self, within_days: int = None, now: datetime = None) -> Dict[str, Any]:
        """
        查询下次配送日期在 now + within_days 天内（含）的进行中排期

        Args:
            within_days: 天数窗口，默认取配置 scheduling.due_window_days
            now: 参考时间

        Returns:
            按下次配送日期升序的周期订单和订阅
        """
        within_days = self.config['due_window_days'] if within_days is None else within_days
        if within_days < 0:
            raise ValueError("天数窗口不能为负数")

        until = ((now or datetime.now()).date() + timedelta(days=within_days)).isoformat()

        orders = self.db.conn.execute("""
            SELECT * FROM orders
            WHERE is_recurring = 1 AND schedule_status = 'active'
            AND next_delivery_at IS NOT NULL AND next_delivery_at <= ?
            ORDER BY next_delivery_at ASC, order_id ASC
        """, [until]).fetchall()

        subscriptions = self.db.conn.execute(self._SUBSCRIPTION_SELECT + """
            WHERE s.status = 'active'
            AND s.next_delivery_date IS NOT NULL AND s.next_delivery_date <= ?
            ORDER BY s.next_delivery_date ASC, s.subscription_id ASC
        """, [until]).fetchall()

        return {
            "success": True,
            "data": {
                "until": until,
                "recurring_orders": [self._format_recurring_order(row) for row in orders],
                "subscriptions": [self._format_subscription(row) for row in subscriptions],
                "total_count": len(orders) + len(subscriptions)
            },
            "message": f"到期排期查询成功，共 {len(orders) + len(subscriptions)} 条"
        }

    # 2. 周期订单列表
    def list_recurring_orders(self, customer_id: Optional[int] = None, status: str = None,
                              sort_by: str = 'created_at', sort_order: str = 'desc',
                              offset: int = 0, limit: int = 20) -> Dict[str, Any]:
        """
        查询周期订单列表

        Args:
            customer_id: 客户ID，为空时查询全部（管理端）
            status: 排期状态过滤
            sort_by: 排序字段 created_at / next_delivery_at / updated_at
            sort_order: asc / desc
            offset: 偏移量
            limit: 每页条数，最大100
        """
        self._validate_pagination(offset, limit, 100)

        if sort_by not in RECURRING_SORT_COLUMNS:
            raise ValueError(f"不支持的排序字段: {sort_by}")
        if sort_order.lower() not in ('asc', 'desc'):
            raise ValueError(f"排序方向只能是 asc 或 desc: {sort_order}")
        if status and not validate_schedule_status(status):
            raise ValueError(f"无效的排期状态: {status}")

        where_conditions = ["is_recurring = 1"]
        params = []

        if customer_id is not None:
            where_conditions.append("customer_id = ?")
            params.append(customer_id)

        if status:
            where_conditions.append("schedule_status = ?")
            params.append(status)

        where_clause = " AND ".join(where_conditions)

        rows = self.db.conn.execute(f"""
            SELECT * FROM orders
            WHERE {where_clause}
            ORDER BY {sort_by} {sort_order.upper()}, order_id {sort_order.upper()}
            LIMIT ? OFFSET ?
        """, params + [limit, offset]).fetchall()

        total_count = self.db.conn.execute(
            f"SELECT COUNT(*) FROM orders WHERE {where_clause}", params
        ).fetchone()[0]

        orders_list = [self._format_recurring_order(row) for row in rows]

        return {
            "success": True,
            "data": {
                "orders": orders_list,
                "pagination": self._pagination(total_count, offset, limit)
            },
            "message": f"周期订单查询成功，共 {len(orders_list)} 条记录"
        }

    # 3. 周期订单详情
    def get_recurring_order(self, order_id: int, user_id: Optional[int] = None,
                            preview_count: int = 5, now: datetime = None) -> Dict[str, Any]:
        """
        查询周期订单详情，进行中的订单附带后续配送日期预览

        Raises:
            RecordNotFoundError: 周期订单不存在
            OwnershipError: 调用者既不是所有者也不是管理员
        """
        row = self.db.conn.execute(
            "SELECT * FROM orders WHERE order_id = ? AND is_recurring = 1", [order_id]
        ).fetchone()

        if not row:
            raise RecordNotFoundError(f"周期订单ID {order_id} 不存在")

        if user_id is not None and row['customer_id'] != user_id and not self._is_admin(user_id):
            raise OwnershipError("无权查看该周期订单")

        order = self._format_recurring_order(row)

        upcoming = []
        if row['schedule_status'] == 'active':
            rule = RecurrenceRule.from_storage(row['recurrence'])
            if rule is not None:
                upcoming = [d.isoformat() for d in upcoming_deliveries(
                    rule, now or datetime.now(), preview_count, self.config['search_horizon_days']
                )]
        order["upcoming_deliveries"] = upcoming

        return {
            "success": True,
            "data": order,
            "message": "周期订单查询成功"
        }

    # 4. 用户订阅列表
    def list_user_subscriptions(self, user_id: int, status: str = None) -> Dict[str, Any]:
        """查询用户的全部订阅（含已取消），按创建时间倒序"""
        if status and not validate_subscription_status(status):
            raise ValueError(f"无效的订阅状态: {status}")

        query = self._SUBSCRIPTION_SELECT + " WHERE s.user_id = ?"
        params = [user_id]
        if status:
            query += " AND s.status = ?"
            params.append(status)
        query += " ORDER BY s.created_at DESC, s.subscription_id DESC"

        rows = self.db.conn.execute(query, params).fetchall()
        subscriptions = [self._format_subscription(row) for row in rows]

        return {
            "success": True,
            "data": {
                "subscriptions": subscriptions,
                "total_count": len(subscriptions)
            },
            "message": f"订阅查询成功，共 {len(subscriptions)} 条记录"
        }

    # 5. 订阅详情
    def get_subscription(self, subscription_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        """
        查询订阅详情

        Raises:
            RecordNotFoundError: 订阅不存在
            OwnershipError: 调用者既不是所有者也不是管理员
        """
        row = self.db.conn.execute(
            self._SUBSCRIPTION_SELECT + " WHERE s.subscription_id = ?", [subscription_id]
        ).fetchone()

        if not row:
            raise RecordNotFoundError(f"订阅ID {subscription_id} 不存在")

        if user_id is not None and row['user_id'] != user_id and not self._is_admin(user_id):
            raise OwnershipError("无权查看该订阅")

        return {
            "success": True,
            "data": self._format_subscription(row),
            "message": "订阅查询成功"
        }

    # 6. 周期订单统计（管理端）
    def recurring_order_statistics(self, now: datetime = None) -> Dict[str, Any]:
        """
        周期订单统计：各状态数量、最近10次待配送，以及金额汇总

        total_value_cents 与 avg_value_cents 覆盖全部周期订单（含暂停、已结束），
        active_value_cents 只统计进行中的订单
        """
        stats = self.db.conn.execute("""
            SELECT
                COUNT(*) AS total,
                SUM(CASE WHEN schedule_status = 'active' THEN 1 ELSE 0 END) AS active,
                SUM(CASE WHEN schedule_status = 'paused' THEN 1 ELSE 0 END) AS paused,
                SUM(CASE WHEN schedule_status = 'ended' THEN 1 ELSE 0 END) AS ended,
                SUM(total_cents) AS total_value_cents,
                SUM(CASE WHEN schedule_status = 'active' THEN total_cents ELSE 0 END) AS active_value_cents,
                AVG(total_cents) AS avg_value_cents
            FROM orders
            WHERE is_recurring = 1
        """).fetchone()

        today = (now or datetime.now()).date().isoformat()
        upcoming = self.db.conn.execute("""
            SELECT order_id, order_number, customer_id, next_delivery_at, total_cents
            FROM orders
            WHERE is_recurring = 1 AND schedule_status = 'active'
            AND next_delivery_at IS NOT NULL AND next_delivery_at >= ?
            ORDER BY next_delivery_at ASC, order_id ASC
            LIMIT 10
        """, [today]).fetchall()

        return {
            "success": True,
            "data": {
                "total": stats['total'] or 0,
                "by_status": {
                    "active": stats['active'] or 0,
                    "paused": stats['paused'] or 0,
                    "ended": stats['ended'] or 0
                },
                "total_value_cents": stats['total_value_cents'] or 0,
                "active_value_cents": stats['active_value_cents'] or 0,
                "avg_value_cents": round(stats['avg_value_cents'] or 0),
                "upcoming_deliveries": [dict(row) for row in upcoming]
            },
            "message": "周期订单统计查询成功"
        }
