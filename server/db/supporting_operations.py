# -*- coding: utf-8 -*-
# 周边支持操作：套餐订阅计数、订单归属校验、订单号生成，以及客户/套餐/一次性订单的录入

import json
import logging
import secrets
import time
from typing import List, Optional, Dict, Any

from scheduling.errors import RecordNotFoundError
from utils.validators import validate_payment_method
from .manager import DatabaseManager

logger = logging.getLogger(__name__)

_BASE36_ALPHABET = '0123456789abcdefghijklmnopqrstuvwxyz'


def generate_order_number() -> str:
    """
    生成周期订单号：REC-<毫秒时间戳>-<9位base36随机串>
    """
    suffix = ''.join(secrets.choice(_BASE36_ALPHABET) for _ in range(9))
    return f"REC-{int(time.time() * 1000)}-{suffix}"


class PlanRegistry:
    """
    套餐订阅人数计数

    取消订阅时在排期取消提交之后单独调用，失败不回滚取消
    """
    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def get_plan(self, plan_id: int) -> Dict[str, Any]:
        plan = self.db.conn.execute("""
            SELECT plan_id, name, slug, price_cents, frequency, is_active,
                   max_subscribers, current_subscribers
            FROM plans WHERE plan_id = ?
        """, [plan_id]).fetchone()

        if not plan:
            raise RecordNotFoundError(f"套餐ID {plan_id} 不存在")

        return dict(plan)

    def increment_subscriber_count(self, plan_id: int) -> int:
        """订阅人数加一，返回新的人数（调用方负责事务提交）"""
        cursor = self.db.conn.execute("""
            UPDATE plans
            SET current_subscribers = current_subscribers + 1, updated_at = CURRENT_TIMESTAMP
            WHERE plan_id = ?
        """, [plan_id])
        if cursor.rowcount == 0:
            raise RecordNotFoundError(f"套餐ID {plan_id} 不存在")

        return self.get_plan(plan_id)['current_subscribers']

    def decrement_subscriber_count(self, plan_id: int) -> int:
        """
        订阅人数减一（不低于0），独立事务提交

        Returns:
            新的订阅人数
        """
        def decrement_operation():
            cursor = self.db.conn.execute("""
                UPDATE plans
                SET current_subscribers = MAX(current_subscribers - 1, 0),
                    updated_at = CURRENT_TIMESTAMP
                WHERE plan_id = ?
            """, [plan_id])
            if cursor.rowcount == 0:
                raise RecordNotFoundError(f"套餐ID {plan_id} 不存在")
            return self.get_plan(plan_id)['current_subscribers']

        count = self.db.execute_transaction([decrement_operation])[0]
        logger.info(f"套餐 {plan_id} 订阅人数更新为 {count}")
        return count


class SupportingOperations:
    """
    周边支持业务操作类
    """
    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def _get_next_id(self, table: str, id_column: str) -> int:
        return self.db.conn.execute(
            f"SELECT COALESCE(MAX({id_column}), 0) + 1 FROM {table}"
        ).fetchone()[0]

    def get_user_by_id(self, user_id: int) -> Optional[Dict[str, Any]]:
        """根据用户ID获取用户信息，不存在返回None"""
        row = self.db.conn.execute(
            "SELECT user_id, name, email, is_admin, status, created_at FROM users WHERE user_id = ?",
            [user_id]
        ).fetchone()
        return dict(row) if row else None

    def is_admin(self, user_id: int) -> bool:
        row = self.db.conn.execute(
            "SELECT is_admin FROM users WHERE user_id = ? AND status = 'active'",
            [user_id]
        ).fetchone()
        return bool(row and row['is_admin'])

    def is_owned_by(self, order_id: int, caller_id: int) -> bool:
        """
        校验订单是否属于调用者

        Raises:
            RecordNotFoundError: 订单不存在
        """
        row = self.db.conn.execute(
            "SELECT customer_id FROM orders WHERE order_id = ?", [order_id]
        ).fetchone()

        if not row:
            raise RecordNotFoundError(f"订单ID {order_id} 不存在")

        return row['customer_id'] == caller_id

    def register_customer(self, name: str, email: str = None, is_admin: bool = False) -> Dict[str, Any]:
        """
        录入客户

        Args:
            name: 客户名称
            email: 邮箱（唯一）
            is_admin: 是否为管理员

        Returns:
            新客户信息
        """
        if not name or not name.strip():
            raise ValueError("客户名称不能为空")
        if len(name) > 100:
            raise ValueError("客户名称长度不能超过100字符")

        def register_operation():
            if email:
                existing = self.db.conn.execute(
                    "SELECT user_id FROM users WHERE email = ?", [email]
                ).fetchone()
                if existing:
                    raise ValueError(f"邮箱 {email} 已被使用")

            user_id = self._get_next_id('users', 'user_id')
            self.db.conn.execute("""
                INSERT INTO users (user_id, name, email, is_admin, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, 'active', CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            """, [user_id, name.strip(), email, bool(is_admin)])

            return {
                "user_id": user_id,
                "name": name.strip(),
                "email": email,
                "is_admin": bool(is_admin),
                "message": "客户录入成功"
            }

        result = self.db.execute_transaction([register_operation])[0]
        logger.info(f"录入客户 {result['user_id']}，管理员: {result['is_admin']}")
        return result

    def create_plan(self, name: str, slug: str, price_cents: int, frequency: str = 'weekly',
                    max_subscribers: Optional[int] = None, description: str = None,
                    is_active: bool = True) -> Dict[str, Any]:
        """录入套餐"""
        if price_cents < 0:
            raise ValueError("套餐价格不能为负数")
        if max_subscribers is not None and max_subscribers <= 0:
            raise ValueError("订阅人数上限必须为正整数")

        def create_plan_operation():
            existing = self.db.conn.execute(
                "SELECT plan_id FROM plans WHERE slug = ?", [slug]
            ).fetchone()
            if existing:
                raise ValueError(f"套餐标识 {slug} 已存在")

            plan_id = self._get_next_id('plans', 'plan_id')
            self.db.conn.execute("""
                INSERT INTO plans (plan_id, name, slug, description, price_cents, frequency,
                                   is_active, max_subscribers, current_subscribers,
                                   created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            """, [plan_id, name, slug, description, price_cents, frequency,
                  bool(is_active), max_subscribers])

            return {
                "plan_id": plan_id,
                "name": name,
                "slug": slug,
                "price_cents": price_cents,
                "max_subscribers": max_subscribers,
                "message": "套餐创建成功"
            }

        return self.db.execute_transaction([create_plan_operation])[0]

    def record_order(self, customer_id: int, items: List[Dict[str, Any]], payment_method: str,
                     shipping_cents: int = 0, tax_cents: int = 0, discount_cents: int = 0,
                     shipping_address: Dict[str, Any] = None, billing_address: Dict[str, Any] = None,
                     bag_name: str = None, status: str = 'confirmed',
                     notes: str = None) -> Dict[str, Any]:
        """
        录入一次性订单（结账完成后的订单，作为周期订单的来源）

        Args:
            customer_id: 客户ID
            items: 商品行，每行包含 name、quantity、unit_price_cents
            payment_method: 支付方式
            status: 订单状态，默认 confirmed

        Returns:
            新订单信息
        """
        if not items:
            raise ValueError("订单至少需要一个商品")
        if not validate_payment_method(payment_method):
            raise ValueError(f"不支持的支付方式: {payment_method}")

        subtotal_cents = 0
        for item in items:
            quantity = int(item.get('quantity', 1))
            unit_price = int(item.get('unit_price_cents', 0))
            if quantity <= 0 or unit_price < 0:
                raise ValueError(f"商品行数量或单价无效: {item}")
            subtotal_cents += quantity * unit_price

        total_cents = subtotal_cents + tax_cents + shipping_cents - discount_cents

        def record_order_operation():
            customer = self.db.conn.execute(
                "SELECT status FROM users WHERE user_id = ?", [customer_id]
            ).fetchone()
            if not customer:
                raise RecordNotFoundError(f"客户ID {customer_id} 不存在")

            order_id = self._get_next_id('orders', 'order_id')
            order_number = f"ORD-{int(time.time() * 1000)}-{order_id}"
            self.db.conn.execute("""
                INSERT INTO orders (order_id, order_number, customer_id, bag_name, items,
                                    subtotal_cents, tax_cents, shipping_cents, discount_cents,
                                    total_cents, status, payment_method, payment_status,
                                    shipping_address, billing_address, notes, is_recurring,
                                    created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'paid', ?, ?, ?, 0,
                        CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            """, [order_id, order_number, customer_id, bag_name,
                  json.dumps(items, ensure_ascii=False),
                  subtotal_cents, tax_cents, shipping_cents, discount_cents, total_cents,
                  status, payment_method,
                  json.dumps(shipping_address, ensure_ascii=False) if shipping_address else None,
                  json.dumps(billing_address, ensure_ascii=False) if billing_address else None,
                  notes])

            return {
                "order_id": order_id,
                "order_number": order_number,
                "customer_id": customer_id,
                "total_cents": total_cents,
                "status": status,
                "message": "订单录入成功"
            }

        return self.db.execute_transaction([record_order_operation])[0]
