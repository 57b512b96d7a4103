# 测试配置和固定装置

import pytest
import os
import sys
from datetime import datetime
from pathlib import Path
from fastapi.testclient import TestClient

# 添加项目路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# 设置测试环境
os.environ['CONFIG_ENV'] = 'test'

from api.main import app
from api.auth import get_database, jwt_manager
from db.manager import DatabaseManager
from db.query_operations import QueryOperations
from db.recurring_operations import RecurringOperations
from db.schedule_operations import ScheduleOperations
from db.supporting_operations import PlanRegistry, SupportingOperations

# 2024-01-01 是周一
MONDAY = datetime(2024, 1, 1, 10, 0, 0)
# 2024-03-01 是周五
FRIDAY = datetime(2024, 3, 1, 9, 0, 0)


@pytest.fixture
def test_db():
    """测试数据库实例（内存数据库）"""
    db = DatabaseManager(":memory:", auto_connect=True)
    db.initialize_schema()
    yield db
    db.close()


@pytest.fixture
def support_ops(test_db):
    """支持业务操作实例"""
    return SupportingOperations(test_db)


@pytest.fixture
def plan_registry(test_db):
    """套餐订阅计数实例"""
    return PlanRegistry(test_db)


@pytest.fixture
def schedule_ops(test_db, plan_registry):
    """排期状态迁移操作实例"""
    return ScheduleOperations(test_db, plan_registry=plan_registry)


@pytest.fixture
def recurring_ops(test_db, plan_registry):
    """周期订单操作实例"""
    return RecurringOperations(test_db, plan_registry=plan_registry)


@pytest.fixture
def query_ops(test_db):
    """查询业务操作实例"""
    return QueryOperations(test_db)


@pytest.fixture
def sample_customer(support_ops):
    """创建测试客户"""
    return support_ops.register_customer("测试客户", email="customer@example.com")['user_id']


@pytest.fixture
def other_customer(support_ops):
    """创建另一个测试客户"""
    return support_ops.register_customer("其他客户", email="other@example.com")['user_id']


@pytest.fixture
def sample_admin(support_ops):
    """创建测试管理员"""
    return support_ops.register_customer("测试管理员", email="admin@example.com", is_admin=True)['user_id']


@pytest.fixture
def sample_plan(support_ops):
    """创建测试套餐（最多2人订阅）"""
    return support_ops.create_plan(
        name="每周蔬菜箱",
        slug="weekly-veg-box",
        price_cents=2999,
        max_subscribers=2
    )['plan_id']


@pytest.fixture
def sample_order(support_ops, sample_customer):
    """创建已完成结账的一次性订单"""
    return support_ops.record_order(
        customer_id=sample_customer,
        items=[
            {"name": "有机蔬菜箱", "quantity": 1, "unit_price_cents": 2999},
            {"name": "土鸡蛋", "quantity": 2, "unit_price_cents": 800}
        ],
        payment_method="card",
        shipping_cents=500,
        shipping_address={"line1": "1 Market St", "city": "Springfield"},
        bag_name="周末菜篮"
    )['order_id']


@pytest.fixture
def recurring_order(recurring_ops, sample_order, sample_customer):
    """每周六配送的周期订单，下次配送 2024-01-06"""
    return recurring_ops.materialize_recurring_order(
        source_order_id=sample_order,
        caller_id=sample_customer,
        rule={"days_of_week": [6]},
        now=MONDAY
    )['order_id']


@pytest.fixture
def subscription(recurring_ops, sample_customer, sample_plan):
    """每周六配送的订阅，首次配送 2024-03-02"""
    return recurring_ops.create_subscription(
        user_id=sample_customer,
        plan_id=sample_plan,
        delivery_slot={"day": "saturday", "time_slot": "9am-12pm"},
        now=FRIDAY
    )['subscription_id']


@pytest.fixture
def client(test_db):
    """FastAPI测试客户端，数据库替换为测试内存库"""
    app.dependency_overrides[get_database] = lambda: test_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth_headers(user_id: int):
    token = jwt_manager.create_access_token({"user_id": user_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(sample_customer):
    """普通用户认证头"""
    return _auth_headers(sample_customer)


@pytest.fixture
def other_auth_headers(other_customer):
    """其他用户认证头"""
    return _auth_headers(other_customer)


@pytest.fixture
def admin_auth_headers(sample_admin):
    """管理员认证头"""
    return _auth_headers(sample_admin)
