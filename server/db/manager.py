# 数据库连接和事务管理的核心组件

import sqlite3
import logging
import os
from datetime import datetime
from typing import List, Any, Callable
from contextlib import contextmanager

# 核心表结构：订阅与周期订单各自内嵌重复规则和排期状态，不单独建排期表
SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id INTEGER PRIMARY KEY,
        name VARCHAR(100) NOT NULL,
        email VARCHAR(255) UNIQUE,
        is_admin BOOLEAN DEFAULT 0,
        status VARCHAR(20) DEFAULT 'active',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS plans (
        plan_id INTEGER PRIMARY KEY,
        name VARCHAR(100) NOT NULL,
        slug VARCHAR(100) UNIQUE NOT NULL,
        description TEXT,
        price_cents INTEGER NOT NULL,
        frequency VARCHAR(20) DEFAULT 'weekly',
        is_active BOOLEAN DEFAULT 1,
        max_subscribers INTEGER,
        current_subscribers INTEGER DEFAULT 0 CHECK (current_subscribers >= 0),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        order_id INTEGER PRIMARY KEY,
        order_number VARCHAR(64) UNIQUE NOT NULL,
        customer_id INTEGER NOT NULL,
        bag_name VARCHAR(100),
        items JSON NOT NULL,
        subtotal_cents INTEGER NOT NULL DEFAULT 0,
        tax_cents INTEGER NOT NULL DEFAULT 0,
        shipping_cents INTEGER NOT NULL DEFAULT 0,
        discount_cents INTEGER NOT NULL DEFAULT 0,
        total_cents INTEGER NOT NULL DEFAULT 0,
        status VARCHAR(20) DEFAULT 'pending',
        payment_method VARCHAR(20) NOT NULL,
        payment_status VARCHAR(20) DEFAULT 'pending',
        shipping_address JSON,
        billing_address JSON,
        notes TEXT,
        is_recurring BOOLEAN DEFAULT 0,
        source_order_id INTEGER,
        recurrence JSON,
        next_delivery_at DATE,
        schedule_status VARCHAR(20),
        paused_until TIMESTAMP,
        skipped_dates JSON,
        skipped_deliveries INTEGER DEFAULT 0 CHECK (skipped_deliveries >= 0),
        cancelled_at TIMESTAMP,
        cancel_reason TEXT,
        version INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS subscriptions (
        subscription_id INTEGER PRIMARY KEY,
        user_id INTEGER NOT NULL,
        plan_id INTEGER NOT NULL,
        status VARCHAR(20) DEFAULT 'pending',
        start_date DATE NOT NULL,
        next_delivery_date DATE,
        paused_until TIMESTAMP,
        cancelled_at TIMESTAMP,
        cancel_reason TEXT,
        delivery_day VARCHAR(20) NOT NULL,
        delivery_time_slot VARCHAR(50) NOT NULL,
        delivery_address JSON,
        payment_method VARCHAR(20) DEFAULT 'cod',
        total_deliveries INTEGER DEFAULT 0,
        skipped_deliveries INTEGER DEFAULT 0 CHECK (skipped_deliveries >= 0),
        skipped_dates JSON,
        version INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_orders_customer ON orders(customer_id)",
    "CREATE INDEX IF NOT EXISTS idx_orders_schedule ON orders(is_recurring, schedule_status, next_delivery_at)",
    "CREATE INDEX IF NOT EXISTS idx_subscriptions_user ON subscriptions(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_subscriptions_due ON subscriptions(status, next_delivery_date)",
]

CORE_TABLES = ['users', 'plans', 'orders', 'subscriptions']


class DatabaseManager:
    """
    数据库管理器

    负责SQLite数据库连接管理、表结构初始化和事务处理
    """

    def __init__(self, db_path: str, auto_connect: bool = False):
        """
        初始化数据库管理器

        Args:
            db_path: 数据库文件路径，':memory:' 表示内存数据库
            auto_connect: 是否自动连接数据库
        """
        self.db_path = db_path
        self.conn = None
        self._is_connected = False

        self.logger = logging.getLogger(self.__class__.__name__)

        if auto_connect:
            self.connect()

    def connect(self) -> sqlite3.Connection:
        """
        建立数据库连接

        Returns:
            SQLite连接对象

        Raises:
            ConnectionError: 连接失败时抛出异常
        """
        try:
            if self.conn is not None:
                self.logger.warning("数据库连接已存在，先关闭现有连接")
                self.close()

            if self.db_path != ':memory:':
                db_dir = os.path.dirname(self.db_path)
                if db_dir and not os.path.exists(db_dir):
                    os.makedirs(db_dir, exist_ok=True)
                    self.logger.info(f"创建数据库目录: {db_dir}")

            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self._is_connected = True
            self.logger.info(f"成功连接到数据库: {self.db_path}")

            self._configure_database()

            return self.conn

        except sqlite3.Error as e:
            self.logger.error(f"连接数据库失败: {str(e)}")
            raise ConnectionError(f"无法连接到数据库 {self.db_path}: {str(e)}")

    def close(self):
        """
        关闭数据库连接
        """
        if self.conn is not None:
            try:
                self.conn.close()
                self.logger.info("数据库连接已关闭")
            except sqlite3.Error as e:
                self.logger.error(f"关闭数据库连接时发生错误: {str(e)}")
            finally:
                self.conn = None
                self._is_connected = False

    def _configure_database(self):
        """
        配置SQLite参数
        """
        optimizations = [
            "PRAGMA foreign_keys = ON",
            "PRAGMA synchronous = NORMAL",
            "PRAGMA temp_store = MEMORY",
        ]
        # 内存数据库不支持WAL
        if self.db_path != ':memory:':
            optimizations.append("PRAGMA journal_mode = WAL")

        try:
            for opt in optimizations:
                self.conn.execute(opt)
            self.logger.debug("数据库参数配置完成")
        except sqlite3.Error as e:
            self.logger.warning(f"配置数据库参数时出现警告: {str(e)}")

    def is_connected(self) -> bool:
        """
        检查数据库连接状态
        """
        return self._is_connected and self.conn is not None

    def ensure_connected(self):
        """
        确保数据库连接可用

        Raises:
            ConnectionError: 连接不可用时抛出异常
        """
        if not self.is_connected():
            raise ConnectionError("数据库未连接，请先调用connect()方法")

    def initialize_schema(self):
        """
        创建核心表结构（已存在则跳过）
        """
        self.ensure_connected()

        with self.transaction() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)

        self.logger.info(f"数据库表结构初始化完成: {', '.join(CORE_TABLES)}")

    def execute_transaction(self, operations: List[Callable]) -> List[Any]:
        """
        串行执行事务操作

        Args:
            operations: 操作函数列表，每个函数返回操作结果

        Returns:
            所有操作结果的列表

        Raises:
            ConnectionError: 数据库未连接
            Exception: 事务执行失败时回滚并抛出原始异常
        """
        self.ensure_connected()

        if not operations:
            self.logger.warning("事务操作列表为空")
            return []

        results = []
        transaction_id = datetime.now().strftime("%Y%m%d%H%M%S%f")

        try:
            self.logger.debug(f"开始事务 {transaction_id}，包含 {len(operations)} 个操作")

            for i, operation in enumerate(operations):
                self.logger.debug(f"执行事务 {transaction_id} 中的操作 {i+1}/{len(operations)}")
                results.append(operation())

            self.conn.commit()
            self.logger.debug(f"事务 {transaction_id} 提交成功")

            return results

        except Exception as e:
            self.logger.warning(f"事务 {transaction_id} 执行失败: {type(e).__name__}: {str(e)}")
            try:
                self.conn.rollback()
                self.logger.debug(f"事务 {transaction_id} 已回滚")
            except sqlite3.Error as rollback_error:
                self.logger.error(f"事务回滚失败: {str(rollback_error)}")
            raise

    def execute_single(self, query: str, params: List = None) -> sqlite3.Cursor:
        """
        执行单个SQL语句，DDL/DML自动提交

        Args:
            query: SQL语句
            params: 参数

        Returns:
            游标
        """
        self.ensure_connected()

        try:
            result = self.conn.execute(query, params or [])

            if query.strip().upper().startswith(('CREATE', 'DROP', 'ALTER', 'INSERT', 'UPDATE', 'DELETE')):
                self.conn.commit()

            return result

        except sqlite3.Error as e:
            self.logger.error(f"执行SQL失败: {query[:100]}..., 错误: {str(e)}")
            raise

    @contextmanager
    def transaction(self):
        """
        事务上下文管理器

        Usage:
            with db_manager.transaction() as conn:
                conn.execute("UPDATE ...")
        """
        self.ensure_connected()

        try:
            yield self.conn
            self.conn.commit()
        except Exception as e:
            self.logger.error(f"手动事务执行失败: {str(e)}")
            try:
                self.conn.rollback()
            except sqlite3.Error as rollback_error:
                self.logger.error(f"手动事务回滚失败: {str(rollback_error)}")
            raise

    def check_integrity(self) -> bool:
        """
        检查核心表是否存在

        Raises:
            RuntimeError: 缺少核心表
        """
        self.ensure_connected()

        existing = {
            row[0] for row in self.conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ).fetchall()
        }
        missing = [table for table in CORE_TABLES if table not in existing]

        if missing:
            error_msg = f"核心表不存在: {', '.join(missing)}"
            self.logger.error(error_msg)
            raise RuntimeError(error_msg)

        return True

    def __enter__(self):
        if not self.is_connected():
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
