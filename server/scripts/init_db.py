#!/usr/bin/env python3
# 数据库初始化脚本：建表、建索引、写入默认管理员与示例套餐

import os
import sys
import logging
from pathlib import Path

# 添加项目根目录到Python路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from db.manager import DatabaseManager, CORE_TABLES
from db.supporting_operations import SupportingOperations
from utils.config import Config

DEFAULT_ADMIN_EMAIL = 'admin@example.com'

SAMPLE_PLANS = [
    # (名称, 标识, 价格（分）, 频率, 订阅人数上限)
    ('每周蔬菜箱', 'weekly-veg-box', 2999, 'weekly', 200),
    ('双周水果箱', 'biweekly-fruit-box', 4599, 'biweekly', 100),
    ('每月粮油包', 'monthly-pantry', 8900, 'monthly', None),
]


def insert_initial_data(db_manager: DatabaseManager):
    """
    插入初始数据，已存在的记录跳过
    """
    support_ops = SupportingOperations(db_manager)

    existing_admin = db_manager.execute_single(
        "SELECT user_id FROM users WHERE email = ?", [DEFAULT_ADMIN_EMAIL]
    ).fetchone()

    if not existing_admin:
        support_ops.register_customer('系统管理员', email=DEFAULT_ADMIN_EMAIL, is_admin=True)
        logging.info("成功创建默认管理员账户")
    else:
        logging.info("默认管理员账户已存在")

    for name, slug, price_cents, frequency, max_subscribers in SAMPLE_PLANS:
        existing_plan = db_manager.execute_single(
            "SELECT plan_id FROM plans WHERE slug = ?", [slug]
        ).fetchone()

        if not existing_plan:
            support_ops.create_plan(name, slug, price_cents, frequency=frequency,
                                    max_subscribers=max_subscribers)
            logging.info(f"成功创建示例套餐: {name}")


def main():
    """
    主函数：初始化数据库
    """
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    config = Config()
    db_path = config.get_database_config()["path"]

    logging.info(f"开始初始化数据库: {db_path}")
    logging.info(f"配置环境: {config.env}")

    if db_path != ':memory:':
        os.makedirs(os.path.dirname(db_path) or '.', exist_ok=True)

    try:
        with DatabaseManager(db_path) as db_manager:
            logging.info("创建数据表与索引...")
            db_manager.initialize_schema()

            logging.info("插入初始数据...")
            insert_initial_data(db_manager)

            db_manager.check_integrity()

            logging.info("数据库初始化完成!")
            logging.info("数据表状态:")
            for table_name in CORE_TABLES:
                count = db_manager.execute_single(f"SELECT COUNT(*) FROM {table_name}").fetchone()[0]
                logging.info(f"  - {table_name}: {count} 条记录")

    except Exception as e:
        logging.error(f"数据库初始化失败: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
