"""初始化数据库

创建所有表，写入 queue_config 中的服务与窗口，并可选创建一个管理员账号。

使用方式：
    python scripts/init_db.py
    python scripts/init_db.py --admin-contact admin@example.com --admin-password admin123
"""
import argparse
import sys
import os

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import DatabaseManager
from database.models import UserRole
from config.queue_config import QueueConfig, queue_config
from interface.auth import hash_credential
from loguru import logger


def seed_services(db: DatabaseManager, config: QueueConfig) -> int:
    """写入服务与窗口（已存在的服务跳过），返回新建服务数量"""
    created = 0
    with db.session_scope() as session:
        for item in config.get_services():
            if db.services.get_by_name(item["name"], session=session):
                logger.info(f"Service exists, skipped: {item['name']}")
                continue
            service = db.services.create(item["name"], session=session)
            for counter in item.get("counters", []):
                db.counters.create(counter["name"], counter["room_number"],
                                   service.id, session=session)
            created += 1
            logger.info(
                f"Created service: {service.name} "
                f"({len(item.get('counters', []))} counters)"
            )
    return created


def ensure_admin(db: DatabaseManager, contact: str, password: str,
                 name: str = "Administrator") -> bool:
    """创建管理员账号（已存在则跳过），返回是否新建"""
    with db.session_scope() as session:
        if db.users.get_by_contact(contact, session=session):
            logger.info(f"Admin exists, skipped: {contact}")
            return False
        db.users.create(name, contact, hash_credential(password),
                        role=UserRole.ADMIN, session=session)
    logger.info(f"Created admin: {contact}")
    return True


def init_database(database_url=None, admin_contact=None, admin_password=None):
    """初始化数据库和种子数据"""
    logger.info("Initializing database...")

    db = DatabaseManager(database_url)

    logger.info("Creating tables...")
    db.create_tables()

    logger.info("Inserting seed data...")
    seed_services(db, queue_config)
    if admin_contact and admin_password:
        ensure_admin(db, admin_contact, admin_password)

    db.close()
    logger.info("Database initialization completed!")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="初始化排队系统数据库")
    parser.add_argument("--db", default=None, help="数据库连接 URL")
    parser.add_argument("--admin-contact", default=None, help="管理员联系方式")
    parser.add_argument("--admin-password", default=None, help="管理员密码")
    args = parser.parse_args()
    init_database(args.db, args.admin_contact, args.admin_password)
