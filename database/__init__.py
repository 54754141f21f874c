"""数据库模块 - 排队系统的持久化存储

核心组件：
- DatabaseManager: 统一门面，组合所有子仓库
- DatabaseConnection: 引擎与会话管理
- models: ORM 模型（用户、服务、窗口、票号、每日统计）
"""
from database.manager import DatabaseManager
from database.connection import DatabaseConnection

__all__ = [
    "DatabaseManager",
    "DatabaseConnection",
]
