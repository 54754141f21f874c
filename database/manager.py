"""数据库管理器 —— 统一门面（Facade）。

DatabaseManager 是 database 模块的统一入口，组合了所有子仓库：

- ``db.users``：用户
- ``db.services``：服务
- ``db.counters``：服务窗口
- ``db.tickets``：票号
- ``db.statistics``：每日统计

子仓库返回 ORM 对象；面向客户端的字典投影由 queueing.query 负责。
需要在同一事务内跨仓库操作时，通过 ``db.session_scope()`` 获取会话，
并把 session 参数传给各仓库方法。
"""
from contextlib import contextmanager
from typing import Iterator, Optional, Any

from loguru import logger
from sqlalchemy.orm import Session

from .connection import DatabaseConnection
from .entity_repos import UserRepository, ServiceRepository, CounterRepository
from .ticket_repos import TicketRepository
from .statistics_repos import DailyStatisticRepository


class DatabaseManager:
    """数据库管理器 —— 统一门面。

    Attributes:
        conn: 数据库连接管理器。
        users: 用户仓库。
        services: 服务仓库。
        counters: 窗口仓库。
        tickets: 票号仓库。
        statistics: 每日统计仓库。

    Example::

        db = DatabaseManager("sqlite:///data/queue.db")
        db.create_tables()

        with db.session_scope() as session:
            service = db.services.create("Billing", session=session)
            db.counters.create("Desk 1", "A101", service.id, session=session)
    """

    def __init__(self, database_url: Optional[str] = None) -> None:
        """初始化数据库管理器。

        Args:
            database_url: 数据库连接URL。如果为None则使用settings配置。
        """
        # 基础设施层
        self.conn = DatabaseConnection(database_url)

        # 实体仓库
        self.users = UserRepository(self.conn)
        self.services = ServiceRepository(self.conn)
        self.counters = CounterRepository(self.conn)

        # 排队数据仓库
        self.tickets = TicketRepository(self.conn)
        self.statistics = DailyStatisticRepository(self.conn)

    # ================================================================
    # 基础设施方法
    # ================================================================

    def create_tables(self) -> None:
        """创建所有数据库表（幂等操作）。"""
        self.conn.create_tables()

    def get_session(self) -> Session:
        """获取数据库会话。"""
        return self.conn.get_session()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """事务作用域：正常退出时提交，出现异常时回滚并继续抛出。"""
        session = self.conn.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @property
    def database_url(self) -> str:
        """数据库连接URL。"""
        return self.conn.database_url

    @property
    def engine(self):
        """SQLAlchemy 引擎对象。"""
        return self.conn.engine

    def execute_raw_sql(self, sql: str,
                        params: Optional[dict] = None) -> Any:
        """执行原始 SQL 语句。

        注意：应优先使用 ORM 方法，仅在必要时使用原始 SQL。
        """
        return self.conn.execute_raw_sql(sql, params)

    def close(self) -> None:
        """关闭数据库连接，释放所有资源。"""
        self.conn.close()
        logger.debug(f"数据库连接已关闭: {self.database_url}")
