"""通用 CRUD 基类。

为所有仓库提供会话获取与按主键的通用读写能力。
每个方法都接受可选的外部会话：传入时在该会话（事务）中执行且不提交，
由调用方统一提交；未传入时自行开启并提交一个短会话。
"""
from typing import Any, Dict, List, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from .connection import DatabaseConnection

ModelT = TypeVar("ModelT")


class BaseCRUD:
    """通用 CRUD 基类。

    Attributes:
        conn: 共享的数据库连接管理器。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        self.conn = conn

    def _get_session(self) -> Session:
        return self.conn.get_session()

    def get_by_id(self, model: Type[ModelT], record_id: int,
                  session: Optional[Session] = None) -> Optional[ModelT]:
        """按主键获取记录。

        Returns:
            ORM 对象，不存在则返回 None。
        """
        if session:
            return session.get(model, record_id)

        with self._get_session() as sess:
            return sess.get(model, record_id)

    def get_all(self, model: Type[ModelT],
                filters: Optional[Dict[str, Any]] = None,
                order_by: Any = None,
                session: Optional[Session] = None) -> List[ModelT]:
        """按等值条件获取记录列表。

        Args:
            model: ORM 模型类。
            filters: 字段名到值的等值过滤条件（可选）。
            order_by: 排序表达式（可选）。
        """
        def _query(sess):
            query = sess.query(model)
            if filters:
                query = query.filter_by(**filters)
            if order_by is not None:
                query = query.order_by(order_by)
            return query.all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def delete_by_id(self, model: Type[ModelT], record_id: int,
                     session: Optional[Session] = None) -> bool:
        """按主键删除记录。

        Returns:
            记录存在并被删除返回 True，否则返回 False。
        """
        def _do(sess):
            obj = sess.get(model, record_id)
            if obj is None:
                return False
            sess.delete(obj)
            sess.flush()
            return True

        if session:
            return _do(session)

        with self._get_session() as sess:
            deleted = _do(sess)
            sess.commit()
            return deleted
