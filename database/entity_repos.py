"""实体仓库 —— 基础实体的数据访问层。

管理系统中的基础实体（用户、服务、窗口）。
每个仓库继承 BaseCRUD 获得通用能力，并添加领域特定的查询方法。
"""
from typing import Optional, List
from sqlalchemy.orm import Session

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import User, UserRole, Service, Counter


class UserRepository(BaseCRUD):
    """用户 仓库。

    用户由注册流程创建；凭证哈希由外部认证服务生成，这里只负责存储。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create(self, name: str, contact: str, credential_hash: str,
               role: UserRole = UserRole.CUSTOMER,
               session: Optional[Session] = None) -> User:
        """创建用户。

        Args:
            name: 显示名称。
            contact: 唯一联系方式。
            credential_hash: 凭证哈希。
            role: 用户角色，默认 customer。

        Returns:
            新创建的 User 对象。
        """
        def _do(sess):
            user = User(name=name, contact=contact,
                        credential_hash=credential_hash, role=UserRole(role))
            sess.add(user)
            sess.flush()
            return user

        if session:
            return _do(session)

        with self._get_session() as sess:
            user = _do(sess)
            sess.commit()
            return user

    def get(self, user_id: int,
            session: Optional[Session] = None) -> Optional[User]:
        return self.get_by_id(User, user_id, session=session)

    def get_by_contact(self, contact: str,
                       session: Optional[Session] = None) -> Optional[User]:
        """按联系方式查找用户。"""
        def _query(sess):
            return sess.query(User).filter(User.contact == contact).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class ServiceRepository(BaseCRUD):
    """服务 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create(self, name: str,
               session: Optional[Session] = None) -> Service:
        """创建服务（名称唯一性由调用方预先检查，数据库约束兜底）。"""
        def _do(sess):
            service = Service(name=name)
            sess.add(service)
            sess.flush()
            return service

        if session:
            return _do(session)

        with self._get_session() as sess:
            service = _do(sess)
            sess.commit()
            return service

    def get(self, service_id: int,
            session: Optional[Session] = None) -> Optional[Service]:
        return self.get_by_id(Service, service_id, session=session)

    def get_by_name(self, name: str,
                    session: Optional[Session] = None) -> Optional[Service]:
        """按名称精确查找服务。"""
        def _query(sess):
            return sess.query(Service).filter(Service.name == name).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def list_all(self, session: Optional[Session] = None) -> List[Service]:
        """获取全部服务（按名称排序）。"""
        return self.get_all(Service, order_by=Service.name, session=session)

    def delete(self, service_id: int,
               session: Optional[Session] = None) -> bool:
        """删除服务，窗口、票号和统计由外键级联删除。"""
        return self.delete_by_id(Service, service_id, session=session)


class CounterRepository(BaseCRUD):
    """服务窗口 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create(self, name: str, room_number: str, service_id: int,
               session: Optional[Session] = None) -> Counter:
        """创建窗口。"""
        def _do(sess):
            counter = Counter(name=name, room_number=room_number,
                              service_id=service_id)
            sess.add(counter)
            sess.flush()
            return counter

        if session:
            return _do(session)

        with self._get_session() as sess:
            counter = _do(sess)
            sess.commit()
            return counter

    def get(self, counter_id: int,
            session: Optional[Session] = None) -> Optional[Counter]:
        return self.get_by_id(Counter, counter_id, session=session)

    def get_for_service(self, counter_id: int, service_id: int,
                        session: Optional[Session] = None) -> Optional[Counter]:
        """获取属于指定服务的窗口，不属于则返回 None。"""
        def _query(sess):
            return sess.query(Counter).filter(
                Counter.id == counter_id,
                Counter.service_id == service_id
            ).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def list_all(self, service_id: Optional[int] = None,
                 session: Optional[Session] = None) -> List[Counter]:
        """获取窗口列表（可按服务过滤，按名称排序）。"""
        filters = {"service_id": service_id} if service_id is not None else None
        return self.get_all(Counter, filters=filters, order_by=Counter.name,
                            session=session)

    def delete(self, counter_id: int,
               session: Optional[Session] = None) -> bool:
        """删除窗口，关联票号的 counter_id 由外键置空。"""
        return self.delete_by_id(Counter, counter_id, session=session)
