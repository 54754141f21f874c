"""票号仓库 —— 排队核心数据的数据访问层。

只提供查询与写入原语，不包含状态流转规则；
状态机与叫号逻辑见 queueing.lifecycle。
"""
from typing import Optional, List, Iterable
from datetime import date, datetime, time, timedelta
from sqlalchemy.orm import Session

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import Ticket, TicketStatus


def day_bounds(day: date):
    """返回某日的 [开始, 次日开始) 时间区间。"""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


class TicketRepository(BaseCRUD):
    """票号 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def add(self, ticket: Ticket, session: Session) -> Ticket:
        """在给定会话中写入新票号。"""
        session.add(ticket)
        session.flush()
        return ticket

    def get(self, ticket_id: int,
            session: Optional[Session] = None) -> Optional[Ticket]:
        return self.get_by_id(Ticket, ticket_id, session=session)

    def get_active_for_user(self, user_id: int,
                            session: Optional[Session] = None
                            ) -> Optional[Ticket]:
        """获取用户未办结（status ≠ served）的最新票号。"""
        def _query(sess):
            return sess.query(Ticket).filter(
                Ticket.user_id == user_id,
                Ticket.status != TicketStatus.SERVED
            ).order_by(Ticket.created_at.desc(), Ticket.id.desc()).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def get_last_for_service_on(self, service_id: int, day: date,
                                session: Session) -> Optional[Ticket]:
        """获取某服务在某日最近创建的票号（用于生成序号）。"""
        start, end = day_bounds(day)
        return session.query(Ticket).filter(
            Ticket.service_id == service_id,
            Ticket.created_at >= start,
            Ticket.created_at < end
        ).order_by(Ticket.created_at.desc(), Ticket.id.desc()).first()

    def get_oldest_with_status(self, service_id: int, status: TicketStatus,
                               session: Session) -> Optional[Ticket]:
        """按创建时间先进先出，获取某服务某状态下最早的票号。"""
        return session.query(Ticket).filter(
            Ticket.service_id == service_id,
            Ticket.status == status
        ).order_by(Ticket.created_at.asc(), Ticket.id.asc()).first()

    def get_serving_at_counter(self, counter_id: int,
                               session: Session) -> Optional[Ticket]:
        """获取窗口当前正在办理的票号。"""
        return session.query(Ticket).filter(
            Ticket.counter_id == counter_id,
            Ticket.status == TicketStatus.SERVING
        ).order_by(Ticket.updated_at.asc(), Ticket.id.asc()).first()

    def list_by_status(self, statuses: Iterable[TicketStatus],
                       service_id: Optional[int] = None,
                       session: Optional[Session] = None) -> List[Ticket]:
        """按状态列出票号（创建时间升序）。"""
        statuses = list(statuses)

        def _query(sess):
            query = sess.query(Ticket).filter(Ticket.status.in_(statuses))
            if service_id is not None:
                query = query.filter(Ticket.service_id == service_id)
            return query.order_by(
                Ticket.created_at.asc(), Ticket.id.asc()
            ).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def list_served_between(self, start: datetime, end: datetime,
                            service_id: Optional[int] = None,
                            session: Optional[Session] = None
                            ) -> List[Ticket]:
        """列出 served_at 落在 [start, end) 内的已办结票号。"""
        def _query(sess):
            query = sess.query(Ticket).filter(
                Ticket.status == TicketStatus.SERVED,
                Ticket.served_at >= start,
                Ticket.served_at < end
            )
            if service_id is not None:
                query = query.filter(Ticket.service_id == service_id)
            return query.order_by(Ticket.served_at.asc()).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def list_served_on(self, day: date, service_id: Optional[int] = None,
                       session: Optional[Session] = None) -> List[Ticket]:
        """列出某日办结的票号。"""
        start, end = day_bounds(day)
        return self.list_served_between(start, end, service_id=service_id,
                                        session=session)
