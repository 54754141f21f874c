"""统计数据仓库 —— 每日服务统计的数据访问层。

每日统计是票号历史的冗余汇总，只由统计聚合器写入，
用于历史报表的快速查询。
"""
from typing import Optional, List
from datetime import date, datetime
from sqlalchemy.orm import Session

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import DailyStatistic


class DailyStatisticRepository(BaseCRUD):
    """每日统计 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get(self, stat_date: date, service_id: int,
            session: Optional[Session] = None) -> Optional[DailyStatistic]:
        """获取指定 (日期, 服务) 的统计行。"""
        def _query(sess):
            return sess.query(DailyStatistic).filter(
                DailyStatistic.date == stat_date,
                DailyStatistic.service_id == service_id
            ).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def add_sample(self, stat_date: date, service_id: int,
                   wait_minutes: int, session: Session) -> DailyStatistic:
        """增量累加一个等待时长样本。

        已存在则按 (旧均值*旧人数 + 新样本) / (旧人数 + 1) 更新均值并累加人数，
        否则插入 人数=1、均值=新样本 的新行。
        """
        existing = self.get(stat_date, service_id, session=session)
        now = datetime.now()

        if existing:
            old_count = existing.total_served or 0
            old_avg = existing.avg_wait_time or 0.0
            existing.avg_wait_time = (
                (old_avg * old_count + wait_minutes) / (old_count + 1)
            )
            existing.total_served = old_count + 1
            existing.updated_at = now
            session.flush()
            return existing

        stat = DailyStatistic(
            date=stat_date,
            service_id=service_id,
            total_served=1,
            avg_wait_time=float(wait_minutes),
            created_at=now,
            updated_at=now,
        )
        session.add(stat)
        session.flush()
        return stat

    def replace(self, stat_date: date, service_id: int, total_served: int,
                avg_wait_time: float, session: Session) -> DailyStatistic:
        """用重新计算的值覆盖统计行（幂等，不存在则创建）。"""
        existing = self.get(stat_date, service_id, session=session)
        if existing:
            existing.total_served = total_served
            existing.avg_wait_time = avg_wait_time
            existing.updated_at = datetime.now()
            session.flush()
            return existing

        stat = DailyStatistic(
            date=stat_date, service_id=service_id,
            total_served=total_served, avg_wait_time=avg_wait_time
        )
        session.add(stat)
        session.flush()
        return stat

    def list_on(self, stat_date: date,
                session: Optional[Session] = None) -> List[DailyStatistic]:
        """获取某日全部服务的统计行。"""
        return self.get_all(DailyStatistic, filters={"date": stat_date},
                            order_by=DailyStatistic.service_id,
                            session=session)

    def list_between(self, start: date, end: date,
                     service_id: Optional[int] = None,
                     session: Optional[Session] = None
                     ) -> List[DailyStatistic]:
        """获取 [start, end] 闭区间内的统计行（按日期升序）。"""
        def _query(sess):
            query = sess.query(DailyStatistic).filter(
                DailyStatistic.date >= start,
                DailyStatistic.date <= end
            )
            if service_id is not None:
                query = query.filter(DailyStatistic.service_id == service_id)
            return query.order_by(
                DailyStatistic.date.asc(), DailyStatistic.service_id.asc()
            ).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)
