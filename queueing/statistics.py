"""统计聚合器 - 增量维护每日服务统计

每当票号办结，按 (办结日期, 服务) 增量更新已办结人数与平均等待时长。
这是简单的增量均值，不保存单个票号的等待样本。

另提供 reconcile()：用票号记录重新计算某日统计，修正增量值的偏差，
由定时任务在每日结束前调用。
"""
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import DatabaseManager
from database.models import DailyStatistic, Ticket
from .errors import InternalError, store_errors
from .events import ChangeEvent, EventBus, ProjectionKind


def wait_minutes(created_at: datetime, served_at: datetime) -> int:
    """等待时长（整分钟，向下取整，不小于 0）。"""
    seconds = (served_at - created_at).total_seconds()
    return max(0, int(seconds // 60))


def summarize_waits(tickets: Iterable[Ticket]) -> Tuple[int, float]:
    """汇总一组已办结票号，返回 (人数, 平均等待分钟)。"""
    waits = [wait_minutes(t.created_at, t.served_at)
             for t in tickets if t.served_at is not None]
    if not waits:
        return 0, 0.0
    return len(waits), sum(waits) / len(waits)


class StatisticsAggregator:
    """每日统计聚合器

    Attributes:
        db: 数据库管理器
        events: 变更事件总线
    """

    def __init__(self, db: DatabaseManager, events: EventBus):
        self.db = db
        self.events = events

    def record_served(self, service_id: int, created_at: datetime,
                      served_at: datetime,
                      session: Optional[Session] = None) -> DailyStatistic:
        """记录一次办结。

        传入 session 时在调用方事务内执行，由调用方提交并负责发布统计事件；
        否则自行提交并立即发布 statisticsUpdate。

        Args:
            service_id: 服务ID
            created_at: 票号创建时间
            served_at: 办结时间

        Returns:
            更新后的 DailyStatistic
        """
        minutes = wait_minutes(created_at, served_at)
        stat_date = served_at.date()

        if session is not None:
            stat = self.db.statistics.add_sample(
                stat_date, service_id, minutes, session=session
            )
            logger.debug(
                f"统计累加: service={service_id} date={stat_date} "
                f"wait={minutes}min count={stat.total_served}"
            )
            return stat

        with store_errors("record statistics"), self.db.session_scope() as sess:
            stat = self.db.statistics.add_sample(
                stat_date, service_id, minutes, session=sess
            )

        self.events.publish(
            ChangeEvent.of("ticket_served", ProjectionKind.STATISTICS)
        )
        return stat

    def reconcile(self, day: Optional[date] = None) -> List[Dict[str, Any]]:
        """用票号记录重新计算某日统计并修正偏差。

        只处理当天有办结记录的服务；没有票号记录支撑的统计行保持不变。

        Args:
            day: 目标日期，默认今天

        Returns:
            被修正的行列表，每项包含存储值与实际值
        """
        day = day or date.today()
        corrected: List[Dict[str, Any]] = []

        try:
            with self.db.session_scope() as session:
                by_service: Dict[int, List[Ticket]] = {}
                for ticket in self.db.tickets.list_served_on(day, session=session):
                    by_service.setdefault(ticket.service_id, []).append(ticket)

                for service_id, tickets in by_service.items():
                    count, avg = summarize_waits(tickets)
                    stored = self.db.statistics.get(day, service_id,
                                                    session=session)
                    stored_count = stored.total_served if stored else 0
                    stored_avg = stored.avg_wait_time if stored else 0.0
                    if stored_count == count and abs(stored_avg - avg) < 1e-6:
                        continue

                    logger.warning(
                        f"统计偏差: service={service_id} date={day} "
                        f"存储=({stored_count}, {stored_avg:.2f}) "
                        f"实际=({count}, {avg:.2f})"
                    )
                    self.db.statistics.replace(day, service_id, count, avg,
                                               session=session)
                    corrected.append({
                        "service_id": service_id,
                        "date": day.isoformat(),
                        "stored_count": stored_count,
                        "stored_avg": stored_avg,
                        "actual_count": count,
                        "actual_avg": avg,
                    })
        except SQLAlchemyError as e:
            logger.error(f"统计校对失败: {e}")
            raise InternalError("Failed to reconcile statistics") from e

        logger.info(f"统计校对完成: date={day}, 修正 {len(corrected)} 行")
        if corrected:
            self.events.publish(
                ChangeEvent.of("statistics_reconciled", ProjectionKind.STATISTICS)
            )
        return corrected
