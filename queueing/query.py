"""查询门面 - 只读投影

为轮询请求与实时推送提供同一份投影数据：
- 队列状态：virtual / physical 列表 + 各窗口正在办理的票号
- 服务列表、窗口列表
- 统计：今日数据直接由票号记录计算；历史日期读取每日统计表

所有投影都是 JSON 友好的字典，键名使用 camelCase，
时间字段使用 ISO 8601 字符串。
"""
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from database import DatabaseManager
from database.models import Counter, DailyStatistic, Service, Ticket, TicketStatus
from .errors import NotFound, store_errors
from .events import ProjectionKind
from .statistics import summarize_waits


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def ticket_to_dict(ticket: Ticket) -> Dict[str, Any]:
    """票号投影（需在会话内调用以加载关联的用户/服务/窗口）。"""
    counter = ticket.counter
    return {
        "id": ticket.id,
        "ticketNumber": ticket.ticket_number,
        "serviceId": ticket.service_id,
        "userId": ticket.user_id,
        "status": TicketStatus(ticket.status).value,
        "counterId": ticket.counter_id,
        "createdAt": _iso(ticket.created_at),
        "updatedAt": _iso(ticket.updated_at),
        "servedAt": _iso(ticket.served_at),
        "customerName": ticket.user.name if ticket.user else None,
        "serviceName": ticket.service.name if ticket.service else None,
        "counterName": counter.name if counter else None,
        "roomNumber": counter.room_number if counter else None,
    }


def service_to_dict(service: Service) -> Dict[str, Any]:
    return {
        "id": service.id,
        "name": service.name,
        "createdAt": _iso(service.created_at),
    }


def counter_to_dict(counter: Counter) -> Dict[str, Any]:
    return {
        "id": counter.id,
        "name": counter.name,
        "roomNumber": counter.room_number,
        "serviceId": counter.service_id,
        "serviceName": counter.service.name if counter.service else None,
        "createdAt": _iso(counter.created_at),
    }


def _history_entry(day: date, total: int, avg: float) -> Dict[str, Any]:
    return {"date": day.isoformat(), "totalServed": total, "avgWaitTime": avg}


def _weighted_average(rows: Iterable[DailyStatistic]) -> float:
    """按办结人数加权的平均等待时长。"""
    rows = list(rows)
    total = sum(r.total_served for r in rows)
    if not total:
        return 0.0
    return sum(r.avg_wait_time * r.total_served for r in rows) / total


class QueryFacade:
    """只读查询门面

    Attributes:
        db: 数据库管理器
        clock: 时间源，决定"今天"是哪一天
    """

    def __init__(self, db: DatabaseManager,
                 clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock

    def today(self) -> date:
        return self.clock().date()

    # ==================== 队列 ====================

    def queue_status(self) -> Dict[str, Any]:
        """当前队列状态。

        Returns:
            {virtualTickets: [...], physicalTickets: [...],
             currentServing: {counterId: ticket}}
        """
        with store_errors("read queue status"), self.db.get_session() as session:
            virtual = self.db.tickets.list_by_status(
                [TicketStatus.VIRTUAL], session=session
            )
            physical = self.db.tickets.list_by_status(
                [TicketStatus.PHYSICAL], session=session
            )
            serving = self.db.tickets.list_by_status(
                [TicketStatus.SERVING], session=session
            )
            return {
                "virtualTickets": [ticket_to_dict(t) for t in virtual],
                "physicalTickets": [ticket_to_dict(t) for t in physical],
                "currentServing": {
                    t.counter_id: ticket_to_dict(t)
                    for t in serving if t.counter_id is not None
                },
            }

    def user_active_ticket(self, user_id: int) -> Optional[Dict[str, Any]]:
        """用户当前未办结的票号，没有则返回 None。"""
        with store_errors("read user ticket"), self.db.get_session() as session:
            ticket = self.db.tickets.get_active_for_user(user_id, session=session)
            return ticket_to_dict(ticket) if ticket else None

    def get_ticket(self, ticket_id: int) -> Dict[str, Any]:
        with store_errors("read ticket"), self.db.get_session() as session:
            ticket = self.db.tickets.get(ticket_id, session=session)
            if ticket is None:
                raise NotFound("Ticket not found")
            return ticket_to_dict(ticket)

    # ==================== 服务 / 窗口 ====================

    def list_services(self) -> List[Dict[str, Any]]:
        with store_errors("read services"), self.db.get_session() as session:
            return [service_to_dict(s)
                    for s in self.db.services.list_all(session=session)]

    def get_service(self, service_id: int) -> Dict[str, Any]:
        with store_errors("read service"), self.db.get_session() as session:
            service = self.db.services.get(service_id, session=session)
            if service is None:
                raise NotFound("Service not found")
            return service_to_dict(service)

    def list_counters(self, service_id: Optional[int] = None
                      ) -> List[Dict[str, Any]]:
        """窗口列表，可按服务过滤。"""
        with store_errors("read counters"), self.db.get_session() as session:
            return [counter_to_dict(c) for c in
                    self.db.counters.list_all(service_id, session=session)]

    def get_counter(self, counter_id: int) -> Dict[str, Any]:
        with store_errors("read counter"), self.db.get_session() as session:
            counter = self.db.counters.get(counter_id, session=session)
            if counter is None:
                raise NotFound("Counter not found")
            return counter_to_dict(counter)

    # ==================== 统计 ====================

    def _live_summary(self, day: date, session: Session) -> Dict[str, Any]:
        """由票号记录直接计算某日统计（覆盖全部服务，无办结的服务记 0）。"""
        served = self.db.tickets.list_served_on(day, session=session)
        by_service: Dict[int, List[Ticket]] = defaultdict(list)
        for ticket in served:
            by_service[ticket.service_id].append(ticket)

        total, overall_avg = summarize_waits(served)
        served_by_service: Dict[int, int] = {}
        avg_by_service: Dict[int, float] = {}
        for service in self.db.services.list_all(session=session):
            count, avg = summarize_waits(by_service.get(service.id, []))
            served_by_service[service.id] = count
            avg_by_service[service.id] = avg

        return {
            "totalServedToday": total,
            "overallAvgWaitTime": overall_avg,
            "servedTodayByService": served_by_service,
            "avgWaitTimeByService": avg_by_service,
        }

    def statistics_today(self) -> Dict[str, Any]:
        """今日统计（实时由票号记录计算）。"""
        with store_errors("read statistics"), self.db.get_session() as session:
            return self._live_summary(self.today(), session)

    def statistics_for_date(self, day: date) -> Dict[str, Any]:
        """某日统计及按小时的办结分布。

        今日读取票号记录；历史日期读取每日统计表。
        """
        with store_errors("read daily statistics"), self.db.get_session() as session:
            services = self.db.services.list_all(session=session)
            served = self.db.tickets.list_served_on(day, session=session)

            if day == self.today():
                live = self._live_summary(day, session)
                total = live["totalServedToday"]
                avg = live["overallAvgWaitTime"]
                service_stats = [{
                    "serviceId": s.id,
                    "serviceName": s.name,
                    "servedCount": live["servedTodayByService"][s.id],
                    "avgWaitTime": live["avgWaitTimeByService"][s.id],
                } for s in services]
            else:
                rows = {r.service_id: r for r in
                        self.db.statistics.list_on(day, session=session)}
                total = sum(r.total_served for r in rows.values())
                avg = _weighted_average(rows.values())
                service_stats = [{
                    "serviceId": s.id,
                    "serviceName": s.name,
                    "servedCount": rows[s.id].total_served if s.id in rows else 0,
                    "avgWaitTime": rows[s.id].avg_wait_time if s.id in rows else 0.0,
                } for s in services]

            hourly: Dict[str, int] = defaultdict(int)
            for ticket in served:
                hourly[f"{ticket.served_at.hour:02d}"] += 1

            return {
                "date": day.isoformat(),
                "totalServed": total,
                "avgWaitTime": avg,
                "serviceStats": service_stats,
                "hourlyStats": [{"hour": h, "count": hourly[h]}
                                for h in sorted(hourly)],
            }

    def _history(self, start: date, end: date, session: Session,
                 service_id: Optional[int] = None) -> Dict[str, Any]:
        rows = self.db.statistics.list_between(start, end, service_id=service_id,
                                               session=session)
        by_date: Dict[date, List[DailyStatistic]] = defaultdict(list)
        by_service: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
        for row in rows:
            by_date[row.date].append(row)
            by_service[row.service_id].append(
                _history_entry(row.date, row.total_served, row.avg_wait_time)
            )

        overall = [
            _history_entry(day, sum(r.total_served for r in day_rows),
                           _weighted_average(day_rows))
            for day, day_rows in sorted(by_date.items())
        ]
        return {"overall": overall, "byService": dict(by_service)}

    def statistics_for_range(self, start: date, end: date) -> Dict[str, Any]:
        """[start, end] 区间内的每日汇总与按服务的历史。"""
        if start > end:
            start, end = end, start
        with store_errors("read statistics range"), self.db.get_session() as session:
            history = self._history(start, end, session)
        return {"start": start.isoformat(), "end": end.isoformat(), **history}

    def statistics_for_service(self, service_id: int,
                               days: int = 30) -> Dict[str, Any]:
        """单个服务的今日实时数据与最近 days 天历史。"""
        today = self.today()
        with store_errors("read service statistics"), self.db.get_session() as session:
            service = self.db.services.get(service_id, session=session)
            if service is None:
                raise NotFound("Service not found")
            served = self.db.tickets.list_served_on(today, service_id=service_id,
                                                    session=session)
            count, avg = summarize_waits(served)
            history = self._history(today - timedelta(days=days), today,
                                    session, service_id=service_id)
            return {
                "service": service_to_dict(service),
                "totalServedToday": count,
                "avgWaitTimeToday": avg,
                "history": history["byService"].get(service_id, []),
            }

    def statistics_overview(self, days: int = 7) -> Dict[str, Any]:
        """今日统计 + 最近 days 天历史。"""
        today = self.today()
        with store_errors("read statistics overview"), self.db.get_session() as session:
            summary = self._live_summary(today, session)
            summary["historicalData"] = self._history(
                today - timedelta(days=days), today, session
            )
            return summary

    # ==================== 推送投影 ====================

    def projection(self, kind: ProjectionKind) -> Dict[str, Any]:
        """按推送消息类型计算完整投影。"""
        if kind is ProjectionKind.QUEUE:
            return self.queue_status()
        if kind is ProjectionKind.SERVICES:
            return {"services": self.list_services()}
        if kind is ProjectionKind.COUNTERS:
            return {"counters": self.list_counters()}
        if kind is ProjectionKind.STATISTICS:
            return {"statistics": self.statistics_today()}
        raise ValueError(f"Unknown projection kind: {kind}")


__all__ = [
    "QueryFacade",
    "ticket_to_dict",
    "service_to_dict",
    "counter_to_dict",
]
