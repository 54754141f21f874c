"""票号生命周期引擎 - 取号、到场、叫号、过号

负责：
- 生成票号（服务前缀 + YYMMDD + 按 (服务, 日) 递增的 3 位序号）
- 票号状态流转（委托 ticket_status.transition 校验）
- 叫号选择：现场队列优先，其次过号队列，各自按创建时间先进先出

并发约定：
- 取号持有 user 锁（唯一有效票号检查）与 service 锁（序号生成）
- 叫号/过号持有 service 锁，同一服务的多个窗口不会选中同一张票，
  同一窗口也不会同时存在两张办理中的票

每次变更提交成功后通过 EventBus 发布事件，由推送中心负责投递。
"""
from dataclasses import dataclass
from datetime import datetime, date
from typing import Callable, List, Optional

from loguru import logger

from database import DatabaseManager
from database.models import Service, Ticket, TicketStatus, UserRole
from .errors import Forbidden, InvalidState, NotFound, Conflict, ValidationError, store_errors
from .events import ChangeEvent, EventBus, ProjectionKind
from .locks import KeyedLock, service_key, user_key
from .statistics import StatisticsAggregator
from .ticket_status import transition

STAFF_ROLES = frozenset({UserRole.COUNTER_STAFF, UserRole.ADMIN})

NO_CUSTOMERS_WAITING = "No customers waiting"


def ticket_prefix(service_name: str) -> str:
    """服务名前两个字符，转大写。"""
    return service_name.strip()[:2].upper()


def format_ticket_number(service_name: str, day: date, sequence: int) -> str:
    """拼接票号，如 ('Billing', 2026-10-19, 1) → 'BI261019001'。"""
    return f"{ticket_prefix(service_name)}{day:%y%m%d}{sequence:03d}"


def parse_sequence(ticket_number: str, service_name: str) -> Optional[int]:
    """从票号中解析序号（前缀与日期之后的全部数字），无法解析时返回 None。"""
    tail = ticket_number[len(ticket_prefix(service_name)) + 6:]
    return int(tail) if tail.isdigit() else None


def require_staff(requesting_role) -> UserRole:
    """叫号类操作只允许窗口工作人员和管理员。"""
    try:
        role = UserRole(requesting_role)
    except ValueError:
        raise Forbidden("Access denied. Counter staff only.")
    if role not in STAFF_ROLES:
        raise Forbidden("Access denied. Counter staff only.")
    return role


@dataclass
class CallNextResult:
    """叫号结果

    Attributes:
        ticket: 新进入 serving 的票号；为 None 表示无人等待
        finished: 本次叫号顺带办结的上一张票号（如有）
    """
    ticket: Optional[Ticket] = None
    finished: Optional[Ticket] = None

    @property
    def no_customers_waiting(self) -> bool:
        return self.ticket is None


class TicketLifecycleEngine:
    """票号生命周期引擎

    Attributes:
        db: 数据库管理器
        events: 变更事件总线
        statistics: 统计聚合器
        locks: 键控锁注册表
    """

    def __init__(
        self,
        db: DatabaseManager,
        events: EventBus,
        statistics: Optional[StatisticsAggregator] = None,
        locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            db: 数据库管理器
            events: 事件总线，变更成功后在此发布
            statistics: 统计聚合器，默认基于同一 db/events 创建
            locks: 键控锁，与其他组件共享时传入
            clock: 时间源，测试时可注入固定时间
        """
        self.db = db
        self.events = events
        self.statistics = statistics or StatisticsAggregator(db, events)
        self.locks = locks or KeyedLock()
        self.clock = clock

    # -------------------- 取号 --------------------

    def create_virtual_ticket(self, user_id: int, service_id: int) -> Ticket:
        """为用户在指定服务下线上取号。

        Raises:
            ValidationError: 缺少 user_id / service_id
            NotFound: 服务或用户不存在
            Conflict: 用户已有未办结的票号
        """
        if not user_id:
            raise ValidationError("User ID is required")
        if not service_id:
            raise ValidationError("Service ID is required")

        with self.locks.hold(user_key(user_id), service_key(service_id)):
            with store_errors("create ticket"), self.db.session_scope() as session:
                service = self.db.services.get(service_id, session=session)
                if service is None:
                    raise NotFound("Service not found")
                if self.db.users.get(user_id, session=session) is None:
                    raise NotFound("User not found")

                existing = self.db.tickets.get_active_for_user(
                    user_id, session=session
                )
                if existing is not None:
                    raise Conflict("You already have an active ticket")

                now = self.clock()
                ticket = Ticket(
                    ticket_number=self._next_ticket_number(service, now, session),
                    service_id=service_id,
                    user_id=user_id,
                    status=TicketStatus.VIRTUAL,
                    created_at=now,
                    updated_at=now,
                )
                self.db.tickets.add(ticket, session)

        logger.info(
            f"取号成功: {ticket.ticket_number} (user={user_id}, service={service_id})"
        )
        self.events.publish(ChangeEvent.of("ticket_created", ProjectionKind.QUEUE))
        return ticket

    def _next_ticket_number(self, service: Service, now: datetime,
                            session) -> str:
        last = self.db.tickets.get_last_for_service_on(
            service.id, now.date(), session=session
        )
        sequence = 1
        if last is not None:
            last_sequence = parse_sequence(last.ticket_number, service.name)
            if last_sequence is not None:
                sequence = last_sequence + 1
        return format_ticket_number(service.name, now.date(), sequence)

    # -------------------- 到场 --------------------

    def mark_present(self, ticket_id: int, requesting_user_id: int) -> Ticket:
        """用户确认到场：virtual → physical。

        Raises:
            NotFound: 票号不存在
            Forbidden: 票号不属于请求用户
            InvalidState: 票号不是 virtual 状态
        """
        if not ticket_id:
            raise ValidationError("Ticket ID is required")

        with self.locks.hold(user_key(requesting_user_id)):
            with store_errors("mark ticket present"), self.db.session_scope() as session:
                ticket = self.db.tickets.get(ticket_id, session=session)
                if ticket is None:
                    raise NotFound("Ticket not found")
                if ticket.user_id != requesting_user_id:
                    raise Forbidden("Not authorized")
                if ticket.status != TicketStatus.VIRTUAL:
                    raise InvalidState("Ticket is not in virtual status")
                transition(ticket, TicketStatus.PHYSICAL, now=self.clock())

        logger.info(f"用户已到场: {ticket.ticket_number}")
        self.events.publish(ChangeEvent.of("ticket_present", ProjectionKind.QUEUE))
        return ticket

    # -------------------- 叫号 --------------------

    def call_next(self, counter_id: int, service_id: int,
                  requesting_role) -> CallNextResult:
        """窗口叫下一位。

        1. 窗口正在办理的票号 → served，并计入统计
        2. 该服务最早的 physical 票号 → serving
        3. 否则最早的 missed 票号 → serving
        4. 否则无人等待（无状态变化，不发布事件）

        Raises:
            Forbidden: 角色不是窗口工作人员或管理员
            InvalidState: 窗口不存在或不属于该服务
        """
        require_staff(requesting_role)
        if not counter_id or not service_id:
            raise ValidationError("Counter ID and Service ID are required")

        result = CallNextResult()
        with self.locks.hold(service_key(service_id)):
            with store_errors("call next customer"), self.db.session_scope() as session:
                self._require_counter(counter_id, service_id, session)
                now = self.clock()

                current = self.db.tickets.get_serving_at_counter(
                    counter_id, session=session
                )
                if current is not None:
                    transition(current, TicketStatus.SERVED, now=now)
                    self.statistics.record_served(
                        current.service_id, current.created_at, now,
                        session=session
                    )
                    result.finished = current

                for status in (TicketStatus.PHYSICAL, TicketStatus.MISSED):
                    candidate = self.db.tickets.get_oldest_with_status(
                        service_id, status, session=session
                    )
                    if candidate is not None:
                        transition(candidate, TicketStatus.SERVING, now=now,
                                   counter_id=counter_id)
                        result.ticket = candidate
                        break

        events: List[ChangeEvent] = []
        if result.finished is not None:
            logger.info(
                f"办结: {result.finished.ticket_number} (counter={counter_id})"
            )
            events.append(ChangeEvent.of(
                "ticket_served", ProjectionKind.QUEUE, ProjectionKind.STATISTICS
            ))
        if result.ticket is not None:
            logger.info(
                f"叫号: {result.ticket.ticket_number} → counter={counter_id}"
            )
            events.append(ChangeEvent.of("ticket_called", ProjectionKind.QUEUE))
        else:
            logger.info(f"{NO_CUSTOMERS_WAITING} (service={service_id}, counter={counter_id})")

        self.events.publish_all(events)
        return result

    def skip_current(self, counter_id: int, service_id: int,
                     requesting_role) -> Ticket:
        """窗口过号：正在办理的票号 serving → missed。

        过号票号保留原窗口作为历史记录，之后在现场队列为空时会被重新叫到。

        Raises:
            Forbidden: 角色不是窗口工作人员或管理员
            InvalidState: 窗口不属于该服务，或当前没有正在办理的票号
        """
        require_staff(requesting_role)
        if not counter_id or not service_id:
            raise ValidationError("Counter ID and Service ID are required")

        with self.locks.hold(service_key(service_id)):
            with store_errors("skip ticket"), self.db.session_scope() as session:
                self._require_counter(counter_id, service_id, session)
                current = self.db.tickets.get_serving_at_counter(
                    counter_id, session=session
                )
                if current is None:
                    raise InvalidState("No ticket is being served at this counter")
                transition(current, TicketStatus.MISSED, now=self.clock())

        logger.info(f"过号: {current.ticket_number} (counter={counter_id})")
        self.events.publish(ChangeEvent.of("ticket_missed", ProjectionKind.QUEUE))
        return current

    def _require_counter(self, counter_id: int, service_id: int, session):
        counter = self.db.counters.get_for_service(
            counter_id, service_id, session=session
        )
        if counter is None:
            raise InvalidState(
                "Counter not found or does not belong to this service"
            )
        return counter
