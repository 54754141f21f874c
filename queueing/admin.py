"""管理操作 - 服务与窗口的增删

只有管理员可以执行。删除为硬删除：
- 删除服务 → 级联删除其窗口、票号和每日统计
- 删除窗口 → 票号保留，counter_id 置空
"""
from typing import Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError

from database import DatabaseManager
from database.models import Counter, Service, UserRole
from .errors import Conflict, Forbidden, NotFound, ValidationError, store_errors
from .events import ChangeEvent, EventBus, ProjectionKind


def require_admin(requesting_role) -> None:
    if requesting_role not in (UserRole.ADMIN, UserRole.ADMIN.value):
        raise Forbidden("Access denied. Admin only.")


class AdminOperations:
    """服务/窗口管理

    Attributes:
        db: 数据库管理器
        events: 变更事件总线
    """

    def __init__(self, db: DatabaseManager, events: EventBus):
        self.db = db
        self.events = events

    def create_service(self, name: Optional[str], requesting_role) -> Service:
        """创建服务。

        Raises:
            Forbidden: 非管理员
            ValidationError: 名称为空
            Conflict: 名称已存在
        """
        require_admin(requesting_role)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Service name is required")

        with store_errors("create service"), self.db.session_scope() as session:
            if self.db.services.get_by_name(name, session=session) is not None:
                raise Conflict("Service already exists")
            try:
                service = self.db.services.create(name, session=session)
            except IntegrityError as e:
                # 并发创建同名服务时由唯一约束兜底
                raise Conflict("Service already exists") from e

        logger.info(f"服务已创建: {service.name} (id={service.id})")
        self.events.publish(ChangeEvent.of("service_created", ProjectionKind.SERVICES))
        return service

    def delete_service(self, service_id: int, requesting_role) -> None:
        """删除服务及其窗口、票号、统计。"""
        require_admin(requesting_role)

        with store_errors("delete service"), self.db.session_scope() as session:
            if not self.db.services.delete(service_id, session=session):
                raise NotFound("Service not found")

        logger.info(f"服务已删除: id={service_id}")
        self.events.publish(ChangeEvent.of(
            "service_deleted",
            ProjectionKind.SERVICES, ProjectionKind.COUNTERS,
            ProjectionKind.QUEUE, ProjectionKind.STATISTICS,
        ))

    def create_counter(self, name: Optional[str], room_number: Optional[str],
                       service_id: Optional[int], requesting_role) -> Counter:
        """创建窗口并绑定到服务。

        Raises:
            Forbidden: 非管理员
            ValidationError: 名称、房间号或服务ID缺失
            NotFound: 服务不存在
        """
        require_admin(requesting_role)
        name = (name or "").strip()
        room_number = (room_number or "").strip()
        if not name:
            raise ValidationError("Counter name is required")
        if not room_number:
            raise ValidationError("Room number is required")
        if not service_id:
            raise ValidationError("Service ID is required")

        with store_errors("create counter"), self.db.session_scope() as session:
            if self.db.services.get(service_id, session=session) is None:
                raise NotFound("Service not found")
            counter = self.db.counters.create(name, room_number, service_id,
                                              session=session)

        logger.info(
            f"窗口已创建: {counter.name} ({counter.room_number}) "
            f"→ service={service_id}"
        )
        self.events.publish(ChangeEvent.of("counter_created", ProjectionKind.COUNTERS))
        return counter

    def delete_counter(self, counter_id: int, requesting_role) -> None:
        """删除窗口，关联票号的窗口引用置空。"""
        require_admin(requesting_role)

        with store_errors("delete counter"), self.db.session_scope() as session:
            if not self.db.counters.delete(counter_id, session=session):
                raise NotFound("Counter not found")

        logger.info(f"窗口已删除: id={counter_id}")
        self.events.publish(ChangeEvent.of(
            "counter_deleted", ProjectionKind.COUNTERS, ProjectionKind.QUEUE
        ))
