"""变更事件总线 - 业务变更与推送投递之间的解耦层

每次变更成功提交后，业务层发布一个 ChangeEvent，声明哪些投影需要刷新；
实时推送中心订阅事件并负责投递。业务逻辑因此不依赖任何传输通道，
测试时只需订阅总线即可断言发出了哪些事件。
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, FrozenSet, Iterable, List

from loguru import logger


class ProjectionKind(Enum):
    """推送消息类型（值即客户端收到的消息名）"""
    QUEUE = "queueUpdate"
    SERVICES = "serviceUpdate"
    COUNTERS = "counterUpdate"
    STATISTICS = "statisticsUpdate"


# 推送顺序固定，便于客户端按序渲染
PROJECTION_ORDER = (
    ProjectionKind.QUEUE,
    ProjectionKind.SERVICES,
    ProjectionKind.COUNTERS,
    ProjectionKind.STATISTICS,
)


@dataclass(frozen=True)
class ChangeEvent:
    """一次变更需要刷新的投影集合

    Attributes:
        kinds: 受影响的投影类型
        reason: 触发原因（如 'ticket_created'），用于日志
        timestamp: 事件时间
    """
    kinds: FrozenSet[ProjectionKind]
    reason: str
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def of(cls, reason: str, *kinds: ProjectionKind) -> "ChangeEvent":
        return cls(kinds=frozenset(kinds), reason=reason)

    def ordered_kinds(self) -> List[ProjectionKind]:
        return [k for k in PROJECTION_ORDER if k in self.kinds]


EventHandler = Callable[[ChangeEvent], None]


class EventBus:
    """同步事件总线

    订阅者在发布线程中被依次调用。单个订阅者抛出的异常只记录日志，
    不影响其他订阅者，也不会回滚已提交的变更。
    """

    def __init__(self) -> None:
        self._handlers: List[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def publish(self, event: ChangeEvent) -> None:
        if not event.kinds:
            return
        logger.debug(
            f"发布变更事件: {event.reason} -> "
            f"{[k.value for k in event.ordered_kinds()]}"
        )
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.warning(f"事件处理器出错 ({event.reason}): {e}")

    def publish_all(self, events: Iterable[ChangeEvent]) -> None:
        """合并多个事件后一次发布（同一投影只刷新一次）。"""
        events = list(events)
        if not events:
            return
        kinds = frozenset().union(*(e.kinds for e in events))
        reason = "+".join(dict.fromkeys(e.reason for e in events))
        self.publish(ChangeEvent(kinds=kinds, reason=reason))
