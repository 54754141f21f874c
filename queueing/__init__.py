"""排队核心模块 - 票号状态机与实时同步

核心组件：
- TicketLifecycleEngine: 取号、到场、叫号、过号
- StatisticsAggregator: 每日统计的增量维护与校对
- QueryFacade: 只读投影（轮询与推送共用）
- AdminOperations: 服务/窗口管理
- EventBus: 变更事件总线

数据流：
    请求 ──→ 引擎/管理操作 ──→ 提交 ──→ EventBus ──→ 推送中心 ──→ 所有观察端
"""
from queueing.errors import (
    QueueError, NotFound, Conflict, Forbidden, InvalidState,
    ValidationError, InternalError,
)
from queueing.events import ChangeEvent, EventBus, ProjectionKind
from queueing.locks import KeyedLock
from queueing.statistics import StatisticsAggregator
from queueing.lifecycle import CallNextResult, TicketLifecycleEngine
from queueing.admin import AdminOperations
from queueing.query import QueryFacade

__all__ = [
    # 错误
    "QueueError",
    "NotFound",
    "Conflict",
    "Forbidden",
    "InvalidState",
    "ValidationError",
    "InternalError",
    # 事件
    "ChangeEvent",
    "EventBus",
    "ProjectionKind",
    # 核心
    "KeyedLock",
    "StatisticsAggregator",
    "TicketLifecycleEngine",
    "CallNextResult",
    "AdminOperations",
    "QueryFacade",
]
