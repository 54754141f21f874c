"""接口通道抽象层 - 传输通道与实时观察端协议

核心概念：
- Channel: 传输通道抽象基类（Web 等），负责启动/停止服务
- Viewer: 一个已连接的实时观察端（如一个 WebSocket 连接）
- PushMessage: 推送给观察端的统一消息格式

设计原则：
- 通道只负责传输和格式转换，业务逻辑在 queueing 模块中
- 观察端只接收推送，不区分角色；身份信息仅供参考
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from queueing.events import ProjectionKind


@dataclass
class Identity:
    """已认证的身份

    Attributes:
        user_id: 用户ID
        name: 显示名称
        role: 角色（customer / counter_staff / admin）
    """
    user_id: int
    name: str
    role: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.user_id, "name": self.name, "role": self.role}


@dataclass
class PushMessage:
    """统一推送消息格式

    Attributes:
        kind: 投影类型，决定客户端收到的消息名
        payload: 完整投影数据（不是增量）
        timestamp: 生成时间
    """
    kind: ProjectionKind
    payload: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "data": self.payload}


class Viewer(ABC):
    """实时观察端抽象基类

    每个 Viewer 代表一个已连接的客户端会话。推送中心只通过 send()
    与其交互，具体传输（WebSocket、测试替身等）由子类实现。
    """

    def __init__(self, viewer_id: str):
        self.viewer_id = viewer_id
        self.identity: Optional[Identity] = None
        self.connected_at = datetime.now()

    @abstractmethod
    async def send(self, message: PushMessage):
        """发送一条推送消息，失败时直接抛出异常由调用方记录"""
        pass

    async def close(self):
        """关闭连接（默认无操作）"""
        pass


class Channel(ABC):
    """传输通道抽象基类

    使用方式：
        ```python
        channel = WebChannel(engine=engine, query=query, hub=hub, auth=auth)
        await channel.startup()
        ```
    """

    def __init__(self, name: str):
        """
        Args:
            name: 通道名称标识（如 'web'）
        """
        self.name = name
        self.running = False

    @abstractmethod
    async def startup(self):
        """启动通道

        启动成功后应设置 self.running = True。
        """
        pass

    @abstractmethod
    async def shutdown(self):
        """关闭通道

        关闭后应设置 self.running = False。
        """
        pass

    @property
    def is_running(self) -> bool:
        """检查通道是否正在运行"""
        return self.running
