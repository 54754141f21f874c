"""用户接口模块 - 传输通道、认证与实时推送

核心组件：
- Channel: 传输通道抽象基类
- WebChannel: REST + WebSocket 通道（FastAPI + uvicorn）
- BroadcastHub: 实时推送中心
- Viewer / PushMessage: 观察端与推送消息格式
- AuthBackend / LocalTokenAuth: 认证边界

架构设计：
    客户端 ──→ WebChannel ──→ 引擎/管理操作 ──→ EventBus ──→ BroadcastHub ──→ 所有观察端

使用示例：
    ```python
    from interface import BroadcastHub, LocalTokenAuth, WebChannel

    hub = BroadcastHub(query)
    events.subscribe(hub.handle_event)
    channel = WebChannel(engine, admin, query, hub, LocalTokenAuth(db))
    await channel.startup()
    ```
"""
from interface.base import Channel, Identity, PushMessage, Viewer
from interface.auth import AuthBackend, LocalTokenAuth, Unauthorized
from interface.hub import BroadcastHub
from interface.web.channel import WebChannel, WebSocketViewer

__all__ = [
    # 核心
    "Channel",
    "Identity",
    "PushMessage",
    "Viewer",
    "BroadcastHub",
    # 认证
    "AuthBackend",
    "LocalTokenAuth",
    "Unauthorized",
    # 通道
    "WebChannel",
    "WebSocketViewer",
]
