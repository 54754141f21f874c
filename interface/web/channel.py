"""Web 通道 - REST 接口 + WebSocket 实时推送

基于 FastAPI 提供：
1. 认证接口（注册、登录、校验令牌）
2. 排队接口（取号、到场、叫号、过号、队列状态）
3. 服务/窗口管理接口
4. 统计接口（管理员）
5. WebSocket /ws：连接即收到四份快照，之后随每次变更收到推送

使用方式：
    ```python
    channel = WebChannel(engine, admin, query, hub, auth, port=8080)
    await channel.startup()
    ```
"""
import asyncio
import threading
import uuid
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Dict, Optional

from loguru import logger

from database.models import UserRole
from interface.auth import AuthBackend, LocalTokenAuth, Unauthorized
from interface.base import Channel, Identity, PushMessage, Viewer
from interface.hub import BroadcastHub
from queueing.admin import AdminOperations
from queueing.errors import Forbidden, QueueError, ValidationError
from queueing.lifecycle import NO_CUSTOMERS_WAITING, TicketLifecycleEngine
from queueing.query import QueryFacade, service_to_dict
from config.settings import settings

# 业务错误 → HTTP 状态码
STATUS_CODES = {
    "not_found": 404,
    "conflict": 409,
    "forbidden": 403,
    "invalid_state": 400,
    "validation_error": 422,
    "unauthorized": 401,
    "internal_error": 500,
}


def status_code_for(error: QueueError) -> int:
    return STATUS_CODES.get(error.code, 500)


def _int_field(data: Dict[str, Any], *keys: str) -> Optional[int]:
    """从请求体中读取整数字段，依次尝试多个键名（camelCase / snake_case）。"""
    for key in keys:
        value = data.get(key)
        if value is None or value == "":
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{key} must be an integer")
    return None


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError("Invalid date format. Use YYYY-MM-DD")


def _require_admin(identity: Identity):
    if identity.role != UserRole.ADMIN.value:
        raise Forbidden("Access denied. Admin only.")


class WebSocketViewer(Viewer):
    """WebSocket 观察端"""

    def __init__(self, websocket, viewer_id: Optional[str] = None):
        super().__init__(viewer_id or uuid.uuid4().hex)
        self.websocket = websocket
        self._send_lock = asyncio.Lock()

    async def send(self, message: PushMessage):
        await self.send_json(message.to_dict())

    async def send_json(self, data: Dict[str, Any]):
        async with self._send_lock:
            await self.websocket.send_json(data)

    async def close(self):
        await self.websocket.close()


class WebChannel(Channel):
    """Web 通道

    路由：
    - POST   /api/auth/register          → 注册
    - POST   /api/auth/login             → 登录
    - GET    /api/auth/verify            → 校验令牌
    - POST   /api/auth/logout            → 注销令牌
    - GET    /api/queue/status           → 队列状态
    - GET    /api/queue/user-ticket      → 当前用户的有效票号
    - POST   /api/queue/virtual-ticket   → 取号
    - POST   /api/queue/tickets/{id}/present → 确认到场
    - GET    /api/queue/tickets/{id}     → 票号详情
    - POST   /api/queue/next-customer    → 叫下一位（窗口工作人员）
    - POST   /api/queue/skip             → 过号（窗口工作人员）
    - GET    /api/services[/{id}]        → 服务
    - POST   /api/services               → 创建服务（管理员）
    - DELETE /api/services/{id}          → 删除服务（管理员）
    - GET    /api/counters[/{id}]        → 窗口
    - GET    /api/counters/service/{id}  → 某服务的窗口
    - POST   /api/counters               → 创建窗口（管理员）
    - DELETE /api/counters/{id}          → 删除窗口（管理员）
    - GET    /api/statistics             → 今日 + 近期历史（管理员）
    - GET    /api/statistics/daily/{date}   → 某日统计（管理员）
    - GET    /api/statistics/range       → 区间统计（管理员）
    - GET    /api/statistics/service/{id}   → 单个服务统计（管理员）
    - WS     /ws                         → 实时推送
    - GET    /health                     → 健康检查
    """

    def __init__(
        self,
        engine: TicketLifecycleEngine,
        admin: AdminOperations,
        query: QueryFacade,
        hub: BroadcastHub,
        auth: AuthBackend,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ):
        super().__init__("web")
        self.engine = engine
        self.admin = admin
        self.query = query
        self.hub = hub
        self.auth = auth
        self.host = host or settings.web_host
        self.port = port or settings.web_port
        self._server_thread: Optional[threading.Thread] = None
        self._server = None  # uvicorn.Server 实例
        self._server_loop = None  # 服务器事件循环
        self.app = self._create_app()

    def _create_app(self):
        """创建 FastAPI 应用"""
        from fastapi import (
            Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
        )
        from fastapi.responses import JSONResponse

        hub = self.hub

        @asynccontextmanager
        async def lifespan(app):
            hub.bind_loop(asyncio.get_running_loop())
            yield
            await hub.close_all()

        app = FastAPI(
            title="排队叫号系统",
            description="取号、叫号、服务管理与实时推送",
            version="1.0.0",
            lifespan=lifespan,
        )

        @app.exception_handler(QueueError)
        async def queue_error_handler(request: Request, exc: QueueError):
            status = status_code_for(exc)
            if status >= 500:
                logger.error(f"{request.method} {request.url.path} 失败: {exc.message}")
            return JSONResponse(status_code=status,
                                content={"code": exc.code, "message": exc.message})

        def bearer_token(request: Request) -> str:
            header = request.headers.get("Authorization", "")
            if header.startswith("Bearer "):
                return header[7:]
            return ""

        def current_identity(request: Request) -> Identity:
            """从请求头中校验令牌"""
            return self.auth.validate(bearer_token(request))

        def admin_identity(identity: Identity = Depends(current_identity)) -> Identity:
            _require_admin(identity)
            return identity

        # ==================== 认证 API ====================

        @app.post("/api/auth/register", status_code=201)
        def register(data: dict):
            """注册新用户并直接登录"""
            if not isinstance(self.auth, LocalTokenAuth):
                raise Forbidden("Registration is not available")
            contact = data.get("contact") or data.get("email")
            password = data.get("password", "")
            self.auth.register(
                data.get("name", ""), contact, password,
                role=data.get("role") or UserRole.CUSTOMER.value,
            )
            token, identity = self.auth.authenticate(contact, password)
            return {"token": token, "user": identity.to_dict()}

        @app.post("/api/auth/login")
        def login(data: dict):
            """登录认证"""
            contact = data.get("contact") or data.get("email") or ""
            token, identity = self.auth.authenticate(contact, data.get("password", ""))
            return {"token": token, "user": identity.to_dict()}

        @app.get("/api/auth/verify")
        def verify(identity: Identity = Depends(current_identity)):
            return {"user": identity.to_dict()}

        @app.post("/api/auth/logout")
        def logout(request: Request):
            self.auth.revoke(bearer_token(request))
            return {"success": True}

        # ==================== 排队 API ====================

        @app.get("/api/queue/status")
        def queue_status():
            return self.query.queue_status()

        @app.get("/api/queue/user-ticket")
        def user_ticket(identity: Identity = Depends(current_identity)):
            return self.query.user_active_ticket(identity.user_id)

        @app.get("/api/queue/tickets/{ticket_id}")
        def get_ticket(ticket_id: int):
            return self.query.get_ticket(ticket_id)

        @app.post("/api/queue/virtual-ticket", status_code=201)
        def create_virtual_ticket(data: dict,
                                  identity: Identity = Depends(current_identity)):
            ticket = self.engine.create_virtual_ticket(
                identity.user_id, _int_field(data, "serviceId", "service_id")
            )
            return self.query.get_ticket(ticket.id)

        @app.post("/api/queue/tickets/{ticket_id}/present")
        def mark_present(ticket_id: int,
                         identity: Identity = Depends(current_identity)):
            ticket = self.engine.mark_present(ticket_id, identity.user_id)
            return self.query.get_ticket(ticket.id)

        @app.post("/api/queue/next-customer")
        def next_customer(data: dict,
                          identity: Identity = Depends(current_identity)):
            result = self.engine.call_next(
                _int_field(data, "counterId", "counter_id"),
                _int_field(data, "serviceId", "service_id"),
                identity.role,
            )
            finished = (self.query.get_ticket(result.finished.id)
                        if result.finished is not None else None)
            if result.no_customers_waiting:
                return {"message": NO_CUSTOMERS_WAITING, "ticket": None,
                        "finished": finished}
            return {"ticket": self.query.get_ticket(result.ticket.id),
                    "finished": finished}

        @app.post("/api/queue/skip")
        def skip_current(data: dict,
                         identity: Identity = Depends(current_identity)):
            ticket = self.engine.skip_current(
                _int_field(data, "counterId", "counter_id"),
                _int_field(data, "serviceId", "service_id"),
                identity.role,
            )
            return self.query.get_ticket(ticket.id)

        # ==================== 服务 API ====================

        @app.get("/api/services")
        def list_services():
            return self.query.list_services()

        @app.get("/api/services/{service_id}")
        def get_service(service_id: int):
            return self.query.get_service(service_id)

        @app.post("/api/services", status_code=201)
        def create_service(data: dict,
                           identity: Identity = Depends(current_identity)):
            service = self.admin.create_service(data.get("name"), identity.role)
            return service_to_dict(service)

        @app.delete("/api/services/{service_id}")
        def delete_service(service_id: int,
                           identity: Identity = Depends(current_identity)):
            self.admin.delete_service(service_id, identity.role)
            return {"message": "Service removed"}

        # ==================== 窗口 API ====================

        @app.get("/api/counters")
        def list_counters(service_id: Optional[int] = Query(None, alias="serviceId")):
            return self.query.list_counters(service_id)

        @app.get("/api/counters/service/{service_id}")
        def list_counters_for_service(service_id: int):
            return self.query.list_counters(service_id)

        @app.get("/api/counters/{counter_id}")
        def get_counter(counter_id: int):
            return self.query.get_counter(counter_id)

        @app.post("/api/counters", status_code=201)
        def create_counter(data: dict,
                           identity: Identity = Depends(current_identity)):
            counter = self.admin.create_counter(
                data.get("name"),
                data.get("roomNumber") or data.get("room_number"),
                _int_field(data, "serviceId", "service_id"),
                identity.role,
            )
            return self.query.get_counter(counter.id)

        @app.delete("/api/counters/{counter_id}")
        def delete_counter(counter_id: int,
                           identity: Identity = Depends(current_identity)):
            self.admin.delete_counter(counter_id, identity.role)
            return {"message": "Counter removed"}

        # ==================== 统计 API ====================

        @app.get("/api/statistics")
        def statistics_overview(identity: Identity = Depends(admin_identity)):
            return self.query.statistics_overview(settings.statistics_history_days)

        @app.get("/api/statistics/daily/{day}")
        def statistics_daily(day: str,
                             identity: Identity = Depends(admin_identity)):
            return self.query.statistics_for_date(_parse_date(day))

        @app.get("/api/statistics/range")
        def statistics_range(start: str, end: str,
                             identity: Identity = Depends(admin_identity)):
            return self.query.statistics_for_range(_parse_date(start),
                                                   _parse_date(end))

        @app.get("/api/statistics/service/{service_id}")
        def statistics_service(service_id: int,
                               identity: Identity = Depends(admin_identity)):
            return self.query.statistics_for_service(
                service_id, settings.service_history_days
            )

        # ==================== 实时推送 ====================

        @app.websocket("/ws")
        async def websocket_endpoint(websocket: WebSocket):
            await websocket.accept()
            viewer = WebSocketViewer(websocket)
            await hub.connect(viewer)
            try:
                while True:
                    data = await websocket.receive_json()
                    await self._handle_viewer_message(viewer, data)
            except WebSocketDisconnect:
                pass
            finally:
                hub.disconnect(viewer.viewer_id)

        # ==================== 健康检查 ====================

        @app.get("/health")
        def health_check():
            """健康检查"""
            return {
                "status": "ok",
                "channel": self.name,
                "running": self.running,
                "viewers": hub.viewer_count,
            }

        return app

    async def _handle_viewer_message(self, viewer: WebSocketViewer,
                                     data: Dict[str, Any]):
        """处理观察端发来的消息（目前只有 authenticate 和 ping）"""
        kind = data.get("type") if isinstance(data, dict) else None
        if kind == "authenticate":
            try:
                identity = await asyncio.to_thread(self.auth.validate,
                                                   data.get("token", ""))
            except Unauthorized as e:
                await viewer.send_json(e.to_dict())
                return
            self.hub.identify(viewer.viewer_id, identity)
            await viewer.send_json({"type": "authenticated",
                                    "data": identity.to_dict()})
        elif kind == "ping":
            await viewer.send_json({"type": "pong"})
        else:
            await viewer.send_json(
                ValidationError(f"Unknown message type: {kind}").to_dict()
            )

    async def startup(self):
        """启动 Web 服务器"""
        import uvicorn

        self.running = True

        def run_server():
            """在独立线程中运行 uvicorn 服务器"""
            # 创建新的事件循环
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            self._server_loop = loop

            config = uvicorn.Config(
                self.app,
                host=self.host,
                port=self.port,
                log_level="warning",
                loop="asyncio",
            )

            self._server = uvicorn.Server(config)
            # 禁用 uvicorn 内置的信号处理器（由 app.py 统一管理）
            self._server.install_signal_handlers = lambda: None

            try:
                loop.run_until_complete(self._server.serve())
            except Exception as e:
                logger.error(f"服务器运行出错: {e}")
            finally:
                # 清理事件循环中的待处理任务
                pending = asyncio.all_tasks(loop)
                for task in pending:
                    task.cancel()
                if pending:
                    loop.run_until_complete(
                        asyncio.gather(*pending, return_exceptions=True)
                    )
                loop.run_until_complete(loop.shutdown_asyncgens())
                loop.close()

        self._server_thread = threading.Thread(target=run_server, daemon=True)
        self._server_thread.start()

        # 等待服务器启动
        max_wait = 5
        waited = 0
        while self._server is None and waited < max_wait:
            await asyncio.sleep(0.1)
            waited += 0.1

        logger.info(f"Web 服务已启动: http://{self.host}:{self.port}")

    async def shutdown(self):
        """停止 Web 服务器，确保端口被释放"""
        self.running = False

        if self._server is not None:
            try:
                logger.info("正在停止 Web 服务器...")
                self._server.should_exit = True

                # 等待服务器线程自然退出（最多 3 秒）
                if self._server_thread and self._server_thread.is_alive():
                    self._server_thread.join(timeout=3.0)

                # 如果仍未退出，强制终止
                if self._server_thread and self._server_thread.is_alive():
                    logger.warning("服务器未在 3 秒内优雅停止，强制退出...")
                    self._server.force_exit = True
                    if self._server_loop and self._server_loop.is_running():
                        self._server_loop.call_soon_threadsafe(
                            self._server_loop.stop
                        )
                    self._server_thread.join(timeout=2.0)
                    if self._server_thread.is_alive():
                        logger.warning("服务器线程未能停止，将随主进程退出")
            finally:
                self._server = None
                self._server_loop = None
                self._server_thread = None

        logger.info("Web 服务已停止")
