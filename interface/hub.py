"""实时推送中心 - 管理已连接的观察端并广播投影

职责：
- 观察端连接时推送四份快照（队列、服务、窗口、统计）
- 订阅 EventBus，每次变更后重新计算受影响的投影并推送给所有观察端
- 投递是尽力而为：并发发送，单个观察端超时或失败只记录日志，不重试，
  也不影响其他观察端和已提交的变更

线程模型：
    推送中心绑定到传输层的事件循环（bind_loop）。业务操作可能在
    线程池中执行，handle_event 通过 run_coroutine_threadsafe 把广播
    交给绑定的循环。
"""
import asyncio
import threading
from typing import Dict, Iterable, List, Optional, Set

from loguru import logger

from config.settings import settings
from interface.base import Identity, PushMessage, Viewer
from queueing.errors import QueueError
from queueing.events import ChangeEvent, PROJECTION_ORDER, ProjectionKind
from queueing.query import QueryFacade


class BroadcastHub:
    """实时推送中心

    使用方式：
        ```python
        hub = BroadcastHub(query)
        events.subscribe(hub.handle_event)
        hub.bind_loop(asyncio.get_running_loop())
        await hub.connect(viewer)
        ```
    """

    def __init__(self, query: QueryFacade, send_timeout: Optional[float] = None):
        """
        Args:
            query: 查询门面，用于计算投影
            send_timeout: 单个观察端单条消息的发送超时（秒）
        """
        self.query = query
        self.send_timeout = (send_timeout if send_timeout is not None
                             else settings.broadcast_send_timeout)
        self._viewers: Dict[str, Viewer] = {}
        self._guard = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: Set[asyncio.Future] = set()
        # 广播串行锁，在绑定的事件循环内首次广播时创建
        self._broadcast_lock: Optional[asyncio.Lock] = None

    # ==================== 循环绑定 ====================

    def bind_loop(self, loop: asyncio.AbstractEventLoop):
        """绑定广播运行的事件循环"""
        if loop is not self._loop:
            self._broadcast_lock = None
        self._loop = loop
        logger.debug("推送中心已绑定事件循环")

    # ==================== 观察端注册 ====================

    async def connect(self, viewer: Viewer):
        """注册观察端并推送四份初始快照"""
        if self._loop is None:
            self.bind_loop(asyncio.get_running_loop())
        with self._guard:
            self._viewers[viewer.viewer_id] = viewer
        logger.info(f"观察端已连接: {viewer.viewer_id} (当前 {self.viewer_count} 个)")

        messages = await self._build_messages(PROJECTION_ORDER)
        await self._deliver(viewer, messages)

    def disconnect(self, viewer_id: str) -> Optional[Viewer]:
        """注销观察端，返回被注销的观察端（不存在则为 None）"""
        with self._guard:
            viewer = self._viewers.pop(viewer_id, None)
        if viewer is not None:
            logger.info(f"观察端已断开: {viewer_id} (剩余 {self.viewer_count} 个)")
        return viewer

    def identify(self, viewer_id: str, identity: Identity) -> bool:
        """为观察端关联身份（仅供参考，不影响接收哪些推送）"""
        with self._guard:
            viewer = self._viewers.get(viewer_id)
        if viewer is None:
            return False
        viewer.identity = identity
        logger.info(f"观察端身份: {viewer_id} → {identity.name} ({identity.role})")
        return True

    @property
    def viewer_count(self) -> int:
        with self._guard:
            return len(self._viewers)

    def viewers(self) -> List[Viewer]:
        with self._guard:
            return list(self._viewers.values())

    # ==================== 广播 ====================

    async def broadcast(self, kinds: Iterable[ProjectionKind]) -> int:
        """重新计算投影并推送给所有观察端。

        多次广播按调度顺序逐个执行（构建投影 + 投递），
        观察端最后收到的总是最新一次变更后的快照。

        Returns:
            成功收到全部消息的观察端数量
        """
        kinds = set(kinds)
        ordered = [k for k in PROJECTION_ORDER if k in kinds]
        if not ordered:
            return 0

        if self._broadcast_lock is None:
            self._broadcast_lock = asyncio.Lock()

        async with self._broadcast_lock:
            messages = await self._build_messages(ordered)
            viewers = self.viewers()
            if not messages or not viewers:
                return 0

            logger.debug(
                f"广播 {[m.kind.value for m in messages]} → {len(viewers)} 个观察端"
            )
            results = await asyncio.gather(
                *(self._deliver(viewer, messages) for viewer in viewers)
            )
        return sum(1 for ok in results if ok)

    def handle_event(self, event: ChangeEvent):
        """EventBus 订阅回调，可在任意线程调用"""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug(f"推送中心未绑定事件循环，跳过广播: {event.reason}")
            return

        coro = self.broadcast(event.ordered_kinds())
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            future = loop.create_task(coro)
        else:
            future = asyncio.run_coroutine_threadsafe(coro, loop)
        with self._guard:
            self._pending.add(future)
        # 已完成的 future 会在当前线程立即回调，不能在持有 _guard 时注册
        future.add_done_callback(self._forget)

    def _forget(self, future: asyncio.Future):
        with self._guard:
            self._pending.discard(future)

    async def drain(self):
        """等待所有已调度的广播完成"""
        while True:
            with self._guard:
                pending = list(self._pending)
                self._pending.difference_update(pending)
            if not pending:
                return
            await asyncio.gather(
                *(asyncio.wrap_future(f) for f in pending),
                return_exceptions=True,
            )

    async def close_all(self):
        """关闭所有观察端连接"""
        for viewer in self.viewers():
            try:
                await viewer.close()
            except Exception as e:
                logger.debug(f"关闭观察端 {viewer.viewer_id} 时出错: {e}")
            self.disconnect(viewer.viewer_id)

    # ==================== 内部方法 ====================

    async def _build_messages(self, kinds: Iterable[ProjectionKind]
                              ) -> List[PushMessage]:
        messages = []
        for kind in kinds:
            try:
                payload = await asyncio.to_thread(self.query.projection, kind)
            except QueueError as e:
                logger.error(f"计算投影 {kind.value} 失败: {e.message}")
                continue
            messages.append(PushMessage(kind=kind, payload=payload))
        return messages

    async def _deliver(self, viewer: Viewer, messages: List[PushMessage]) -> bool:
        for message in messages:
            try:
                await asyncio.wait_for(viewer.send(message), self.send_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"推送超时: {viewer.viewer_id} ({message.kind.value})"
                )
                return False
            except Exception as e:
                logger.warning(
                    f"推送失败: {viewer.viewer_id} ({message.kind.value}): {e}"
                )
                return False
        return True
