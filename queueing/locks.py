"""按键加锁 - 对竞争键串行化读后写操作

同一进程内，针对 "service:<id>"、"user:<id>" 这样的键提供互斥锁。
锁对象按引用计数创建和回收，不会随键的数量无限增长。
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.refs = 0


class KeyedLock:
    """键控互斥锁注册表

    使用方式：
        ```python
        locks = KeyedLock()
        with locks.hold("user:1", "service:3"):
            ...  # 读后写
        ```

    多个键总是按传入顺序加锁、逆序释放；调用方需保证全局一致的加锁顺序
    （本项目约定先 user 后 service）。
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _acquire_entry(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.refs += 1
            return entry

    def _release_entry(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.refs -= 1
            if entry.refs == 0:
                self._entries.pop(key, None)

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """依次获取所有键的锁，退出时逆序释放。"""
        held: List[tuple] = []
        try:
            for key in dict.fromkeys(keys):  # 去重并保序
                entry = self._acquire_entry(key)
                try:
                    entry.lock.acquire()
                except BaseException:
                    self._release_entry(key, entry)
                    raise
                held.append((key, entry))
            yield
        finally:
            for key, entry in reversed(held):
                entry.lock.release()
                self._release_entry(key, entry)

    def __len__(self) -> int:
        """当前被持有或等待中的键数量。"""
        with self._guard:
            return len(self._entries)


def service_key(service_id: int) -> str:
    return f"service:{service_id}"


def user_key(user_id: int) -> str:
    return f"user:{user_id}"
