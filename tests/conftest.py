"""队列系统测试共用的 fixture。

每个测试使用独立的临时 SQLite DatabaseManager、可控时钟、记录所有已发布
事件的 EventBus，以及与 app.py 相同方式组装的队列核心组件。
"""
import os
import shutil
import tempfile
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from database import DatabaseManager
from database.models import UserRole
from queueing import (
    AdminOperations, EventBus, KeyedLock, QueryFacade,
    StatisticsAggregator, TicketLifecycleEngine,
)


class FakeClock:
    """可调用的时钟，只在调用 advance 时前进"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def temp_db():
    """创建绑定到临时 SQLite 数据库的 DatabaseManager"""
    temp_dir = tempfile.mkdtemp(prefix="queue-tests-")
    db_path = os.path.join(temp_dir, "test.db")
    manager = DatabaseManager(database_url=f"sqlite:///{db_path}")
    manager.create_tables()

    try:
        yield manager
    finally:
        manager.close()
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def clock():
    """固定在 2026-03-14 09:00 的时钟"""
    return FakeClock(datetime(2026, 3, 14, 9, 0, 0))


@pytest.fixture
def events():
    """已发布的事件记录在 ``bus.published`` 中的 EventBus"""
    bus = EventBus()
    bus.published = []
    bus.subscribe(bus.published.append)
    return bus


@pytest.fixture
def statistics(temp_db, events):
    return StatisticsAggregator(temp_db, events)


@pytest.fixture
def engine(temp_db, events, statistics, clock):
    return TicketLifecycleEngine(temp_db, events, statistics, KeyedLock(),
                                 clock=clock)


@pytest.fixture
def admin(temp_db, events):
    return AdminOperations(temp_db, events)


@pytest.fixture
def query(temp_db, clock):
    return QueryFacade(temp_db, clock=clock)


@pytest.fixture
def office(temp_db):
    """Billing（Desk 1、Desk 2）、Registration（Desk 3），三名顾客和一名窗口员工"""
    db = temp_db
    with db.session_scope() as session:
        billing = db.services.create("Billing", session=session)
        registration = db.services.create("Registration", session=session)
        desk1 = db.counters.create("Desk 1", "A101", billing.id, session=session)
        desk2 = db.counters.create("Desk 2", "A102", billing.id, session=session)
        desk3 = db.counters.create("Desk 3", "B201", registration.id,
                                   session=session)
        alice = db.users.create("Alice", "alice@example.com", "x", session=session)
        bob = db.users.create("Bob", "bob@example.com", "x", session=session)
        carol = db.users.create("Carol", "carol@example.com", "x", session=session)
        staff = db.users.create("Sam", "sam@example.com", "x",
                                role=UserRole.COUNTER_STAFF, session=session)

    return SimpleNamespace(
        billing=billing.id, registration=registration.id,
        desk1=desk1.id, desk2=desk2.id, desk3=desk3.id,
        alice=alice.id, bob=bob.id, carol=carol.id, staff=staff.id,
    )
