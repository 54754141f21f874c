"""SQLAlchemy ORM 模型定义。

本模块定义了排队系统所有数据库表的ORM模型，包括：
- 用户、服务、窗口等基础实体
- 票号（排队的核心实体）
- 每日统计（由票号历史增量维护的冗余数据）

外键级联语义：
- 删除服务 → 级联删除其窗口、票号、每日统计
- 删除窗口 → 票号保留，counter_id 置空
- 删除用户 → 级联删除其票号
"""
from enum import Enum
from typing import List, Optional
from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from datetime import datetime, date

# SQLAlchemy declarative base，所有模型都继承自此类
# 设置 __allow_unmapped__ = True 以兼容 SQLAlchemy 2.0 的类型注解要求
Base = declarative_base()

Base.__allow_unmapped__ = True


class UserRole(str, Enum):
    """用户角色"""
    CUSTOMER = "customer"
    COUNTER_STAFF = "counter_staff"
    ADMIN = "admin"


class TicketStatus(str, Enum):
    """票号状态

    virtual  → 线上取号，尚未到场
    physical → 已到场，进入现场队列
    serving  → 正在某个窗口办理
    served   → 办理完成
    missed   → 被叫号后过号
    """
    VIRTUAL = "virtual"
    PHYSICAL = "physical"
    SERVING = "serving"
    SERVED = "served"
    MISSED = "missed"


class User(Base):
    """用户表模型。

    Attributes:
        id: 主键，自增整数。
        name: 显示名称，必填。
        contact: 唯一联系方式（邮箱/手机号），必填。
        credential_hash: 凭证哈希，由外部认证服务维护。
        role: 用户角色，customer / counter_staff / admin。
        created_at: 创建时间。

    Relationships:
        tickets: 该用户的所有票号。
    """
    __tablename__ = "users"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False)
    contact: str = Column(String(200), nullable=False, unique=True)
    credential_hash: str = Column(String(255), nullable=False)
    role: UserRole = Column(
        SAEnum(UserRole, values_callable=lambda e: [m.value for m in e],
               native_enum=False, length=20),
        nullable=False, default=UserRole.CUSTOMER
    )
    created_at: datetime = Column(DateTime, default=datetime.now)

    # Relationships
    tickets: List["Ticket"] = relationship(
        "Ticket", back_populates="user",
        cascade="all, delete-orphan", passive_deletes=True
    )


class Service(Base):
    """服务表模型。

    服务名称唯一。删除服务时硬删除其窗口、票号和每日统计。

    Attributes:
        id: 主键，自增整数。
        name: 服务名称，必填，唯一。
        created_at: 创建时间。
    """
    __tablename__ = "services"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False, unique=True)
    created_at: datetime = Column(DateTime, default=datetime.now)

    # Relationships
    counters: List["Counter"] = relationship(
        "Counter", back_populates="service",
        cascade="all, delete-orphan", passive_deletes=True
    )
    tickets: List["Ticket"] = relationship(
        "Ticket", back_populates="service",
        cascade="all, delete-orphan", passive_deletes=True
    )
    statistics: List["DailyStatistic"] = relationship(
        "DailyStatistic", back_populates="service",
        cascade="all, delete-orphan", passive_deletes=True
    )


class Counter(Base):
    """服务窗口表模型。

    每个窗口只属于一个服务。删除窗口时，票号保留历史但失去窗口关联。

    Attributes:
        id: 主键，自增整数。
        name: 窗口名称，必填。
        room_number: 房间/位置标识，必填。
        service_id: 所属服务ID，外键，级联删除。
        created_at: 创建时间。
    """
    __tablename__ = "counters"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False)
    room_number: str = Column(String(50), nullable=False)
    service_id: int = Column(
        Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False
    )
    created_at: datetime = Column(DateTime, default=datetime.now)

    # Relationships
    service: "Service" = relationship("Service", back_populates="counters")
    tickets: List["Ticket"] = relationship(
        "Ticket", back_populates="counter", passive_deletes=True
    )


class Ticket(Base):
    """票号表模型。

    Attributes:
        id: 主键，自增整数。
        ticket_number: 可读票号（服务前缀 + YYMMDD + 3位序号）。
        service_id: 所属服务ID，外键，级联删除。
        user_id: 所属用户ID，外键，级联删除。
        counter_id: 当前/最后办理窗口ID，可空，窗口删除时置空。
        status: 票号状态，见 TicketStatus。
        created_at: 取号时间。
        updated_at: 最后更新时间。
        served_at: 办理完成时间，未完成时为空。
    """
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("service_id", "ticket_number",
                         name="uq_ticket_service_number"),
        Index("ix_ticket_service_status_created",
              "service_id", "status", "created_at"),
    )

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    ticket_number: str = Column(String(32), nullable=False)
    service_id: int = Column(
        Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False
    )
    user_id: int = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        index=True
    )
    counter_id: Optional[int] = Column(
        Integer, ForeignKey("counters.id", ondelete="SET NULL"), index=True
    )
    status: TicketStatus = Column(
        SAEnum(TicketStatus, values_callable=lambda e: [m.value for m in e],
               native_enum=False, length=20),
        nullable=False, default=TicketStatus.VIRTUAL
    )
    created_at: datetime = Column(DateTime, nullable=False, default=datetime.now)
    updated_at: datetime = Column(DateTime, nullable=False, default=datetime.now)
    served_at: Optional[datetime] = Column(DateTime)

    # Relationships
    service: "Service" = relationship("Service", back_populates="tickets")
    user: "User" = relationship("User", back_populates="tickets")
    counter: Optional["Counter"] = relationship("Counter", back_populates="tickets")


class DailyStatistic(Base):
    """每日服务统计表模型。

    每个 (日期, 服务) 只有一条记录，随票号办结增量更新，
    用户不可直接修改。

    Attributes:
        id: 主键，自增整数。
        date: 统计日期。
        service_id: 服务ID，外键，级联删除。
        total_served: 当日已办结人数。
        avg_wait_time: 当日平均等待时长（分钟）。
        created_at: 创建时间。
        updated_at: 最后更新时间。
    """
    __tablename__ = "daily_statistics"
    __table_args__ = (
        UniqueConstraint("date", "service_id", name="uq_statistic_date_service"),
    )

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    date: date = Column(Date, nullable=False, index=True)
    service_id: int = Column(
        Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False
    )
    total_served: int = Column(Integer, nullable=False, default=0)
    avg_wait_time: float = Column(Float, nullable=False, default=0.0)
    created_at: datetime = Column(DateTime, default=datetime.now)
    updated_at: datetime = Column(DateTime, default=datetime.now)

    # Relationships
    service: "Service" = relationship("Service", back_populates="statistics")
