"""票号状态机

所有合法的状态流转集中在 TRANSITIONS 表中，调用方只能通过
transition() 修改票号状态，非法的源状态一律抛出 InvalidState。

    virtual ──mark_present──→ physical ──call_next──→ serving ──call_next──→ served
                                                    ↑          │
                                   missed ──call_next┘          └──skip──→ missed
"""
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from database.models import Ticket, TicketStatus
from .errors import InvalidState

TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.VIRTUAL: frozenset({TicketStatus.PHYSICAL}),
    TicketStatus.PHYSICAL: frozenset({TicketStatus.SERVING}),
    TicketStatus.SERVING: frozenset({TicketStatus.SERVED, TicketStatus.MISSED}),
    TicketStatus.MISSED: frozenset({TicketStatus.SERVING}),
    TicketStatus.SERVED: frozenset(),
}

# 仍占用用户"唯一有效票号"名额的状态
ACTIVE_STATUSES = frozenset(TicketStatus) - {TicketStatus.SERVED}


def can_transition(source: TicketStatus, target: TicketStatus) -> bool:
    return TicketStatus(target) in TRANSITIONS[TicketStatus(source)]


def transition(ticket: Ticket, target: TicketStatus,
               now: Optional[datetime] = None,
               counter_id: Optional[int] = None) -> Ticket:
    """执行一次状态流转。

    Args:
        ticket: 待流转的票号（需处于会话中，由调用方提交）。
        target: 目标状态。
        now: 时间戳，默认当前时间。
        counter_id: 进入 serving 时分配的窗口ID，必填。

    Returns:
        流转后的票号。

    Raises:
        InvalidState: 源状态不允许流转到目标状态。
    """
    source = TicketStatus(ticket.status)
    target = TicketStatus(target)
    if not can_transition(source, target):
        raise InvalidState(
            f"Ticket {ticket.ticket_number} cannot move from "
            f"{source.value} to {target.value}"
        )

    now = now or datetime.now()
    if target is TicketStatus.SERVING:
        if counter_id is None:
            raise InvalidState("A counter is required to start serving")
        ticket.counter_id = counter_id
    if target is TicketStatus.SERVED:
        ticket.served_at = now

    ticket.status = target
    ticket.updated_at = now
    return ticket
