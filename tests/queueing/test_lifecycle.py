"""Ticket lifecycle engine tests.

Covers:
- create_virtual_ticket: numbering, one active ticket per user, validation
- mark_present: ownership and status checks
- call_next: role check, FIFO selection, missed re-activation, closing the
  current ticket, two counters never taking the same ticket
- skip_current: serving → missed
- the end-to-end Billing scenario
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from database.models import Ticket, TicketStatus, UserRole
from queueing import (
    Conflict, Forbidden, InvalidState, NotFound, ProjectionKind, ValidationError,
)
from queueing.lifecycle import format_ticket_number, parse_sequence

STAFF = UserRole.COUNTER_STAFF.value


def kinds_of(bus):
    return [kind for event in bus.published for kind in event.ordered_kinds()]


def make_physical(engine, user_id, service_id, clock=None):
    ticket = engine.create_virtual_ticket(user_id, service_id)
    engine.mark_present(ticket.id, user_id)
    if clock is not None:
        clock.advance(minutes=1)
    return ticket


def insert_ticket(db, number, service_id, user_id, created_at,
                  status=TicketStatus.SERVED):
    with db.session_scope() as session:
        ticket = Ticket(ticket_number=number, service_id=service_id,
                        user_id=user_id, status=status,
                        created_at=created_at, updated_at=created_at)
        db.tickets.add(ticket, session)
    return ticket


# ============================================================
# Ticket numbers
# ============================================================
class TestTicketNumbers:

    def test_format(self, clock):
        assert format_ticket_number("Billing", clock().date(), 1) == "BI260314001"
        assert format_ticket_number("registration", clock().date(), 42) == "RE260314042"

    def test_format_grows_past_three_digits(self, clock):
        assert format_ticket_number("Billing", clock().date(), 1000) == "BI2603141000"

    def test_parse_sequence(self):
        assert parse_sequence("BI260314007", "Billing") == 7
        assert parse_sequence("BI2603141000", "Billing") == 1000
        assert parse_sequence("BI260314ABC", "Billing") is None


# ============================================================
# create_virtual_ticket
# ============================================================
class TestCreateVirtualTicket:

    def test_creates_virtual_ticket(self, engine, office, temp_db):
        ticket = engine.create_virtual_ticket(office.alice, office.billing)

        assert ticket.ticket_number == "BI260314001"
        assert ticket.status == TicketStatus.VIRTUAL
        assert ticket.counter_id is None
        assert ticket.served_at is None
        stored = temp_db.tickets.get(ticket.id)
        assert stored.user_id == office.alice

    def test_sequence_per_service(self, engine, office):
        first = engine.create_virtual_ticket(office.alice, office.billing)
        second = engine.create_virtual_ticket(office.bob, office.billing)
        other = engine.create_virtual_ticket(office.carol, office.registration)

        assert first.ticket_number == "BI260314001"
        assert second.ticket_number == "BI260314002"
        assert other.ticket_number == "RE260314001"

    def test_sequence_restarts_next_day(self, engine, office, clock):
        engine.create_virtual_ticket(office.alice, office.billing)
        clock.advance(days=1)
        ticket = engine.create_virtual_ticket(office.bob, office.billing)
        assert ticket.ticket_number == "BI260315001"

    def test_sequence_past_999(self, engine, office, temp_db, clock):
        insert_ticket(temp_db, "BI260314999", office.billing, office.carol,
                      clock() - timedelta(minutes=5))
        ticket = engine.create_virtual_ticket(office.alice, office.billing)
        assert ticket.ticket_number == "BI2603141000"

        clock.advance(minutes=1)
        ticket = engine.create_virtual_ticket(office.bob, office.billing)
        assert ticket.ticket_number == "BI2603141001"

    def test_unparseable_tail_restarts_at_one(self, engine, office, temp_db, clock):
        insert_ticket(temp_db, "BI260314ABC", office.billing, office.carol,
                      clock() - timedelta(minutes=5))
        ticket = engine.create_virtual_ticket(office.alice, office.billing)
        assert ticket.ticket_number == "BI260314001"

    def test_second_active_ticket_conflicts(self, engine, office):
        engine.create_virtual_ticket(office.alice, office.billing)
        with pytest.raises(Conflict):
            engine.create_virtual_ticket(office.alice, office.registration)

    def test_new_ticket_allowed_after_served(self, engine, office, clock):
        make_physical(engine, office.alice, office.billing, clock)
        engine.call_next(office.desk1, office.billing, STAFF)
        engine.call_next(office.desk1, office.billing, STAFF)

        ticket = engine.create_virtual_ticket(office.alice, office.billing)
        assert ticket.ticket_number == "BI260314002"

    def test_missed_ticket_still_counts_as_active(self, engine, office, clock):
        make_physical(engine, office.alice, office.billing, clock)
        engine.call_next(office.desk1, office.billing, STAFF)
        engine.skip_current(office.desk1, office.billing, STAFF)

        with pytest.raises(Conflict):
            engine.create_virtual_ticket(office.alice, office.billing)

    def test_unknown_service(self, engine, office):
        with pytest.raises(NotFound):
            engine.create_virtual_ticket(office.alice, 9999)

    def test_unknown_user(self, engine, office):
        with pytest.raises(NotFound):
            engine.create_virtual_ticket(9999, office.billing)

    @pytest.mark.parametrize("user_id, service_id", [(None, 1), (1, None), (0, 1)])
    def test_missing_ids(self, engine, user_id, service_id):
        with pytest.raises(ValidationError):
            engine.create_virtual_ticket(user_id, service_id)

    def test_publishes_queue_update(self, engine, office, events):
        engine.create_virtual_ticket(office.alice, office.billing)
        assert kinds_of(events) == [ProjectionKind.QUEUE]

    def test_rejected_request_publishes_nothing(self, engine, office, events):
        engine.create_virtual_ticket(office.alice, office.billing)
        events.published.clear()
        with pytest.raises(Conflict):
            engine.create_virtual_ticket(office.alice, office.billing)
        assert events.published == []

    def test_concurrent_requests_get_distinct_numbers(self, engine, office, temp_db):
        with temp_db.session_scope() as session:
            user_ids = [
                temp_db.users.create(f"User {i}", f"user{i}@example.com", "x",
                                     session=session).id
                for i in range(8)
            ]

        with ThreadPoolExecutor(max_workers=8) as pool:
            tickets = list(pool.map(
                lambda uid: engine.create_virtual_ticket(uid, office.billing),
                user_ids,
            ))

        numbers = sorted(t.ticket_number for t in tickets)
        assert numbers == [f"BI260314{i:03d}" for i in range(1, 9)]

    def test_concurrent_requests_same_user_only_one_wins(self, engine, office):
        barrier = threading.Barrier(4)
        outcomes = []

        def attempt():
            barrier.wait()
            try:
                engine.create_virtual_ticket(office.alice, office.billing)
                outcomes.append("ok")
            except Conflict:
                outcomes.append("conflict")

        threads = [threading.Thread(target=attempt) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["conflict", "conflict", "conflict", "ok"]


# ============================================================
# mark_present
# ============================================================
class TestMarkPresent:

    def test_virtual_becomes_physical(self, engine, office, clock, temp_db):
        ticket = engine.create_virtual_ticket(office.alice, office.billing)
        clock.advance(minutes=3)
        updated = engine.mark_present(ticket.id, office.alice)

        assert updated.status == TicketStatus.PHYSICAL
        assert updated.updated_at == clock()
        assert temp_db.tickets.get(ticket.id).status == TicketStatus.PHYSICAL

    def test_other_user_forbidden(self, engine, office):
        ticket = engine.create_virtual_ticket(office.alice, office.billing)
        with pytest.raises(Forbidden):
            engine.mark_present(ticket.id, office.bob)

    def test_unknown_ticket(self, engine, office):
        with pytest.raises(NotFound):
            engine.mark_present(9999, office.alice)

    def test_already_physical(self, engine, office):
        ticket = make_physical(engine, office.alice, office.billing)
        with pytest.raises(InvalidState):
            engine.mark_present(ticket.id, office.alice)

    def test_publishes_queue_update(self, engine, office, events):
        ticket = engine.create_virtual_ticket(office.alice, office.billing)
        events.published.clear()
        engine.mark_present(ticket.id, office.alice)
        assert kinds_of(events) == [ProjectionKind.QUEUE]


# ============================================================
# call_next
# ============================================================
class TestCallNext:

    @pytest.mark.parametrize("role", [UserRole.CUSTOMER.value, "janitor", None])
    def test_requires_staff_role(self, engine, office, role):
        with pytest.raises(Forbidden):
            engine.call_next(office.desk1, office.billing, role)

    def test_admin_may_call(self, engine, office, clock):
        make_physical(engine, office.alice, office.billing, clock)
        result = engine.call_next(office.desk1, office.billing, UserRole.ADMIN)
        assert result.ticket is not None

    def test_counter_must_belong_to_service(self, engine, office):
        with pytest.raises(InvalidState):
            engine.call_next(office.desk3, office.billing, STAFF)

    def test_unknown_counter(self, engine, office):
        with pytest.raises(InvalidState):
            engine.call_next(9999, office.billing, STAFF)

    def test_no_customers_waiting(self, engine, office, events):
        result = engine.call_next(office.desk1, office.billing, STAFF)

        assert result.no_customers_waiting
        assert result.finished is None
        assert events.published == []

    def test_virtual_tickets_are_not_called(self, engine, office):
        engine.create_virtual_ticket(office.alice, office.billing)
        result = engine.call_next(office.desk1, office.billing, STAFF)
        assert result.no_customers_waiting

    def test_other_service_tickets_are_not_called(self, engine, office):
        make_physical(engine, office.carol, office.registration)
        result = engine.call_next(office.desk1, office.billing, STAFF)
        assert result.no_customers_waiting

    def test_oldest_physical_first(self, engine, office, clock):
        alice = make_physical(engine, office.alice, office.billing, clock)
        make_physical(engine, office.bob, office.billing, clock)

        result = engine.call_next(office.desk1, office.billing, STAFF)

        assert result.ticket.id == alice.id
        assert result.ticket.status == TicketStatus.SERVING
        assert result.ticket.counter_id == office.desk1

    def test_order_follows_creation_not_arrival(self, engine, office, clock):
        alice = engine.create_virtual_ticket(office.alice, office.billing)
        clock.advance(minutes=1)
        bob = engine.create_virtual_ticket(office.bob, office.billing)
        clock.advance(minutes=1)
        engine.mark_present(bob.id, office.bob)
        engine.mark_present(alice.id, office.alice)

        result = engine.call_next(office.desk1, office.billing, STAFF)
        assert result.ticket.id == alice.id

    def test_closes_current_ticket(self, engine, office, clock, temp_db):
        alice = make_physical(engine, office.alice, office.billing, clock)
        bob = make_physical(engine, office.bob, office.billing, clock)
        engine.call_next(office.desk1, office.billing, STAFF)
        clock.advance(minutes=10)

        result = engine.call_next(office.desk1, office.billing, STAFF)

        assert result.finished.id == alice.id
        assert result.finished.status == TicketStatus.SERVED
        assert result.finished.served_at == clock()
        assert result.ticket.id == bob.id
        served = temp_db.tickets.get(alice.id)
        assert served.status == TicketStatus.SERVED
        assert served.counter_id == office.desk1

    def test_closing_without_successor(self, engine, office, clock, events):
        make_physical(engine, office.alice, office.billing, clock)
        engine.call_next(office.desk1, office.billing, STAFF)
        events.published.clear()

        result = engine.call_next(office.desk1, office.billing, STAFF)

        assert result.no_customers_waiting
        assert result.finished is not None
        assert set(kinds_of(events)) == {ProjectionKind.QUEUE,
                                         ProjectionKind.STATISTICS}

    def test_serving_publishes_queue_only(self, engine, office, clock, events):
        make_physical(engine, office.alice, office.billing, clock)
        events.published.clear()
        engine.call_next(office.desk1, office.billing, STAFF)
        assert kinds_of(events) == [ProjectionKind.QUEUE]

    def test_records_statistics_when_served(self, engine, office, clock, temp_db):
        make_physical(engine, office.alice, office.billing)  # created 09:00
        engine.call_next(office.desk1, office.billing, STAFF)
        clock.advance(minutes=12, seconds=59)
        engine.call_next(office.desk1, office.billing, STAFF)

        stat = temp_db.statistics.get(clock().date(), office.billing)
        assert stat.total_served == 1
        assert stat.avg_wait_time == 12

    def test_two_counters_take_different_tickets(self, engine, office, clock):
        alice = make_physical(engine, office.alice, office.billing, clock)
        bob = make_physical(engine, office.bob, office.billing, clock)

        first = engine.call_next(office.desk1, office.billing, STAFF)
        second = engine.call_next(office.desk2, office.billing, STAFF)

        assert first.ticket.id == alice.id
        assert second.ticket.id == bob.id
        assert second.ticket.counter_id == office.desk2

    def test_concurrent_counters_never_share_a_ticket(self, engine, office, clock):
        make_physical(engine, office.alice, office.billing, clock)
        make_physical(engine, office.bob, office.billing, clock)
        barrier = threading.Barrier(2)

        def call(counter_id):
            barrier.wait()
            return engine.call_next(counter_id, office.billing, STAFF)

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(call, [office.desk1, office.desk2]))

        ids = {r.ticket.id for r in results}
        assert len(ids) == 2

    def test_one_serving_ticket_per_counter(self, engine, office, clock, temp_db):
        for user in (office.alice, office.bob, office.carol):
            make_physical(engine, user, office.billing, clock)

        for _ in range(3):
            engine.call_next(office.desk1, office.billing, STAFF)
            serving = temp_db.tickets.list_by_status([TicketStatus.SERVING])
            assert len([t for t in serving if t.counter_id == office.desk1]) == 1


# ============================================================
# skip_current / missed
# ============================================================
class TestSkipCurrent:

    def test_serving_becomes_missed(self, engine, office, clock):
        make_physical(engine, office.alice, office.billing, clock)
        engine.call_next(office.desk1, office.billing, STAFF)

        skipped = engine.skip_current(office.desk1, office.billing, STAFF)

        assert skipped.status == TicketStatus.MISSED
        assert skipped.counter_id == office.desk1
        assert skipped.served_at is None

    def test_nothing_serving(self, engine, office):
        with pytest.raises(InvalidState):
            engine.skip_current(office.desk1, office.billing, STAFF)

    def test_requires_staff(self, engine, office):
        with pytest.raises(Forbidden):
            engine.skip_current(office.desk1, office.billing,
                                UserRole.CUSTOMER.value)

    def test_missed_ticket_is_recalled(self, engine, office, clock):
        alice = make_physical(engine, office.alice, office.billing, clock)
        engine.call_next(office.desk1, office.billing, STAFF)
        engine.skip_current(office.desk1, office.billing, STAFF)

        result = engine.call_next(office.desk2, office.billing, STAFF)

        assert result.ticket.id == alice.id
        assert result.ticket.status == TicketStatus.SERVING
        assert result.ticket.counter_id == office.desk2

    def test_physical_preferred_over_missed(self, engine, office, clock):
        make_physical(engine, office.alice, office.billing, clock)
        engine.call_next(office.desk1, office.billing, STAFF)
        engine.skip_current(office.desk1, office.billing, STAFF)
        bob = make_physical(engine, office.bob, office.billing, clock)

        result = engine.call_next(office.desk1, office.billing, STAFF)
        assert result.ticket.id == bob.id


# ============================================================
# End-to-end scenario
# ============================================================
class TestBillingScenario:

    def test_full_flow(self, temp_db, engine, admin, query, clock):
        billing = admin.create_service("Billing", UserRole.ADMIN)
        desk = admin.create_counter("Desk 1", "A101", billing.id, UserRole.ADMIN)
        with temp_db.session_scope() as session:
            user = temp_db.users.create("User A", "a@example.com", "x",
                                        session=session)

        ticket = engine.create_virtual_ticket(user.id, billing.id)
        assert ticket.ticket_number == "BI" + clock().strftime("%y%m%d") + "001"

        ticket = engine.mark_present(ticket.id, user.id)
        assert ticket.status == TicketStatus.PHYSICAL

        clock.advance(minutes=4)
        result = engine.call_next(desk.id, billing.id, STAFF)
        assert result.ticket.id == ticket.id
        assert result.ticket.status == TicketStatus.SERVING
        assert result.ticket.counter_id == desk.id

        clock.advance(minutes=6)
        result = engine.call_next(desk.id, billing.id, STAFF)
        assert result.no_customers_waiting
        assert result.finished.id == ticket.id
        assert result.finished.status == TicketStatus.SERVED
        assert result.finished.served_at is not None

        stats = query.statistics_today()
        assert stats["servedTodayByService"][billing.id] == 1
        assert stats["totalServedToday"] == 1
        assert temp_db.statistics.get(clock().date(), billing.id).total_served == 1
