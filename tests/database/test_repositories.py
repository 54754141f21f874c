"""Repository method tests.

Each repository method accepts an optional session: with one it joins the
caller's transaction, without one it opens and commits a short session.
"""
from datetime import date, datetime

import pytest

from database.models import Ticket, TicketStatus, UserRole
from database.ticket_repos import day_bounds


def add_ticket(db, number, service_id, user_id, created_at, **kwargs):
    with db.session_scope() as session:
        return db.tickets.add(Ticket(
            ticket_number=number, service_id=service_id, user_id=user_id,
            created_at=created_at, updated_at=created_at, **kwargs
        ), session)


class TestEntityRepositories:

    def test_user_lookup(self, temp_db, office):
        user = temp_db.users.get_by_contact("sam@example.com")
        assert user.id == office.staff
        assert user.role == UserRole.COUNTER_STAFF
        assert temp_db.users.get_by_contact("nobody@example.com") is None

    def test_services_sorted_by_name(self, temp_db, office):
        temp_db.services.create("Appointments")
        names = [s.name for s in temp_db.services.list_all()]
        assert names == ["Appointments", "Billing", "Registration"]

    def test_counter_for_service(self, temp_db, office):
        assert temp_db.counters.get_for_service(office.desk1, office.billing)
        assert temp_db.counters.get_for_service(office.desk3,
                                                office.billing) is None

    def test_counters_filtered(self, temp_db, office):
        assert len(temp_db.counters.list_all()) == 3
        billing = temp_db.counters.list_all(office.billing)
        assert [c.room_number for c in billing] == ["A101", "A102"]

    def test_delete_missing(self, temp_db):
        assert temp_db.services.delete(9999) is False
        assert temp_db.counters.delete(9999) is False

    def test_session_rollback(self, temp_db, office):
        with pytest.raises(RuntimeError):
            with temp_db.session_scope() as session:
                temp_db.services.create("Passports", session=session)
                raise RuntimeError("abort")

        assert temp_db.services.get_by_name("Passports") is None


class TestTicketRepository:

    def test_active_ticket_ignores_served(self, temp_db, office):
        add_ticket(temp_db, "BI260314001", office.billing, office.alice,
                   datetime(2026, 3, 14, 9, 0), status=TicketStatus.SERVED,
                   served_at=datetime(2026, 3, 14, 9, 10))
        assert temp_db.tickets.get_active_for_user(office.alice) is None

        missed = add_ticket(temp_db, "BI260314002", office.billing, office.alice,
                            datetime(2026, 3, 14, 9, 20),
                            status=TicketStatus.MISSED)
        assert temp_db.tickets.get_active_for_user(office.alice).id == missed.id

    def test_last_for_service_on(self, temp_db, office):
        add_ticket(temp_db, "BI260313001", office.billing, office.alice,
                   datetime(2026, 3, 13, 16, 0))
        add_ticket(temp_db, "BI260314001", office.billing, office.bob,
                   datetime(2026, 3, 14, 9, 0))
        add_ticket(temp_db, "RE260314001", office.registration, office.carol,
                   datetime(2026, 3, 14, 9, 5))

        with temp_db.get_session() as session:
            last = temp_db.tickets.get_last_for_service_on(
                office.billing, date(2026, 3, 14), session)
            empty = temp_db.tickets.get_last_for_service_on(
                office.billing, date(2026, 3, 15), session)

        assert last.ticket_number == "BI260314001"
        assert empty is None

    def test_oldest_with_status_is_fifo(self, temp_db, office):
        early = datetime(2026, 3, 14, 9, 0)
        first = add_ticket(temp_db, "BI260314001", office.billing, office.alice,
                           early, status=TicketStatus.PHYSICAL)
        add_ticket(temp_db, "BI260314002", office.billing, office.bob,
                   early, status=TicketStatus.PHYSICAL)

        with temp_db.get_session() as session:
            oldest = temp_db.tickets.get_oldest_with_status(
                office.billing, TicketStatus.PHYSICAL, session)
            none = temp_db.tickets.get_oldest_with_status(
                office.billing, TicketStatus.MISSED, session)

        assert oldest.id == first.id
        assert none is None

    def test_serving_at_counter(self, temp_db, office):
        serving = add_ticket(temp_db, "BI260314001", office.billing, office.alice,
                             datetime(2026, 3, 14, 9, 0),
                             status=TicketStatus.SERVING, counter_id=office.desk2)

        with temp_db.get_session() as session:
            found = temp_db.tickets.get_serving_at_counter(office.desk2, session)
            idle = temp_db.tickets.get_serving_at_counter(office.desk1, session)

        assert found.id == serving.id
        assert idle is None

    def test_list_by_status(self, temp_db, office):
        add_ticket(temp_db, "BI260314001", office.billing, office.alice,
                   datetime(2026, 3, 14, 9, 0))
        add_ticket(temp_db, "RE260314001", office.registration, office.bob,
                   datetime(2026, 3, 14, 9, 1))
        add_ticket(temp_db, "BI260314002", office.billing, office.carol,
                   datetime(2026, 3, 14, 9, 2), status=TicketStatus.PHYSICAL)

        virtual = temp_db.tickets.list_by_status([TicketStatus.VIRTUAL])
        assert [t.ticket_number for t in virtual] == ["BI260314001",
                                                      "RE260314001"]
        waiting = temp_db.tickets.list_by_status(
            [TicketStatus.VIRTUAL, TicketStatus.PHYSICAL],
            service_id=office.billing)
        assert len(waiting) == 2

    def test_list_served_on(self, temp_db, office):
        add_ticket(temp_db, "BI260313001", office.billing, office.alice,
                   datetime(2026, 3, 13, 23, 50), status=TicketStatus.SERVED,
                   served_at=datetime(2026, 3, 14, 0, 5))
        add_ticket(temp_db, "BI260313002", office.billing, office.bob,
                   datetime(2026, 3, 13, 15, 0), status=TicketStatus.SERVED,
                   served_at=datetime(2026, 3, 13, 15, 10))

        served = temp_db.tickets.list_served_on(date(2026, 3, 14))
        assert [t.ticket_number for t in served] == ["BI260313001"]

    def test_day_bounds(self):
        start, end = day_bounds(date(2026, 3, 14))
        assert start == datetime(2026, 3, 14)
        assert end == datetime(2026, 3, 15)


class TestDailyStatisticRepository:

    def test_add_sample_running_average(self, temp_db, office):
        day = date(2026, 3, 14)
        with temp_db.session_scope() as session:
            temp_db.statistics.add_sample(day, office.billing, 10, session)
            temp_db.statistics.add_sample(day, office.billing, 20, session)
            temp_db.statistics.add_sample(day, office.billing, 0, session)

        stat = temp_db.statistics.get(day, office.billing)
        assert stat.total_served == 3
        assert stat.avg_wait_time == pytest.approx(10.0)

    def test_replace_is_idempotent(self, temp_db, office):
        day = date(2026, 3, 14)
        for _ in range(2):
            with temp_db.session_scope() as session:
                temp_db.statistics.replace(day, office.billing, 4, 7.5,
                                           session=session)

        rows = temp_db.statistics.list_on(day)
        assert len(rows) == 1
        assert rows[0].total_served == 4

    def test_list_between_inclusive(self, temp_db, office):
        with temp_db.session_scope() as session:
            for day in (10, 11, 12):
                temp_db.statistics.replace(date(2026, 3, day), office.billing,
                                           day, 1.0, session=session)
            temp_db.statistics.replace(date(2026, 3, 11), office.registration,
                                       1, 2.0, session=session)

        rows = temp_db.statistics.list_between(date(2026, 3, 10),
                                               date(2026, 3, 11))
        assert [(r.date.day, r.service_id) for r in rows] == [
            (10, office.billing), (11, office.billing), (11, office.registration),
        ]
        only_billing = temp_db.statistics.list_between(
            date(2026, 3, 10), date(2026, 3, 12), service_id=office.billing)
        assert len(only_billing) == 3
