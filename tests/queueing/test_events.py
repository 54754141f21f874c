"""Event bus tests."""
from queueing.events import ChangeEvent, EventBus, ProjectionKind


def test_ordered_kinds_follow_fixed_order():
    event = ChangeEvent.of("x", ProjectionKind.STATISTICS, ProjectionKind.QUEUE,
                           ProjectionKind.SERVICES)
    assert event.ordered_kinds() == [ProjectionKind.QUEUE,
                                     ProjectionKind.SERVICES,
                                     ProjectionKind.STATISTICS]


def test_message_names():
    assert [k.value for k in ProjectionKind] == [
        "queueUpdate", "serviceUpdate", "counterUpdate", "statisticsUpdate",
    ]


def test_publish_reaches_all_subscribers():
    bus = EventBus()
    first, second = [], []
    bus.subscribe(first.append)
    bus.subscribe(second.append)

    bus.publish(ChangeEvent.of("ticket_created", ProjectionKind.QUEUE))

    assert len(first) == 1 and len(second) == 1
    assert first[0].reason == "ticket_created"


def test_subscribe_twice_delivers_once():
    bus = EventBus()
    received = []
    bus.subscribe(received.append)
    bus.subscribe(received.append)
    bus.publish(ChangeEvent.of("x", ProjectionKind.QUEUE))
    assert len(received) == 1


def test_unsubscribe():
    bus = EventBus()
    received = []
    bus.subscribe(received.append)
    bus.unsubscribe(received.append)
    bus.publish(ChangeEvent.of("x", ProjectionKind.QUEUE))
    assert received == []


def test_empty_event_is_dropped():
    bus = EventBus()
    received = []
    bus.subscribe(received.append)
    bus.publish(ChangeEvent.of("nothing"))
    assert received == []


def test_failing_subscriber_does_not_stop_others():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("viewer gone")

    bus.subscribe(broken)
    bus.subscribe(received.append)
    bus.publish(ChangeEvent.of("x", ProjectionKind.QUEUE))

    assert len(received) == 1


def test_publish_all_merges_kinds():
    bus = EventBus()
    received = []
    bus.subscribe(received.append)

    bus.publish_all([
        ChangeEvent.of("ticket_served", ProjectionKind.QUEUE,
                       ProjectionKind.STATISTICS),
        ChangeEvent.of("ticket_called", ProjectionKind.QUEUE),
    ])

    assert len(received) == 1
    assert received[0].kinds == {ProjectionKind.QUEUE, ProjectionKind.STATISTICS}
    assert received[0].reason == "ticket_served+ticket_called"


def test_publish_all_with_nothing():
    bus = EventBus()
    received = []
    bus.subscribe(received.append)
    bus.publish_all([])
    assert received == []
