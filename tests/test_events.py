from uindex.core.events import EventBus, EventType


def test_subscribers_receive_events():
    bus = EventBus()
    seen = []
    bus.subscribe(EventType.SCAN_COMPLETED, lambda e: seen.append(("one", e.data['count'])))
    bus.subscribe_all(lambda e: seen.append(("all", e.type)))

    bus.emit_simple(EventType.SCAN_COMPLETED, source="test", count=3)
    bus.emit_simple(EventType.PLAN_CREATED, source="test")

    assert seen == [("one", 3), ("all", EventType.SCAN_COMPLETED), ("all", EventType.PLAN_CREATED)]


def test_failing_handler_does_not_break_emit():
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("handler bug")

    bus.subscribe(EventType.ERROR, broken)
    bus.subscribe(EventType.ERROR, seen.append)
    bus.emit_simple(EventType.ERROR, error="x")
    assert len(seen) == 1


def test_unsubscribe():
    bus = EventBus()
    seen = []
    bus.subscribe(EventType.ERROR, seen.append)
    bus.unsubscribe(EventType.ERROR, seen.append)
    bus.emit_simple(EventType.ERROR)
    assert seen == []


def test_history_is_bounded_and_filterable():
    bus = EventBus(max_history=3)
    for _ in range(5):
        bus.emit_simple(EventType.SCAN_COMPLETED)
    bus.emit_simple(EventType.SCAN_ERROR)
    assert len(bus.get_history()) == 3
    assert len(bus.get_history(EventType.SCAN_ERROR)) == 1
