import time

import pytest

from uindex.core.config import ActiveApplication, DaemonConfig
from uindex.core.daemon import DaemonState, IndexingDaemon
from uindex.core.errors import AccessibilityPermissionError
from uindex.core.events import EventType
from uindex.perception.scanner import RawElement

from .conftest import FakeScanner

BUTTONS = [
    RawElement(role="AXButton", title="Save", x=150, y=300, width=80, height=30),
    RawElement(role="AXButton", title="Cancel", x=250, y=300, width=80, height=30),
]


def make_daemon(scanner, store, sync, events, clock, **config):
    config.setdefault("scan_interval_seconds", 60)
    return IndexingDaemon(scanner=scanner, store=store, sync=sync, events=events,
                          config=DaemonConfig(**config), clock=clock)


@pytest.fixture
def scanner(notes_app):
    return FakeScanner(app=notes_app, raws=list(BUTTONS))


@pytest.fixture
def daemon(scanner, store, sync, events, clock):
    d = make_daemon(scanner, store, sync, events, clock)
    yield d
    d.stop()


def test_start_runs_initial_cycle(daemon, store, sync, events):
    daemon.start()
    assert daemon.state == DaemonState.RUNNING
    assert store.count_elements("Notes", "Untitled") == 2
    assert [e.label for e in sync.get_elements("Notes", "Untitled")] == ["Save", "Cancel"]
    assert events.get_history(EventType.DAEMON_STARTED)
    synced = events.get_history(EventType.ELEMENTS_SYNCED)
    assert [(e.data["app_name"], e.data["count"]) for e in synced] == [("Notes", 2)]


def test_start_is_idempotent(daemon, scanner):
    daemon.start()
    daemon.start()
    assert scanner.scans == 1


def test_stop_cleans_up_scanner(daemon, scanner, events):
    daemon.start()
    daemon.stop()
    assert daemon.state == DaemonState.IDLE
    assert scanner.cleaned_up
    assert events.get_history(EventType.DAEMON_STOPPED)


def test_missing_permission_is_fatal(store, sync, events, clock, notes_app):
    d = make_daemon(FakeScanner(app=notes_app, permitted=False), store, sync, events, clock)
    with pytest.raises(AccessibilityPermissionError):
        d.start()
    assert not d.is_running


def test_periodic_empty_scan_keeps_previous_snapshot(daemon, scanner, store):
    daemon.start()
    scanner.raws = []
    daemon.perform_scan()
    assert store.count_elements("Notes", "Untitled") == 2


def test_no_active_application_is_skipped(store, sync, events, clock):
    for app in (None, ActiveApplication(name="Unknown", window_title="")):
        scanner = FakeScanner(app=app, raws=list(BUTTONS))
        d = make_daemon(scanner, store, sync, events, clock)
        d.start()
        assert scanner.scans == 0
        assert d.scan_current_application() is None
        d.stop()
    assert store.count_elements() == 0


def test_on_demand_scan_requires_running_daemon(daemon):
    assert daemon.scan_current_application() is None


def test_on_demand_scan_returns_elements(daemon, events):
    daemon.start()
    result = daemon.scan_current_application()
    assert result.app_name == "Notes"
    assert result.window_title == "Untitled"
    assert [e.label for e in result.elements] == ["Save", "Cancel"]
    on_demand = [e for e in events.get_history(EventType.SCAN_COMPLETED) if e.data['on_demand']]
    assert len(on_demand) == 1


def test_on_demand_empty_scan_writes_marker(daemon, scanner, store, events):
    daemon.start()
    scanner.raws = [RawElement(role="AXGroup", x=0, y=0, width=3, height=3)]
    result = daemon.scan_current_application()

    assert len(result.elements) == 1
    assert result.elements[0].is_scan_marker
    assert result.is_empty
    stored = store.get_elements("Notes", "Untitled")
    assert len(stored) == 1 and stored[0].is_scan_marker
    assert store.get_active_applications()[0]['element_count'] == 0
    assert events.get_history(EventType.SCAN_EMPTY)


def test_scan_errors_are_reported_not_raised(daemon, scanner, events):
    daemon.start()
    scanner.error = RuntimeError("bridge crashed")
    assert daemon.perform_scan() is None
    assert daemon.scan_current_application() is None
    assert daemon.scan_errors == 2
    errors = events.get_history(EventType.SCAN_ERROR)
    assert [e.data['on_demand'] for e in errors] == [False, True]


def test_status(daemon):
    daemon.start()
    status = daemon.get_status()
    assert status['running'] is True
    assert status['platform'] == "fake"
    assert status['cycles'] == 1
    assert status['last_scan']['app_name'] == "Notes"
    assert status['last_scan']['elements'] == 2


def test_periodic_loop_scans_again(scanner, store, sync, events, clock):
    d = make_daemon(scanner, store, sync, events, clock, scan_interval_seconds=0.01)
    d.start()
    try:
        for _ in range(200):
            if scanner.scans >= 3:
                break
            time.sleep(0.01)
    finally:
        d.stop()
    assert scanner.scans >= 3


def test_no_sync_event_when_cache_is_locked(daemon, memory_cache, sync, events):
    memory_cache.set_nx(sync.lock_key, "another-writer", 10)
    daemon.start()
    assert events.get_history(EventType.ELEMENTS_STORED)
    assert events.get_history(EventType.ELEMENTS_SYNCED) == []
