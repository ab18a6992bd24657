import sqlite3
from datetime import timedelta

import pytest

from uindex.core.config import make_scan_marker
from uindex.memory.store import ElementStore

from .conftest import NOW, make_element


def test_initialize_is_idempotent(store):
    store.initialize()
    store.initialize()
    assert store.get_schema_version() == 1


def test_replace_keeps_only_latest_snapshot(store):
    store.store_elements([make_element(label=f"B{i}", x=10 * i) for i in range(3)])
    assert len(store.get_elements("Notes", "Untitled")) == 3

    store.store_elements([make_element(label="Only")])
    elements = store.get_elements("Notes", "Untitled")
    assert [e.label for e in elements] == ["Only"]


def test_storing_twice_never_duplicates(store):
    batch = [make_element(label=f"B{i}", x=10 * i) for i in range(4)]
    store.store_elements(batch)
    store.store_elements(batch)
    assert store.count_elements("Notes", "Untitled") == 4


def test_store_assigns_ids(store):
    element = make_element()
    assert store.store_elements([element]) == 1
    assert element.id is not None
    assert store.get_elements()[0].id == element.id


def test_failed_replace_keeps_previous_snapshot(store):
    store.store_elements([make_element(label="Old", x=1), make_element(label="Old2", x=2)])
    batch = [make_element(label="New", x=3), make_element(label=None, x=4)]

    with pytest.raises(sqlite3.IntegrityError):
        store.store_elements(batch)

    assert [e.label for e in store.get_elements("Notes", "Untitled")] == ["Old", "Old2"]
    assert [e.id for e in batch] == [None, None]


def test_store_rejects_mixed_identities(store):
    with pytest.raises(ValueError):
        store.store_elements([make_element(), make_element(window="Other")])
    assert store.count_elements() == 0


def test_store_empty_list_is_noop(store):
    store.store_elements([make_element()])
    assert store.store_elements([]) == 0
    assert store.count_elements() == 1


def test_other_identities_untouched(store):
    store.store_elements([make_element(app="Notes")])
    store.store_elements([make_element(app="Mail")])
    store.store_elements([make_element(app="Notes", label="New")])
    assert store.count_elements("Mail") == 1
    assert [e.label for e in store.get_elements("Notes")] == ["New"]


def test_freshness_window(store, clock):
    store.store_elements([make_element(last_seen=NOW - timedelta(minutes=11))])
    store.store_elements([make_element(app="Mail", last_seen=NOW - timedelta(minutes=5))])
    elements = store.get_elements()
    assert [e.app_name for e in elements] == ["Mail"]

    clock.advance(minutes=6)
    assert store.get_elements() == []


def test_role_query_returns_buttons_by_confidence(store):
    store.store_elements([
        make_element(role="button", label="Cancel", x=10, confidence=0.7),
        make_element(role="link", label="Help", x=20, confidence=0.95),
        make_element(role="button", label="Save", x=30, confidence=0.9),
    ])
    buttons = store.get_elements_by_role("button")
    assert [b.label for b in buttons] == ["Save", "Cancel"]
    assert store.get_elements_by_role("BUTTON", app_name="Notes")[0].label == "Save"


def test_targeted_queries_skip_disabled_invisible_and_markers(store):
    store.store_elements([
        make_element(label="Save", x=10),
        make_element(label="Save draft", x=20, enabled=False),
        make_element(label="Save as", x=30, visible=False),
    ])
    store.store_elements([make_scan_marker("Empty", "Win", NOW)])

    assert [e.label for e in store.get_elements_by_label("save")] == ["Save"]
    assert [e.label for e in store.search_elements("Save")] == ["Save"]
    assert store.get_elements_by_role("scan_marker") == []


def test_label_search_escapes_wildcards(store):
    store.store_elements([
        make_element(label="100% zoom", x=10),
        make_element(label="1000 items", x=20),
    ])
    assert [e.label for e in store.get_elements_by_label("100%")] == ["100% zoom"]


def test_search_matches_label_value_and_role(store):
    store.store_elements([
        make_element(role="text field", label="Query", value="weather", x=10),
        make_element(role="checkbox", label="Remember", x=20),
        make_element(role="button", label="Go", x=30),
    ])
    assert [e.label for e in store.search_elements("weather")] == ["Query"]
    assert [e.label for e in store.search_elements("check")] == ["Remember"]


def test_search_limit(clock):
    s = ElementStore(db_path=":memory:", clock=clock)
    s.config.search_limit = 2
    s.initialize()
    s.store_elements([make_element(label=f"Item {i}", x=i) for i in range(5)])
    assert len(s.search_elements("Item")) == 2
    s.close()


def test_active_applications_count_real_elements(store):
    store.store_elements([make_element(x=1), make_element(x=2)])
    store.store_elements([make_scan_marker("Finder", "Desktop", NOW)])
    apps = {(a['app_name'], a['window_title']): a['element_count']
            for a in store.get_active_applications()}
    assert apps == {("Notes", "Untitled"): 2, ("Finder", "Desktop"): 0}


def test_marker_included_in_snapshot_reads(store):
    store.store_elements([make_scan_marker("Finder", "Desktop", NOW)])
    elements = store.get_elements("Finder", "Desktop")
    assert len(elements) == 1
    assert elements[0].is_scan_marker


def test_cleanup_stale_elements(store):
    store.store_elements([make_element(last_seen=NOW - timedelta(hours=2))])
    store.store_elements([make_element(app="Mail", last_seen=NOW - timedelta(minutes=30))])
    assert store.cleanup_stale_elements() == 1
    assert store.count_elements() == 1


def test_statistics(store):
    store.store_elements([make_element(x=1, confidence=0.5), make_element(x=2, confidence=1.0)])
    store.store_elements([make_scan_marker("Finder", "Desktop", NOW)])
    stats = store.get_statistics()
    assert stats['total_elements'] == 3
    assert stats['scan_markers'] == 1
    assert stats['identities'] == 2
    assert stats['schema_version'] == 1


def test_file_database(tmp_path, clock):
    path = tmp_path / "nested" / "ui.db"
    s = ElementStore(db_path=str(path), clock=clock)
    s.initialize()
    s.store_elements([make_element()])
    s.close()

    reopened = ElementStore(db_path=str(path), clock=clock)
    reopened.initialize()
    assert reopened.count_elements() == 1
    reopened.close()
