import yaml

from uindex.core.config import Config, UIElement, make_scan_marker

from .conftest import NOW, make_element


def test_defaults():
    config = Config()
    assert config.store.freshness_minutes == 10
    assert config.store.staleness_hours == 1
    assert config.cache.snapshot_ttl_seconds == 300
    assert config.cache.role_index_ttl_seconds == 120
    assert config.cache.search_ttl_seconds == 60
    assert config.daemon.scan_interval_seconds == 3
    assert config.planner.max_retries == 2
    assert config.planner.timeout_seconds == 8
    assert config.executor.safe_corner == [0, 0]


def test_missing_file_gives_defaults(tmp_path):
    config = Config.load(str(tmp_path / "absent.yaml"))
    assert config.scanner.timeout_seconds == 15


def test_load_overrides_known_keys(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        'debug': True,
        'cache': {'backend': 'redis', 'not_a_setting': 1},
        'daemon': {'scan_interval_seconds': 5},
        'unknown_section': {'x': 1},
    }))
    config = Config.load(str(path))
    assert config.debug is True
    assert config.cache.backend == 'redis'
    assert not hasattr(config.cache, 'not_a_setting')
    assert config.daemon.scan_interval_seconds == 5
    assert config.daemon.cleanup_interval_seconds == 600


def test_save_round_trip(tmp_path):
    path = str(tmp_path / "saved.yaml")
    config = Config()
    config.planner.max_actions = 4
    config.save(path)
    assert Config.load(path).planner.max_actions == 4


def test_element_dict_round_trip():
    element = make_element(value="draft", element_id=3)
    copy = UIElement.from_dict(element.to_dict())
    assert copy == element
    assert copy.center == (190, 315)


def test_scan_marker_shape():
    marker = make_scan_marker("Finder", "Desktop", NOW)
    assert marker.is_scan_marker
    assert marker.label == "No accessible UI elements found"
    assert (marker.width, marker.height) == (0, 0)
    assert not marker.is_enabled and not marker.is_visible
    assert marker.class_name == "empty_scan"
    assert marker.automation_id == f"scan_{int(NOW.timestamp() * 1000)}"
    assert marker.confidence == 1.0
