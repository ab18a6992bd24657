import subprocess

import pytest

from uindex.core.config import ScannerConfig
from uindex.core.errors import AccessibilityPermissionError, UnsupportedPlatformError
from uindex.perception.macos import MacOSScanner
from uindex.perception.records import FIELD_SEP
from uindex.perception.scanner import create_scanner

SAVE_LINE = FIELD_SEP.join(["R1", "AXButton", "Save", "", "", "", "150", "300", "80", "30", "true", "true"])


class FakeOsascript:
    """Stands in for subprocess.run, answering by script content."""

    def __init__(self, permission=b"true\n", app=b"Notes\x1fUntitled\n", scan=b"", returncode=0):
        self.permission = permission
        self.app = app
        self.scan = scan
        self.returncode = returncode
        self.timeout = False

    def __call__(self, args, input, stdout, stderr, timeout):
        assert args == ["osascript", "-"]
        if self.timeout:
            raise subprocess.TimeoutExpired(args, timeout)
        script = input.decode("utf-8")
        if "UI elements enabled" in script:
            out = self.permission
        elif "frontmost is true" in script and "walk" not in script:
            out = self.app
        else:
            out = self.scan
        return subprocess.CompletedProcess(args, self.returncode, stdout=out, stderr=b"not allowed")


@pytest.fixture
def osascript(monkeypatch):
    fake = FakeOsascript()
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


def test_unsupported_platform():
    with pytest.raises(UnsupportedPlatformError):
        create_scanner(ScannerConfig(), platform="linux")


def test_darwin_selects_macos_scanner():
    assert isinstance(create_scanner(ScannerConfig(), platform="darwin"), MacOSScanner)


def test_initialize_checks_permission(osascript):
    MacOSScanner().initialize()

    osascript.permission = b"false\n"
    with pytest.raises(AccessibilityPermissionError):
        MacOSScanner().initialize()


def test_initialize_bridge_failure_is_permission_error(osascript):
    osascript.returncode = 1
    with pytest.raises(AccessibilityPermissionError):
        MacOSScanner().initialize()


def test_active_application(osascript):
    app = MacOSScanner().get_active_application()
    assert (app.name, app.window_title) == ("Notes", "Untitled")

    osascript.app = b""
    assert MacOSScanner().get_active_application() is None


def test_scan_parses_records_and_drops_bad_lines(osascript):
    osascript.scan = ("\n".join([SAVE_LINE, "garbage", SAVE_LINE]) + "\n").encode("utf-8")
    scanner = MacOSScanner()
    elements = scanner.scan_active_window()
    assert [e.title for e in elements] == ["Save", "Save"]
    assert scanner.last_rejected == 1


def test_scan_timeout_yields_empty(osascript):
    osascript.timeout = True
    assert MacOSScanner().scan_active_window() == []


def test_output_is_truncated_at_line_boundary(osascript):
    line = (SAVE_LINE + "\n").encode("utf-8")
    osascript.scan = line * 10
    scanner = MacOSScanner(ScannerConfig(max_output_bytes=len(line) * 3 + 5))
    assert len(scanner.scan_active_window()) == 3


def test_script_embeds_limits():
    scanner = MacOSScanner(ScannerConfig(max_depth=2, max_children=7))
    assert "$max_depth" not in scanner._script
    assert "7" in scanner._script
