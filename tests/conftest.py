from datetime import datetime, timedelta
from typing import List, Optional

import pytest

from uindex.core.config import ActiveApplication, Config, UIElement
from uindex.core.errors import AccessibilityPermissionError, DriverError
from uindex.core.events import EventBus
from uindex.memory.cache import MemoryCache
from uindex.memory.store import ElementStore
from uindex.memory.sync import CacheSync
from uindex.perception.scanner import PlatformScanner, RawElement

NOW = datetime(2024, 5, 1, 12, 0, 0)


class Clock:
    """Settable clock for freshness tests."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeScanner(PlatformScanner):
    platform = "fake"

    def __init__(self, app: Optional[ActiveApplication] = None,
                 raws: Optional[List[RawElement]] = None,
                 permitted: bool = True):
        super().__init__()
        self.app = app
        self.raws = raws or []
        self.permitted = permitted
        self.scans = 0
        self.cleaned_up = False
        self.error: Optional[Exception] = None

    def initialize(self) -> None:
        if not self.permitted:
            raise AccessibilityPermissionError("GUI scripting is disabled")

    def get_active_application(self) -> Optional[ActiveApplication]:
        return self.app

    def scan_active_window(self) -> List[RawElement]:
        self.scans += 1
        if self.error is not None:
            raise self.error
        return list(self.raws)

    def cleanup(self) -> None:
        self.cleaned_up = True


class FakeLLM:
    """Returns queued replies in order; an Exception entry is raised."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts: List[str] = []

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.replies:
            raise RuntimeError("no reply queued")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeDriver:
    def __init__(self, fail_on: Optional[str] = None, fail_after: int = 0):
        self.calls = []
        self.fail_on = fail_on
        self.fail_after = fail_after
        self.pointer = (500, 400)

    def _record(self, name, *args):
        if name == self.fail_on:
            if self.fail_after <= 0:
                raise DriverError(f"{name} failed")
            self.fail_after -= 1
        self.calls.append((name,) + args)

    def move(self, x, y):
        self._record("move", x, y)
        self.pointer = (x, y)

    def position(self):
        return self.pointer

    def click(self, button="left", clicks=1):
        self._record("click", button, clicks)

    def mouse_down(self, button="left"):
        self._record("mouse_down", button)

    def mouse_up(self, button="left"):
        self._record("mouse_up", button)

    def write(self, text):
        self._record("write", text)

    def press(self, key):
        self._record("press", key)

    def hotkey(self, keys):
        self._record("hotkey", list(keys))

    def scroll(self, direction, amount):
        self._record("scroll", direction, amount)

    def names(self):
        return [c[0] for c in self.calls]


def make_element(role="button", label="Save", x=150, y=300, width=80, height=30,
                 app="Notes", window="Untitled", confidence=0.9, enabled=True,
                 visible=True, value=None, last_seen=NOW, element_id=None) -> UIElement:
    return UIElement(
        app_name=app,
        window_title=window,
        role=role,
        label=label,
        x=x,
        y=y,
        width=width,
        height=height,
        value=value,
        accessibility_id=f"{app}_{role}_{x}_{y}",
        class_name="NSButton",
        automation_id=f"{role}_{label}",
        is_enabled=enabled,
        is_visible=visible,
        confidence=confidence,
        last_seen=last_seen,
        id=element_id,
    )


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def store(clock):
    s = ElementStore(db_path=":memory:", clock=clock)
    s.initialize()
    yield s
    s.close()


@pytest.fixture
def memory_cache():
    return MemoryCache()


@pytest.fixture
def sync(memory_cache):
    s = CacheSync(memory_cache)
    s.initialize()
    return s


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def notes_app():
    return ActiveApplication(name="Notes", window_title="Untitled")
