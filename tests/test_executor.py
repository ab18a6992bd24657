import pytest

from uindex.action.executor import ActionExecutor
from uindex.action.handlers.keyboard import UnsupportedKeyError, map_key, parse_keys
from uindex.core.config import ExecutorConfig
from uindex.core.events import EventType
from uindex.core.task import (
    ActionStatus, Click, DoubleClick, Drag, ExecutionOptions, KeyPress, PlanStatus,
    RightClick, Screenshot, Scroll, TypeText, Wait,
)

from .conftest import FakeDriver


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def executor(driver, events, sleeps):
    return ActionExecutor(driver, events, ExecutorConfig(action_delay_ms=0), sleep=sleeps.append)


def test_all_kinds_have_handlers(executor):
    assert sorted(executor.list_actions()) == sorted([
        "click", "doubleClick", "rightClick", "type", "key", "scroll", "drag", "wait", "screenshot",
    ])


def test_click_variants(executor, driver):
    result = executor.execute_action_plan([
        Click(x=10, y=20), DoubleClick(x=30, y=40), RightClick(x=50, y=60),
    ])
    assert result.success
    assert driver.calls == [
        ("move", 10, 20), ("click", "left", 1),
        ("move", 30, 40), ("click", "left", 2),
        ("move", 50, 60), ("click", "right", 1),
    ]


def test_type_with_focus_click(executor, driver):
    executor.execute_action_plan([TypeText(text="hello", x=5, y=6), TypeText(text="again")])
    assert driver.calls == [("move", 5, 6), ("click", "left", 1), ("write", "hello"), ("write", "again")]


def test_keys_and_combos(executor, driver):
    result = executor.execute_action_plan([KeyPress(key="Return"), KeyPress(key="Cmd+Shift+S"),
                                           KeyPress(key="A")])
    assert result.success
    assert driver.calls == [("press", "enter"), ("hotkey", ["command", "shift", "s"]), ("press", "a")]


def test_unknown_key_fails(executor, driver):
    result = executor.execute_action_plan([KeyPress(key="Hyper")])
    assert not result.success
    assert "Unsupported key" in result.error
    assert driver.calls == []


@pytest.mark.parametrize("name, expected", [
    ("enter", "enter"), ("ESC", "esc"), ("Escape", "esc"), ("ArrowUp", "up"),
    ("page down", "pagedown"), ("F12", "f12"), ("Option", "alt"), ("Control", "ctrl"),
    ("x", "x"), ("+", "+"),
])
def test_map_key(name, expected):
    assert map_key(name) == expected


def test_parse_keys_rejects_dangling_plus():
    with pytest.raises(UnsupportedKeyError):
        parse_keys("ctrl+")


def test_scroll_and_drag(executor, driver):
    result = executor.execute_action_plan([
        Scroll(direction="up", amount=2, x=100, y=100),
        Scroll(),
        Drag(start_x=1, start_y=2, end_x=30, end_y=40),
        Drag(end_x=7, end_y=8),
    ])
    assert result.success
    assert driver.calls == [
        ("move", 100, 100), ("scroll", "up", 2),
        ("scroll", "down", 3),
        ("move", 1, 2), ("mouse_down", "left"), ("move", 30, 40), ("mouse_up", "left"),
        ("mouse_down", "left"), ("move", 7, 8), ("mouse_up", "left"),
    ]


def test_drag_releases_button_when_move_fails(events):
    driver = FakeDriver(fail_on="move", fail_after=1)
    executor = ActionExecutor(driver, events, ExecutorConfig(action_delay_ms=0), sleep=lambda s: None)
    result = executor.execute_action_plan([Drag(start_x=1, start_y=2, end_x=3, end_y=4)])
    assert not result.success
    assert driver.names() == ["move", "mouse_down", "mouse_up"]


def test_wait_and_delays(driver, events, sleeps):
    executor = ActionExecutor(driver, events, ExecutorConfig(action_delay_ms=100), sleep=sleeps.append)
    executor.execute_action_plan([Wait(duration_ms=250), Click(x=1, y=1)])
    assert sleeps == [0.25, 0.1]


def test_option_delay_overrides_config(driver, events, sleeps):
    executor = ActionExecutor(driver, events, ExecutorConfig(action_delay_ms=100), sleep=sleeps.append)
    executor.execute_action_plan([Click(x=1, y=1), Click(x=2, y=2), Click(x=3, y=3)],
                                 ExecutionOptions(action_delay_ms=0))
    assert sleeps == []


def test_screenshot_always_succeeds(driver, events):
    shots = []
    executor = ActionExecutor(driver, events, ExecutorConfig(action_delay_ms=0),
                              capture=lambda: shots.append(1) or "image", sleep=lambda s: None)
    assert executor.execute_action_plan([Screenshot()]).success
    assert shots == [1]

    def broken():
        raise OSError("no display")

    executor.capture = broken
    assert executor.execute_action_plan([Screenshot()]).success

    executor.capture = None
    assert executor.execute_action_plan([Screenshot()]).success


def test_fail_fast_on_second_action(events):
    driver = FakeDriver(fail_on="click", fail_after=1)
    executor = ActionExecutor(driver, events, ExecutorConfig(action_delay_ms=0), sleep=lambda s: None)
    result = executor.execute_action_plan([Click(x=1, y=1), Click(x=2, y=2), KeyPress(key="Enter")])

    assert result.success is False
    assert result.executed_actions == 1
    assert result.total_actions == 3
    assert result.status == PlanStatus.PARTIAL
    assert "Action 2" in result.error
    assert "press" not in driver.names()
    assert [o.status for o in result.outcomes] == [
        ActionStatus.SUCCEEDED, ActionStatus.FAILED, ActionStatus.PENDING,
    ]
    assert events.get_history(EventType.PLAN_FAILED)
    assert len(events.get_history(EventType.ACTION_FAILED)) == 1


def test_validation_failure_halts(executor, driver):
    result = executor.execute_action_plan([Click(), KeyPress(key="Enter")])
    assert result.executed_actions == 0
    assert "Validation failed" in result.error
    assert driver.calls == []


def test_plan_timeout(executor, driver):
    result = executor.execute_action_plan([Click(x=1, y=1)], ExecutionOptions(timeout_ms=-1))
    assert not result.success
    assert "timed out" in result.error
    assert driver.calls == []


def test_unexpected_handler_exception_is_contained(events):
    class ExplodingDriver(FakeDriver):
        def press(self, key):
            raise RuntimeError("boom")

    executor = ActionExecutor(ExplodingDriver(), events, ExecutorConfig(action_delay_ms=0),
                              sleep=lambda s: None)
    result = executor.execute_action_plan([KeyPress(key="Enter")])
    assert not result.success
    assert "boom" in result.error


def test_success_result(executor, events):
    result = executor.execute_action_plan([Click(x=1, y=1), Wait(duration_ms=100)])
    assert result.success
    assert result.executed_actions == result.total_actions == 2
    assert result.status == PlanStatus.COMPLETED
    assert all(o.status == ActionStatus.SUCCEEDED for o in result.outcomes)
    assert events.get_history(EventType.PLAN_COMPLETED)
    assert result.to_dict()['status'] == "COMPLETED"


def test_emergency_stop(driver, events):
    executor = ActionExecutor(driver, events, ExecutorConfig(safe_corner=[5, 5]))
    assert executor.emergency_stop()
    assert driver.calls == [("move", 5, 5)]
    assert events.get_history(EventType.EMERGENCY_STOP)


def test_emergency_stop_reports_driver_failure(events):
    executor = ActionExecutor(FakeDriver(fail_on="move"), events)
    assert executor.emergency_stop() is False


def test_single_action_outside_a_plan(executor, driver):
    assert not executor.is_executing
    result = executor.execute_single_action(TypeText(text="note"))
    assert result.success
    assert result.data['text_length'] == 4
    assert driver.calls == [("write", "note")]

    failed = executor.execute_single_action(Click())
    assert not failed.success
    assert "Validation failed" in failed.error


def test_handler_outputs_become_result_artifacts(driver, events):
    executor = ActionExecutor(driver, events, ExecutorConfig(action_delay_ms=0),
                              capture=lambda: "image", sleep=lambda s: None)
    result = executor.execute_action_plan([TypeText(text="draft"), Screenshot()])
    assert result.artifacts == {"typed_text": "draft", "last_screenshot": "image"}
    assert result.to_dict()["artifacts"] == ["last_screenshot", "typed_text"]

    assert executor.execute_action_plan([KeyPress(key="Enter")]).artifacts == {}
