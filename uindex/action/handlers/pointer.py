from typing import Optional, Tuple

from ...core.config import ActionResult
from ...core.errors import DriverError
from ...core.task import Action, ActionHandler, Click, DoubleClick, Drag, RightClick, Scroll, SCROLL_DIRECTIONS
from ..context import ExecutionContext


def _has_point(x, y) -> bool:
    return x is not None and y is not None


class ClickHandler(ActionHandler):
    button = "left"
    clicks = 1
    kind = Click

    @property
    def action_name(self) -> str:
        return self.kind.type

    def validate(self, action: Action) -> Tuple[bool, Optional[str]]:
        if not isinstance(action, self.kind):
            return (False, f"Expected {self.kind.type} action, got {action.type}")
        if not _has_point(action.x, action.y):
            return (False, "Missing required coordinates")
        return (True, None)

    def execute(self, action: Click, context: ExecutionContext) -> ActionResult:
        try:
            context.driver.move(action.x, action.y)
            context.driver.click(button=self.button, clicks=self.clicks)
        except DriverError as e:
            return ActionResult(success=False, error=str(e), method_used='driver')

        return ActionResult(
            success=True,
            data={'x': action.x, 'y': action.y, 'button': self.button, 'clicks': self.clicks},
            method_used='driver'
        )


class DoubleClickHandler(ClickHandler):
    clicks = 2
    kind = DoubleClick


class RightClickHandler(ClickHandler):
    button = "right"
    kind = RightClick


class ScrollHandler(ActionHandler):
    @property
    def action_name(self) -> str:
        return Scroll.type

    def validate(self, action: Action) -> Tuple[bool, Optional[str]]:
        if not isinstance(action, Scroll):
            return (False, f"Expected scroll action, got {action.type}")
        if action.direction not in SCROLL_DIRECTIONS:
            return (False, f"Unsupported scroll direction: {action.direction}")
        if action.amount <= 0:
            return (False, "Scroll amount must be positive")
        return (True, None)

    def execute(self, action: Scroll, context: ExecutionContext) -> ActionResult:
        try:
            if _has_point(action.x, action.y):
                context.driver.move(action.x, action.y)
            context.driver.scroll(action.direction, action.amount)
        except DriverError as e:
            return ActionResult(success=False, error=str(e), method_used='driver')

        return ActionResult(
            success=True,
            data={'direction': action.direction, 'amount': action.amount},
            method_used='driver'
        )


class DragHandler(ActionHandler):
    @property
    def action_name(self) -> str:
        return Drag.type

    def validate(self, action: Action) -> Tuple[bool, Optional[str]]:
        if not isinstance(action, Drag):
            return (False, f"Expected drag action, got {action.type}")
        if not _has_point(action.end_x, action.end_y):
            return (False, "Missing drag target")
        return (True, None)

    def execute(self, action: Drag, context: ExecutionContext) -> ActionResult:
        driver = context.driver
        try:
            if _has_point(action.start_x, action.start_y):
                start = (action.start_x, action.start_y)
                driver.move(*start)
            else:
                start = driver.position()
            driver.mouse_down()
            try:
                driver.move(action.end_x, action.end_y)
            finally:
                driver.mouse_up()
        except DriverError as e:
            return ActionResult(success=False, error=str(e), method_used='driver')

        return ActionResult(
            success=True,
            data={'from': list(start), 'to': [action.end_x, action.end_y]},
            method_used='driver'
        )


POINTER_HANDLERS = [ClickHandler, DoubleClickHandler, RightClickHandler, ScrollHandler, DragHandler]


def get_pointer_handlers():
    return [handler() for handler in POINTER_HANDLERS]
