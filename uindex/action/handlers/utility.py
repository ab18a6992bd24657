import logging
from typing import Optional, Tuple

from ...core.config import ActionResult
from ...core.task import Action, ActionHandler, Screenshot, Wait, MIN_WAIT_MS, MAX_WAIT_MS
from ..context import ExecutionContext

logger = logging.getLogger(__name__)


class WaitHandler(ActionHandler):
    def __init__(self, sleep):
        self._sleep = sleep

    @property
    def action_name(self) -> str:
        return Wait.type

    def validate(self, action: Action) -> Tuple[bool, Optional[str]]:
        if not isinstance(action, Wait):
            return (False, f"Expected wait action, got {action.type}")
        if not MIN_WAIT_MS <= action.duration_ms <= MAX_WAIT_MS:
            return (False, f"Wait must be between {MIN_WAIT_MS} and {MAX_WAIT_MS} ms")
        return (True, None)

    def execute(self, action: Wait, context: ExecutionContext) -> ActionResult:
        self._sleep(action.duration_ms / 1000.0)
        return ActionResult(success=True, data={'waited_ms': action.duration_ms}, method_used='sleep')


class ScreenshotHandler(ActionHandler):
    """Delegates to the capture collaborator; a missing or failing capture is not a plan failure."""

    @property
    def action_name(self) -> str:
        return Screenshot.type

    def validate(self, action: Action) -> Tuple[bool, Optional[str]]:
        if not isinstance(action, Screenshot):
            return (False, f"Expected screenshot action, got {action.type}")
        return (True, None)

    def execute(self, action: Screenshot, context: ExecutionContext) -> ActionResult:
        if context.capture is None:
            return ActionResult(success=True, data={'captured': False}, method_used='none')

        try:
            image = context.capture()
        except Exception as e:
            logger.warning("Screenshot capture failed: %s", e)
            return ActionResult(success=True, data={'captured': False, 'capture_error': str(e)},
                                method_used='capture')

        context.set_variable("last_screenshot", image)
        return ActionResult(success=True, data={'captured': True}, method_used='capture')


def get_util_handlers(sleep):
    return [WaitHandler(sleep), ScreenshotHandler()]
