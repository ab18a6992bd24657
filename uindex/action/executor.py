import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from ..core.config import ActionResult, ExecutorConfig
from ..core.errors import DriverError
from ..core.events import EventBus, EventType
from ..core.task import (
    Action, ActionHandler, ActionStatus, ExecutionOptions, ExecutionResult, PlanStatus,
)

from .context import ExecutionContext
from .driver import InputDriver

from .handlers import get_all_handlers

logger = logging.getLogger(__name__)


class ActionExecutor:
    """
    Runs an action list against the input driver, one action at a time.
    The first failed action halts the plan; the result says how many
    actions completed before it.
    """

    def __init__(self,
                 driver: InputDriver,
                 events: Optional[EventBus] = None,
                 config: Optional[ExecutorConfig] = None,
                 capture: Optional[Callable] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.driver = driver
        self.events = events or EventBus()
        self.config = config or ExecutorConfig()
        self.capture = capture
        self._sleep = sleep

        self._handlers: Dict[str, ActionHandler] = {}
        self._register_all_handlers()

        self._current_context: Optional[ExecutionContext] = None
        self._lock = threading.Lock()

    def _register_all_handlers(self) -> None:
        for handler in get_all_handlers(self._sleep):
            self.register_handler(handler)

        logger.debug("Registered %d handlers: %s", len(self._handlers), ", ".join(sorted(self._handlers)))

    def register_handler(self, handler: ActionHandler) -> None:
        action_name = handler.action_name
        if action_name in self._handlers:
            logger.warning("Replacing handler for '%s'", action_name)
        self._handlers[action_name] = handler

    def get_handler(self, action_name: str) -> Optional[ActionHandler]:
        return self._handlers.get(action_name)

    def list_actions(self) -> List[str]:
        return list(self._handlers.keys())

    @property
    def is_executing(self) -> bool:
        return self._current_context is not None

    def execute_action_plan(self, actions: List[Action],
                            options: Optional[ExecutionOptions] = None) -> ExecutionResult:
        options = options or ExecutionOptions()
        timeout_ms = options.timeout_ms
        if timeout_ms is None:
            timeout_ms = self.config.max_plan_duration_seconds * 1000
        delay_ms = options.action_delay_ms
        if delay_ms is None:
            delay_ms = self.config.action_delay_ms

        context = ExecutionContext(actions=list(actions), driver=self.driver, capture=self.capture)
        executed = 0
        failure_reason: Optional[str] = None

        with self._lock:
            self._current_context = context
            self.events.emit_simple(EventType.PLAN_STARTED, source='Executor', total_actions=len(actions))
            logger.info("Executing plan with %d actions", len(actions))

            try:
                for index, action in enumerate(context.actions):
                    if context.elapsed_time_ms() > timeout_ms:
                        failure_reason = f"Plan execution timed out after {timeout_ms:.0f}ms"
                        break

                    ok, error = self._execute_action(action, index, context)
                    if not ok:
                        failure_reason = f"Action {index + 1} ({action.type}) failed: {error}"
                        break
                    executed += 1

                    if index < len(context.actions) - 1 and delay_ms > 0:
                        self._sleep(delay_ms / 1000.0)

            except Exception as e:
                failure_reason = f"Unexpected exception: {e}"
                logger.exception("Plan execution aborted")
                self.events.emit_simple(EventType.ERROR, source='Executor', error=str(e))

            finally:
                self._current_context = None

        success = failure_reason is None
        duration_ms = context.elapsed_time_ms()
        result = ExecutionResult(
            success=success,
            executed_actions=executed,
            total_actions=len(context.actions),
            duration_ms=duration_ms,
            error=failure_reason,
            status=PlanStatus.COMPLETED if success else PlanStatus.PARTIAL,
            outcomes=context.outcomes,
            artifacts=dict(context.variables),
        )

        if success:
            self.events.emit_simple(EventType.PLAN_COMPLETED, source='Executor',
                                    executed_actions=executed, duration_ms=duration_ms)
            logger.info("Plan completed: %d actions in %.0fms", executed, duration_ms)
        else:
            self.events.emit_simple(EventType.PLAN_FAILED, source='Executor',
                                    executed_actions=executed, error=failure_reason,
                                    duration_ms=duration_ms)
            logger.warning("Plan failed after %d/%d actions: %s", executed, len(context.actions), failure_reason)

        return result

    def _execute_action(self, action: Action, index: int,
                        context: ExecutionContext) -> Tuple[bool, Optional[str]]:
        context.current_index = index
        outcome = context.outcomes[index]
        outcome.status = ActionStatus.EXECUTING
        outcome.started_at = datetime.now()

        self.events.emit_simple(EventType.ACTION_STARTED, source='Executor',
                                index=index, action=action.to_dict())
        logger.debug("Action %d/%d: %s", index + 1, len(context.actions), action.type)

        handler = self.get_handler(action.type)
        if handler is None:
            return self._fail(outcome, action, f"No handler registered for action: '{action.type}'")

        is_valid, validation_error = handler.validate(action)
        if not is_valid:
            return self._fail(outcome, action, f"Validation failed: {validation_error}")

        try:
            result = handler.execute(action, context)
        except Exception as e:
            logger.exception("Handler for '%s' raised", action.type)
            return self._fail(outcome, action, f"Exception during execution: {e}")

        outcome.method_used = result.method_used
        if not result.success:
            return self._fail(outcome, action, result.error or "Action failed")

        outcome.status = ActionStatus.SUCCEEDED
        outcome.completed_at = datetime.now()
        self.events.emit_simple(EventType.ACTION_COMPLETED, source='Executor',
                                index=index, action_type=action.type,
                                method_used=result.method_used,
                                duration_ms=outcome.duration_ms, data=result.data)
        return (True, None)

    def _fail(self, outcome, action: Action, error: str) -> Tuple[bool, str]:
        outcome.status = ActionStatus.FAILED
        outcome.error = error
        outcome.completed_at = datetime.now()
        self.events.emit_simple(EventType.ACTION_FAILED, source='Executor',
                                index=outcome.index, action_type=action.type,
                                error=error, method_used=outcome.method_used,
                                duration_ms=outcome.duration_ms)
        logger.warning("Action %d (%s) failed: %s", outcome.index + 1, action.type, error)
        return (False, error)

    def execute_single_action(self, action: Action) -> ActionResult:
        handler = self.get_handler(action.type)
        if not handler:
            return ActionResult(success=False, error=f"No handler for action: {action.type}")

        is_valid, error = handler.validate(action)
        if not is_valid:
            return ActionResult(success=False, error=f"Validation failed: {error}")

        context = ExecutionContext(actions=[action], driver=self.driver, capture=self.capture)
        try:
            return handler.execute(action, context)
        except Exception as e:
            return ActionResult(success=False, error=f"Exception: {e}")

    def emergency_stop(self) -> bool:
        """Park the pointer in the safe corner. Does not wait for a running plan."""
        x, y = self.config.safe_corner
        try:
            self.driver.move(int(x), int(y))
        except DriverError as e:
            logger.error("Emergency stop could not move the pointer: %s", e)
            self.events.emit_simple(EventType.ERROR, source='Executor', error=str(e))
            return False

        logger.warning("Emergency stop: pointer moved to (%s, %s)", x, y)
        self.events.emit_simple(EventType.EMERGENCY_STOP, source='Executor', position=[x, y])
        return True
