from datetime import datetime
from typing import Any, Dict, List

from ..core.task import Action, ActionOutcome


class ExecutionContext:
    """State shared by the handlers while one plan runs."""

    def __init__(self, actions: List[Action], driver, capture=None):
        self.actions = actions
        self.driver = driver
        self.capture = capture

        self.outcomes: List[ActionOutcome] = [
            ActionOutcome(index=i, action_type=a.type) for i, a in enumerate(actions)
        ]
        self.start_time: datetime = datetime.now()
        self.current_index: int = 0
        # Handed back to the caller as ExecutionResult.artifacts
        self.variables: Dict[str, Any] = {}

    def set_variable(self, key: str, value: Any) -> None:
        self.variables[key] = value

    def elapsed_time_ms(self) -> float:
        elapsed = datetime.now() - self.start_time
        return elapsed.total_seconds() * 1000
