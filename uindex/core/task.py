# uindex/core/task.py
"""
Plan representation - what the agent is going to do in the focused window.
An ActionPlan is an ordered list of typed Actions produced by the planner
and consumed by the executor.
"""

from dataclasses import dataclass, field, asdict
from typing import List, Dict, Any, Optional, Tuple, Type, ClassVar
from enum import Enum, auto
from datetime import datetime
from abc import ABC, abstractmethod

from .config import UIElement, ActionResult

DEFAULT_ACTION_CONFIDENCE = 0.8
MIN_WAIT_MS = 100
MAX_WAIT_MS = 10000
DEFAULT_WAIT_MS = 1000
DEFAULT_SCROLL_AMOUNT = 3
SCROLL_DIRECTIONS = ("up", "down", "left", "right")


class ActionStatus(Enum):
    """Status of a single action."""
    PENDING = auto()
    EXECUTING = auto()
    SUCCEEDED = auto()
    FAILED = auto()


class PlanStatus(Enum):
    """Status of a plan execution."""
    RUNNING = auto()
    COMPLETED = auto()
    PARTIAL = auto()


@dataclass
class Action:
    """Fields shared by every action kind."""
    confidence: float = DEFAULT_ACTION_CONFIDENCE
    element_id: Optional[int] = None

    type: ClassVar[str] = ""
    clicks: ClassVar[bool] = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['type'] = self.type
        return data


@dataclass
class Click(Action):
    x: Optional[int] = None
    y: Optional[int] = None

    type: ClassVar[str] = "click"
    clicks: ClassVar[bool] = True


@dataclass
class DoubleClick(Click):
    type: ClassVar[str] = "doubleClick"


@dataclass
class RightClick(Click):
    type: ClassVar[str] = "rightClick"


@dataclass
class TypeText(Action):
    text: str = ""
    x: Optional[int] = None        # focus click before typing
    y: Optional[int] = None

    type: ClassVar[str] = "type"


@dataclass
class KeyPress(Action):
    key: str = ""

    type: ClassVar[str] = "key"


@dataclass
class Scroll(Action):
    direction: str = "down"
    amount: int = DEFAULT_SCROLL_AMOUNT
    x: Optional[int] = None
    y: Optional[int] = None

    type: ClassVar[str] = "scroll"


@dataclass
class Drag(Action):
    start_x: Optional[int] = None   # None -> current pointer position
    start_y: Optional[int] = None
    end_x: Optional[int] = None
    end_y: Optional[int] = None

    type: ClassVar[str] = "drag"


@dataclass
class Wait(Action):
    duration_ms: int = DEFAULT_WAIT_MS

    type: ClassVar[str] = "wait"


@dataclass
class Screenshot(Action):
    type: ClassVar[str] = "screenshot"


ACTION_TYPES: Dict[str, Type[Action]] = {
    cls.type: cls
    for cls in (Click, DoubleClick, RightClick, TypeText, KeyPress,
                Scroll, Drag, Wait, Screenshot)
}


def clamp_wait_ms(value: Any) -> int:
    try:
        ms = int(value)
    except (TypeError, ValueError):
        return DEFAULT_WAIT_MS
    return max(MIN_WAIT_MS, min(MAX_WAIT_MS, ms))


@dataclass
class ActionPlan:
    """
    A validated, bounded sequence of actions for one task.
    """
    actions: List[Action] = field(default_factory=list)
    reasoning: str = ""
    confidence: float = 0.0
    fallback_required: bool = False
    estimated_duration_ms: int = 0
    task: str = ""
    app_name: Optional[str] = None
    window_title: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_empty(self) -> bool:
        return not self.actions

    def to_dict(self) -> Dict[str, Any]:
        return {
            'task': self.task,
            'app_name': self.app_name,
            'window_title': self.window_title,
            'actions': [a.to_dict() for a in self.actions],
            'reasoning': self.reasoning,
            'confidence': round(self.confidence, 4),
            'fallback_required': self.fallback_required,
            'estimated_duration_ms': self.estimated_duration_ms,
            'created_at': self.created_at.isoformat(),
        }


@dataclass
class PlanningContext:
    """Everything the planner needs for one request."""
    task: str
    elements: List[UIElement] = field(default_factory=list)
    app_name: Optional[str] = None
    window_title: Optional[str] = None
    max_actions: int = 10
    allow_fallback: bool = True


@dataclass
class FeasibilityResult:
    feasible: bool
    confidence: float
    reasoning: str = ""
    required_elements: List[str] = field(default_factory=list)
    missing_elements: List[str] = field(default_factory=list)


@dataclass
class ExecutionOptions:
    timeout_ms: Optional[int] = None
    action_delay_ms: Optional[int] = None


@dataclass
class ActionOutcome:
    """What happened to one action during execution."""
    index: int
    action_type: str
    status: ActionStatus = ActionStatus.PENDING
    error: Optional[str] = None
    method_used: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds() * 1000
        return None


@dataclass
class ExecutionResult:
    success: bool
    executed_actions: int
    total_actions: int
    duration_ms: float
    error: Optional[str] = None
    status: PlanStatus = PlanStatus.COMPLETED
    outcomes: List[ActionOutcome] = field(default_factory=list)
    artifacts: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'executed_actions': self.executed_actions,
            'total_actions': self.total_actions,
            'duration_ms': round(self.duration_ms, 1),
            'error': self.error,
            'status': self.status.name,
            'artifacts': sorted(self.artifacts),
            'timestamp': self.timestamp.isoformat(),
        }


class ActionHandler(ABC):
    """Performs one kind of action through the input driver."""

    @property
    @abstractmethod
    def action_name(self) -> str:
        pass

    @abstractmethod
    def validate(self, action: Action) -> Tuple[bool, Optional[str]]:
        pass

    @abstractmethod
    def execute(self, action: Action, context: Any) -> ActionResult:
        pass
