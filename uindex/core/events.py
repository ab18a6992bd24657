# uindex/core/events.py
"""
Event system for component communication.
Components emit lifecycle events here; callers subscribe to observe them.
"""

from collections import defaultdict, deque
from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Any, Callable, DefaultDict, Deque, Dict, List, Optional
from datetime import datetime
import logging
import uuid
import threading

logger = logging.getLogger(__name__)


class EventType(Enum):
    """All event types in the system."""

    # Daemon lifecycle
    DAEMON_STARTED = auto()
    DAEMON_STOPPED = auto()

    # Scanning
    SCAN_COMPLETED = auto()
    SCAN_EMPTY = auto()
    SCAN_ERROR = auto()

    # Index
    ELEMENTS_STORED = auto()
    ELEMENTS_SYNCED = auto()
    INDEX_CLEANED = auto()

    # LLM
    LLM_LOADING = auto()
    LLM_LOADED = auto()
    LLM_UNLOADED = auto()

    # Planning
    PLAN_CREATED = auto()
    PLAN_FALLBACK = auto()

    # Execution
    PLAN_STARTED = auto()
    ACTION_STARTED = auto()
    ACTION_COMPLETED = auto()
    ACTION_FAILED = auto()
    PLAN_COMPLETED = auto()
    PLAN_FAILED = auto()
    EMERGENCY_STOP = auto()

    # Errors
    ERROR = auto()


@dataclass
class Event:
    """An event in the system."""
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    source: str = "unknown"


# Type alias for event handlers
EventHandler = Callable[[Event], None]


class EventBus:
    """
    Per-agent publish/subscribe hub. Handlers run on the emitting thread,
    after the lock is released; a failing handler is logged and skipped.
    """

    def __init__(self, max_history: int = 100):
        self._subscribers: DefaultDict[Optional[EventType], List[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()
        self._history: Deque[Event] = deque(maxlen=max_history)

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        with self._lock:
            self._subscribers[event_type].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        """Receive every event, whatever its type."""
        with self._lock:
            self._subscribers[None].append(handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        with self._lock:
            registered = self._subscribers.get(event_type)
            if registered and handler in registered:
                registered.remove(handler)

    def emit(self, event: Event) -> None:
        with self._lock:
            self._history.append(event)
            targets = self._subscribers.get(event.type, []) + self._subscribers.get(None, [])

        for handler in targets:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.type.name)

    def emit_simple(self, event_type: EventType, source: str = "unknown", **data) -> Event:
        event = Event(type=event_type, data=data, source=source)
        self.emit(event)
        return event

    def get_history(self, event_type: Optional[EventType] = None) -> List[Event]:
        """Recent events, oldest first, optionally of one type."""
        with self._lock:
            return [e for e in self._history if event_type is None or e.type == event_type]
