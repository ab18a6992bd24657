# uindex/core/agent.py
"""
IndexedAgent - one object wiring scanner, index, planner and executor
together for a desktop session.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .config import ActiveApplication, Config, ScanResult, UIElement
from .daemon import IndexingDaemon
from .events import EventBus
from .task import (
    Action, ActionPlan, ExecutionOptions, ExecutionResult, FeasibilityResult, PlanningContext,
)
from ..memory.cache import create_cache
from ..memory.store import ElementStore
from ..memory.sync import CacheSync
from ..perception.normalizer import ElementNormalizer
from ..perception.scanner import PlatformScanner, create_scanner

logger = logging.getLogger(__name__)


@dataclass
class TaskResult:
    """What happened to one task: the plan used and how execution went."""
    task: str
    success: bool
    app_name: Optional[str] = None
    window_title: Optional[str] = None
    element_count: int = 0
    plan: Optional[ActionPlan] = None
    execution: Optional[ExecutionResult] = None
    replanned: bool = False
    error: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'task': self.task,
            'success': self.success,
            'app_name': self.app_name,
            'window_title': self.window_title,
            'element_count': self.element_count,
            'plan': self.plan.to_dict() if self.plan else None,
            'execution': self.execution.to_dict() if self.execution else None,
            'replanned': self.replanned,
            'error': self.error,
            'duration_ms': round(self.duration_ms, 1),
        }


def _real_elements(elements: Optional[List[UIElement]]) -> List[UIElement]:
    return [e for e in (elements or []) if not e.is_scan_marker]


class IndexedAgent:
    """
    Caller-facing surface. Every collaborator can be injected; the ones
    left out are built from the config. The language model and the input
    driver are only built when first needed.
    """

    def __init__(self,
                 config: Optional[Config] = None,
                 scanner: Optional[PlatformScanner] = None,
                 store: Optional[ElementStore] = None,
                 sync: Optional[CacheSync] = None,
                 llm=None,
                 driver=None,
                 capture=None,
                 events: Optional[EventBus] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.config = config or Config()
        self.events = events or EventBus()

        self.scanner = scanner or create_scanner(self.config.scanner)
        self.store = store or ElementStore(self.config.store, clock=clock)
        if sync is None:
            backend = create_cache(self.config.cache) if self.config.cache.enabled else None
            sync = CacheSync(backend, self.config.cache)
        self.sync = sync

        self.daemon = IndexingDaemon(
            scanner=self.scanner,
            store=self.store,
            sync=self.sync,
            events=self.events,
            config=self.config.daemon,
            normalizer=ElementNormalizer(),
            clock=clock,
        )

        self._llm = llm
        self._driver = driver
        self._capture = capture
        self._planner = None
        self._executor = None
        self._build_lock = threading.Lock()
        self._execution_lock = threading.Lock()

    # Lazily built collaborators

    @property
    def planner(self):
        with self._build_lock:
            if self._planner is None:
                from ..cognition.planning.planner import ActionPlanner
                if self._llm is None:
                    from ..cognition.llm.engine import LLMEngine
                    self._llm = LLMEngine(self.config.llm, self.events)
                self._planner = ActionPlanner(self._llm, self.config.planner, self.events)
            return self._planner

    @property
    def executor(self):
        with self._build_lock:
            if self._executor is None:
                from ..action.executor import ActionExecutor
                if self._driver is None:
                    from ..action.driver import PyAutoGUIDriver
                    self._driver = PyAutoGUIDriver(failsafe=self.config.executor.failsafe,
                                                   type_interval=self.config.executor.type_interval)
                if self._capture is None:
                    from ..perception.screen import ScreenCapture
                    self._capture = ScreenCapture()
                self._executor = ActionExecutor(self._driver, self.events, self.config.executor,
                                                capture=self._capture)
            return self._executor

    # Lifecycle

    def initialize(self) -> None:
        """Raises AccessibilityPermissionError when the scanner can't read the UI."""
        self.daemon.initialize()

    def start(self) -> None:
        self.daemon.start()

    def stop(self) -> None:
        self.daemon.stop()

    def close(self) -> None:
        self.stop()
        if self.sync.backend is not None:
            self.sync.backend.close()
        self.store.close()

    # Index queries

    def get_active_application(self) -> Optional[ActiveApplication]:
        return self.scanner.get_active_application()

    def get_ui_index(self, app_name: Optional[str] = None,
                     window_title: Optional[str] = None) -> List[UIElement]:
        """Cached snapshot when there is one, the durable store otherwise."""
        if app_name:
            cached = self.sync.get_elements(app_name, window_title or "")
            if cached is not None:
                logger.debug("UI index for %s served from cache", app_name)
                return cached
        return self.store.get_elements(app_name, window_title)

    def find_elements_by_role(self, role: str, app_name: Optional[str] = None) -> List[UIElement]:
        elements = self.sync.get_elements_by_role(role, app_name)
        if not elements:
            elements = self.store.get_elements_by_role(role, app_name)
        return elements

    def find_elements_by_label(self, label: str, app_name: Optional[str] = None) -> List[UIElement]:
        return self.store.get_elements_by_label(label, app_name)

    def search_elements(self, query: str, app_name: Optional[str] = None) -> List[UIElement]:
        elements = self.sync.search_elements(query, app_name, limit=self.store.config.search_limit)
        if not elements:
            elements = self.store.search_elements(query, app_name)
        return elements

    def get_active_applications(self) -> List[Dict[str, Any]]:
        return self.store.get_active_applications()

    def scan_current_application(self) -> Optional[ScanResult]:
        return self.daemon.scan_current_application()

    # Planning and execution

    def generate_plan(self, context: PlanningContext) -> ActionPlan:
        return self.planner.generate_plan(context)

    def validate_task_feasibility(self, task: str, elements: List[UIElement]) -> FeasibilityResult:
        return self.planner.validate_task_feasibility(task, elements)

    def execute_action_plan(self, actions: List[Action],
                            options: Optional[ExecutionOptions] = None) -> ExecutionResult:
        # One desktop, one pointer: plans never run side by side.
        with self._execution_lock:
            return self.executor.execute_action_plan(actions, options)

    def emergency_stop(self) -> bool:
        return self.executor.emergency_stop()

    def health(self) -> Dict[str, Any]:
        return {
            'daemon': self.daemon.get_status(),
            'cache': self.sync.health_check(),
            'store': self.store.get_statistics(),
        }

    def _current_elements(self, app: ActiveApplication) -> List[UIElement]:
        indexed = self.get_ui_index(app.name, app.window_title)
        real = _real_elements(indexed)
        has_marker = any(e.is_scan_marker for e in indexed)

        if not real and not has_marker:
            logger.info("No UI elements indexed for %s, scanning now", app.name)
            scan = self.scan_current_application()
            if scan is not None:
                real = _real_elements(scan.elements)
        return real

    def _plan(self, task: str, app: ActiveApplication, elements: List[UIElement],
              max_actions: int) -> ActionPlan:
        context = PlanningContext(
            task=task,
            elements=elements,
            app_name=app.name,
            window_title=app.window_title,
            max_actions=max_actions,
        )
        plan = self.generate_plan(context)
        if plan.fallback_required:
            logger.warning("Plan for %r needs fallback; the UI index may be insufficient", task)
        return plan

    def run_task(self, task: str, max_actions: Optional[int] = None,
                 replan_on_failure: bool = True,
                 options: Optional[ExecutionOptions] = None) -> TaskResult:
        """
        Plan and execute one task against the foreground window. On a failed
        execution the window is rescanned and the task replanned once.
        """
        start = time.monotonic()
        max_actions = max_actions or self.config.planner.max_actions
        result = TaskResult(task=task, success=False)

        app = self.get_active_application()
        if app is None:
            result.error = "No active application"
            return self._finish(result, start)
        result.app_name, result.window_title = app.name, app.window_title

        elements = self._current_elements(app)
        result.element_count = len(elements)
        if not elements:
            result.error = (f"No UI elements found for {app.name} ({app.window_title}). "
                            "The application may not expose accessible elements or "
                            "accessibility permissions may be missing.")
            return self._finish(result, start)

        result.plan = self._plan(task, app, elements, max_actions)
        if result.plan.is_empty:
            result.error = "Planner produced no actions"
            return self._finish(result, start)

        result.execution = self.execute_action_plan(result.plan.actions, options)

        if not result.execution.success and replan_on_failure:
            logger.info("Execution failed (%s); rescanning and replanning", result.execution.error)
            scan = self.scan_current_application()
            fresh = _real_elements(scan.elements) if scan is not None else elements
            if fresh:
                result.replanned = True
                result.element_count = len(fresh)
                result.plan = self._plan(task, app, fresh, max_actions)
                if not result.plan.is_empty:
                    result.execution = self.execute_action_plan(result.plan.actions, options)

        result.success = result.execution.success
        result.error = result.execution.error
        return self._finish(result, start)

    @staticmethod
    def _finish(result: TaskResult, start: float) -> TaskResult:
        result.duration_ms = (time.monotonic() - start) * 1000
        if result.success:
            logger.info("Task %r completed in %.0fms", result.task, result.duration_ms)
        else:
            logger.warning("Task %r failed: %s", result.task, result.error)
        return result
