import json
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional, Tuple

from ...core.config import PlannerConfig, UIElement
from ...core.errors import PlanValidationError
from ...core.events import EventBus, EventType
from ...core.task import (
    ACTION_TYPES, DEFAULT_ACTION_CONFIDENCE, DEFAULT_SCROLL_AMOUNT, DEFAULT_WAIT_MS,
    SCROLL_DIRECTIONS, Action, ActionPlan, Click, Drag, FeasibilityResult, KeyPress,
    PlanningContext, Screenshot, Scroll, TypeText, Wait, clamp_wait_ms,
)
from ..llm.engine import LLMClient
from .prompts import build_feasibility_prompt, build_plan_prompt

logger = logging.getLogger(__name__)

FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")

CLICK_DURATION_MS = 200
TYPE_SETUP_MS = 300
TYPE_PER_CHAR_MS = 50
KEY_DURATION_MS = 150
SCROLL_DURATION_MS = 300
DRAG_DURATION_MS = 500
SCREENSHOT_DURATION_MS = 1000

SCREENSHOT_WEIGHT = 0.1
COVERAGE_BONUS_PER_ELEMENT = 0.05
MAX_COVERAGE_BONUS = 0.2
MISSING_ELEMENT_FACTOR = 0.5

FALLBACK_ACTION_CONFIDENCE = 0.5
FALLBACK_PLAN_CONFIDENCE = 0.3
FEASIBILITY_FAILURE_CONFIDENCE = 0.2


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _number(value: Any, default: float) -> float:
    return float(value) if _is_number(value) else default


def _field(data: Dict[str, Any], snake: str, camel: str) -> Any:
    value = data.get(snake)
    return data.get(camel) if value is None else value


def _point(value: Any, what: str) -> Optional[Tuple[int, int]]:
    if value is None:
        return None
    if isinstance(value, dict) and _is_number(value.get('x')) and _is_number(value.get('y')):
        return (int(value['x']), int(value['y']))
    raise PlanValidationError(f"invalid {what}: {value!r}")


def _balanced_object(text: str) -> Optional[str]:
    start = text.find('{')
    if start == -1:
        return None
    depth = 0
    for i, char in enumerate(text[start:], start):
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def extract_json(text: str) -> Dict[str, Any]:
    """Pull a JSON object out of a model reply, fenced or bare."""
    text = (text or "").strip()
    match = FENCE_RE.search(text)
    if match:
        text = match.group(1).strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        candidate = _balanced_object(text)
        if candidate is None:
            raise PlanValidationError("response contains no JSON object")
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            raise PlanValidationError(f"response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise PlanValidationError("response is not a JSON object")
    return data


def estimate_duration_ms(actions: List[Action]) -> int:
    total = 0
    for action in actions:
        if isinstance(action, Click):
            total += CLICK_DURATION_MS
        elif isinstance(action, TypeText):
            total += len(action.text) * TYPE_PER_CHAR_MS + TYPE_SETUP_MS
        elif isinstance(action, KeyPress):
            total += KEY_DURATION_MS
        elif isinstance(action, Scroll):
            total += SCROLL_DURATION_MS
        elif isinstance(action, Drag):
            total += DRAG_DURATION_MS
        elif isinstance(action, Wait):
            total += action.duration_ms
        elif isinstance(action, Screenshot):
            total += SCREENSHOT_DURATION_MS
    return total


def plan_confidence(actions: List[Action], elements: List[UIElement]) -> float:
    """Weighted mean of action confidences plus a bonus for grounded actions."""
    if not actions:
        return 0.0

    total = 0.0
    weights = 0.0
    for action in actions:
        weight = SCREENSHOT_WEIGHT if isinstance(action, Screenshot) else 1.0
        total += action.confidence * weight
        weights += weight
    base = total / weights if weights else 0.5

    referenced = {a.element_id for a in actions if a.element_id is not None}
    grounded = sum(1 for e in elements if e.id is not None and e.id in referenced)
    bonus = min(MAX_COVERAGE_BONUS, grounded * COVERAGE_BONUS_PER_ELEMENT)
    return _clamp(base + bonus)


class ActionPlanner:
    """
    Turns a task plus the element index into a validated ActionPlan.
    Never raises: exhausted retries produce an explicit fallback plan.
    """

    def __init__(self,
                 llm: LLMClient,
                 config: Optional[PlannerConfig] = None,
                 events: Optional[EventBus] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.llm = llm
        self.config = config or PlannerConfig()
        self.events = events or EventBus()
        self._sleep = sleep

    def _call_llm(self, prompt: str, timeout: float) -> str:
        # A fresh worker per attempt, so a hung call can be abandoned.
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="uindex-llm")
        try:
            future = executor.submit(self.llm.complete, prompt)
            return future.result(timeout=timeout)
        except FutureTimeout:
            raise TimeoutError(f"LLM call exceeded {timeout:.1f}s")
        finally:
            executor.shutdown(wait=False)

    def generate_plan(self, context: PlanningContext) -> ActionPlan:
        start = time.monotonic()
        deadline = start + self.config.timeout_seconds
        prompt = build_plan_prompt(context, self.config.elements_per_role)
        attempts = max(1, self.config.max_retries)
        last_error: Optional[Exception] = None

        logger.info("Planning %r against %d elements", context.task, len(context.elements))

        for attempt in range(1, attempts + 1):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                last_error = TimeoutError(f"planning exceeded {self.config.timeout_seconds:.1f}s")
                break

            try:
                response = self._call_llm(prompt, remaining)
                plan = self.parse_plan(response, context)
            except PlanValidationError as e:
                last_error = e
                logger.warning("Plan attempt %d/%d rejected: %s", attempt, attempts, e)
            except Exception as e:
                last_error = e
                logger.warning("Plan attempt %d/%d failed: %s", attempt, attempts, e)
            else:
                elapsed_ms = (time.monotonic() - start) * 1000
                logger.info("Plan created in %.0fms: %d actions, confidence %.2f",
                            elapsed_ms, len(plan.actions), plan.confidence)
                self.events.emit_simple(EventType.PLAN_CREATED, source="ActionPlanner",
                                        plan=plan, attempts=attempt, duration_ms=elapsed_ms)
                return plan

            if attempt < attempts:
                delay = self.config.retry_backoff_seconds * (2 ** (attempt - 1))
                delay = min(delay, max(0.0, deadline - time.monotonic()))
                if delay > 0:
                    self._sleep(delay)

        return self.fallback_plan(context, last_error)

    def fallback_plan(self, context: PlanningContext, error: Optional[Exception]) -> ActionPlan:
        reason = str(error) if error else "unknown error"
        logger.warning("Planning failed for %r, using fallback: %s", context.task, reason)

        if context.allow_fallback:
            plan = ActionPlan(
                actions=[Screenshot(confidence=FALLBACK_ACTION_CONFIDENCE)],
                reasoning=f"Fallback plan created due to LLM planning failure: {reason}",
                confidence=FALLBACK_PLAN_CONFIDENCE,
                fallback_required=True,
                estimated_duration_ms=SCREENSHOT_DURATION_MS,
                task=context.task,
                app_name=context.app_name,
                window_title=context.window_title,
            )
        else:
            plan = ActionPlan(
                actions=[],
                reasoning=f"LLM planning failed and fallback is disabled: {reason}",
                confidence=0.0,
                fallback_required=True,
                estimated_duration_ms=0,
                task=context.task,
                app_name=context.app_name,
                window_title=context.window_title,
            )

        self.events.emit_simple(EventType.PLAN_FALLBACK, source="ActionPlanner",
                                plan=plan, error=reason)
        return plan

    def parse_plan(self, response: str, context: PlanningContext) -> ActionPlan:
        """Parse, validate and enrich one model reply; raises PlanValidationError."""
        data = extract_json(response)

        raw_actions = data.get('actions')
        if not isinstance(raw_actions, list):
            raise PlanValidationError("missing or invalid actions array")
        if not raw_actions:
            raise PlanValidationError("actions array is empty")

        max_actions = context.max_actions if context.max_actions > 0 else self.config.max_actions
        if len(raw_actions) > max_actions:
            logger.debug("Truncating plan from %d to %d actions", len(raw_actions), max_actions)
            raw_actions = raw_actions[:max_actions]

        actions = [self.build_action(raw, i, context.allow_fallback) for i, raw in enumerate(raw_actions)]

        by_id = {e.id: e for e in context.elements if e.id is not None}
        for index, action in enumerate(actions):
            self._enrich(action, by_id)
            if isinstance(action, Click) and (action.x is None or action.y is None):
                raise PlanValidationError(
                    f"{action.type} at index {index} has no coordinates and element "
                    f"{action.element_id} could not be resolved"
                )

        confidence = plan_confidence(actions, context.elements)
        reasoning = data.get('reasoning')
        return ActionPlan(
            actions=actions,
            reasoning=reasoning if isinstance(reasoning, str) and reasoning else "No reasoning provided",
            confidence=confidence,
            fallback_required=(confidence < self.config.fallback_threshold
                               or any(isinstance(a, Screenshot) for a in actions)),
            estimated_duration_ms=estimate_duration_ms(actions),
            task=context.task,
            app_name=context.app_name,
            window_title=context.window_title,
        )

    def build_action(self, raw: Any, index: int, allow_fallback: bool = True) -> Action:
        if not isinstance(raw, dict):
            raise PlanValidationError(f"action at index {index} is not an object")

        kind = raw.get('type')
        cls = ACTION_TYPES.get(kind) if isinstance(kind, str) else None
        if cls is None:
            raise PlanValidationError(f"invalid action type at index {index}: {kind!r}")
        if cls is Screenshot and not allow_fallback:
            raise PlanValidationError(f"screenshot at index {index} but fallback is not allowed")

        confidence = _clamp(_number(raw.get('confidence'), DEFAULT_ACTION_CONFIDENCE))
        element_id = _field(raw, 'element_id', 'elementId')
        if not _is_number(element_id):
            element_id = None
        else:
            element_id = int(element_id)

        point = _point(raw.get('coordinates'), f"coordinates at index {index}")
        x, y = point if point else (None, None)

        if issubclass(cls, Click):
            if point is None and element_id is None:
                raise PlanValidationError(f"{kind} at index {index} needs coordinates or an element_id")
            return cls(confidence=confidence, element_id=element_id, x=x, y=y)

        if cls is TypeText:
            text = raw.get('text')
            if not isinstance(text, str) or not text:
                raise PlanValidationError(f"invalid text for type action at index {index}")
            return TypeText(confidence=confidence, element_id=element_id, text=text, x=x, y=y)

        if cls is KeyPress:
            key = raw.get('key')
            if not isinstance(key, str) or not key.strip():
                raise PlanValidationError(f"invalid key for key action at index {index}")
            return KeyPress(confidence=confidence, element_id=element_id, key=key.strip())

        if cls is Scroll:
            direction = _field(raw, 'scroll_direction', 'scrollDirection') or raw.get('direction') or "down"
            if not isinstance(direction, str) or direction.lower() not in SCROLL_DIRECTIONS:
                raise PlanValidationError(f"invalid scroll direction at index {index}: {direction!r}")
            amount = _field(raw, 'scroll_amount', 'scrollAmount')
            amount = int(amount) if _is_number(amount) and amount > 0 else DEFAULT_SCROLL_AMOUNT
            return Scroll(confidence=confidence, element_id=element_id,
                          direction=direction.lower(), amount=amount, x=x, y=y)

        if cls is Drag:
            start = _point(_field(raw, 'drag_from', 'dragFrom'), f"drag start at index {index}") or point
            end = _point(_field(raw, 'drag_to', 'dragTo'), f"drag target at index {index}")
            if end is None:
                raise PlanValidationError(f"drag at index {index} needs drag_to")
            start_x, start_y = start if start else (None, None)
            return Drag(confidence=confidence, element_id=element_id,
                        start_x=start_x, start_y=start_y, end_x=end[0], end_y=end[1])

        if cls is Wait:
            wait_ms = _field(raw, 'wait_ms', 'waitMs')
            return Wait(confidence=confidence, element_id=element_id,
                        duration_ms=clamp_wait_ms(wait_ms if wait_ms is not None else DEFAULT_WAIT_MS))

        return Screenshot(confidence=confidence, element_id=element_id)

    @staticmethod
    def _enrich(action: Action, by_id: Dict[int, UIElement]) -> None:
        if action.element_id is None:
            return

        element = by_id.get(action.element_id)
        if element is None or not element.is_actionable:
            action.confidence = _clamp(action.confidence * MISSING_ELEMENT_FACTOR)
            return

        cx, cy = element.center
        if isinstance(action, (Click, TypeText, Scroll)):
            if action.x is None or action.y is None:
                action.x, action.y = cx, cy
        elif isinstance(action, Drag):
            if action.start_x is None or action.start_y is None:
                action.start_x, action.start_y = cx, cy
        action.confidence = _clamp(action.confidence * element.confidence)

    def validate_task_feasibility(self, task: str, elements: List[UIElement]) -> FeasibilityResult:
        sample = [e for e in elements if not e.is_scan_marker]
        prompt = build_feasibility_prompt(task, sample, self.config.feasibility_sample)
        try:
            data = extract_json(self._call_llm(prompt, self.config.timeout_seconds))
        except Exception as e:
            logger.warning("Feasibility check failed: %s", e)
            return FeasibilityResult(
                feasible=False,
                confidence=FEASIBILITY_FAILURE_CONFIDENCE,
                reasoning=f"Feasibility check failed: {e}",
            )

        required = _field(data, 'required_elements', 'requiredElements') or []
        missing = _field(data, 'missing_elements', 'missingElements') or []
        reasoning = data.get('reasoning')
        return FeasibilityResult(
            feasible=data.get('feasible') is True,
            confidence=_clamp(_number(data.get('confidence'), 0.5)),
            reasoning=reasoning if isinstance(reasoning, str) and reasoning else "No reasoning provided",
            required_elements=[str(r) for r in required] if isinstance(required, list) else [],
            missing_elements=[str(m) for m in missing] if isinstance(missing, list) else [],
        )
