from typing import Dict, List

from ...core.config import UIElement
from ...core.task import PlanningContext

NO_ELEMENTS = "No UI elements available in current index."

PLANNER_PROMPT = """You are a desktop automation planner. Generate a precise, deterministic action plan using the provided UI element index.

## TASK
{task}

## CURRENT CONTEXT
- Active Application: {app_name}
- Window Title: {window_title}
- Available UI Elements: {element_count}
- Max Actions Allowed: {max_actions}

## UI ELEMENT INDEX
{elements}

## ACTION TYPES SUPPORTED
- click: Click at coordinates {{x, y}}
- doubleClick: Double-click at coordinates {{x, y}}
- rightClick: Right-click at coordinates {{x, y}}
- type: Type text. Params: {{text}}; optional coordinates to click first
- key: Press a key or combo (Enter, Tab, Escape, ctrl+s, ...). Params: {{key}}
- scroll: Scroll. Params: {{scroll_direction: up|down|left|right, scroll_amount}}
- drag: Drag between points. Params: {{drag_from: {{x, y}}, drag_to: {{x, y}}}}
- wait: Pause. Params: {{wait_ms}} between 100 and 10000
{screenshot_line}
## PLANNING RULES
1. USE UI INDEX FIRST: prefer elements from the index over guessing coordinates
2. BE PRECISE: reference elements by element_id; use their coordinates when you give any
3. BE EFFICIENT: fewest actions that achieve the goal, never more than {max_actions}
4. BE DETERMINISTIC: the same task and index must produce the same actions
5. VALIDATE ELEMENTS: only use elements marked enabled and visible (✓)
6. PROVIDE REASONING: explain the action choices
7. ESTIMATE CONFIDENCE: rate each action's likelihood of success (0-1)
{fallback_rule}
## RESPONSE FORMAT
Respond with valid JSON only:
{{
  "actions": [
    {{"type": "click", "coordinates": {{"x": 100, "y": 200}}, "element_id": 123, "confidence": 0.95}},
    {{"type": "type", "text": "hello world", "confidence": 0.9}}
  ],
  "reasoning": "why these actions",
  "confidence": 0.92
}}

## EXAMPLES
Task: "Click the Save button"
Available Elements: [ID:45] button "Save" at (150, 300)
Response:
{{"actions": [{{"type": "click", "coordinates": {{"x": 150, "y": 300}}, "element_id": 45, "confidence": 0.95}}],
 "reasoning": "Save button is in the index; one direct click.", "confidence": 0.95}}

Task: "Type 'hello world' in the search field"
Available Elements: [ID:12] text field "Search" at (200, 150)
Response:
{{"actions": [{{"type": "click", "coordinates": {{"x": 200, "y": 150}}, "element_id": 12, "confidence": 0.9}},
             {{"type": "type", "text": "hello world", "confidence": 0.95}}],
 "reasoning": "Focus the search field, then type the text.", "confidence": 0.92}}

Now generate the action plan for the given task using the UI element index."""

SCREENSHOT_LINE = "- screenshot: Capture the screen (fallback only)\n"
FALLBACK_RULE = "8. FALLBACK AWARENESS: use screenshot only if the UI index is insufficient\n"
NO_FALLBACK_RULE = "8. NO FALLBACK: screenshot actions are not allowed for this task\n"

FEASIBILITY_PROMPT = """Analyze the feasibility of this desktop automation task.

## TASK
{task}

## AVAILABLE UI ELEMENTS
{elements}

## ANALYSIS REQUIRED
Determine if the task can be completed with the available UI elements.

## RESPONSE FORMAT
Respond with valid JSON only:
{{
  "feasible": true,
  "confidence": 0.85,
  "reasoning": "The task can be completed because...",
  "required_elements": ["button", "text field"],
  "missing_elements": []
}}"""


def group_by_role(elements: List[UIElement]) -> Dict[str, List[UIElement]]:
    grouped: Dict[str, List[UIElement]] = {}
    for element in elements:
        grouped.setdefault(element.role, []).append(element)
    for role in grouped:
        grouped[role].sort(key=lambda e: (-e.confidence, e.id if e.id is not None else 0))
    return grouped


def format_ui_elements(elements: List[UIElement], per_role: int = 10) -> str:
    """Render the index grouped by role, best elements first, capped per role."""
    if not elements:
        return NO_ELEMENTS

    lines: List[str] = []
    grouped = group_by_role(elements)
    for role in sorted(grouped):
        role_elements = grouped[role]
        lines.append(f"\n### {role.upper()} ELEMENTS")
        for index, element in enumerate(role_elements[:per_role]):
            status = "✓" if element.is_actionable else "✗"
            confidence = round(element.confidence * 100)
            lines.append(
                f"{index + 1}. [ID:{element.id}] \"{element.label}\" "
                f"at ({element.x}, {element.y}) {element.width}×{element.height} "
                f"{status} {confidence}%"
            )
            if element.value:
                lines.append(f"   Value: \"{element.value}\"")
            if element.accessibility_id:
                lines.append(f"   AccessibilityID: {element.accessibility_id}")
        if len(role_elements) > per_role:
            lines.append(f"   ... and {len(role_elements) - per_role} more {role} elements")

    return "\n".join(lines)


def build_plan_prompt(context: PlanningContext, per_role: int = 10) -> str:
    return PLANNER_PROMPT.format(
        task=context.task,
        app_name=context.app_name or "unknown",
        window_title=context.window_title or "",
        element_count=len(context.elements),
        max_actions=context.max_actions,
        elements=format_ui_elements(context.elements, per_role),
        screenshot_line=SCREENSHOT_LINE if context.allow_fallback else "",
        fallback_rule=FALLBACK_RULE if context.allow_fallback else NO_FALLBACK_RULE,
    )


def build_feasibility_prompt(task: str, elements: List[UIElement], sample: int = 20) -> str:
    return FEASIBILITY_PROMPT.format(
        task=task,
        elements=format_ui_elements(elements[:sample]),
    )
