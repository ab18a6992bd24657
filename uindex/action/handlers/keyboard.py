from typing import List, Optional, Tuple

from ...core.config import ActionResult
from ...core.errors import DriverError
from ...core.task import Action, ActionHandler, KeyPress, TypeText
from ..context import ExecutionContext

# Logical key names (lower-cased) -> driver key names
KEY_MAP = {
    'enter': 'enter',
    'return': 'enter',
    'tab': 'tab',
    'escape': 'esc',
    'esc': 'esc',
    'space': 'space',
    'backspace': 'backspace',
    'delete': 'delete',
    'arrowup': 'up',
    'arrowdown': 'down',
    'arrowleft': 'left',
    'arrowright': 'right',
    'up': 'up',
    'down': 'down',
    'left': 'left',
    'right': 'right',
    'home': 'home',
    'end': 'end',
    'pageup': 'pageup',
    'pagedown': 'pagedown',
    'cmd': 'command',
    'command': 'command',
    'ctrl': 'ctrl',
    'control': 'ctrl',
    'alt': 'alt',
    'option': 'alt',
    'shift': 'shift',
}
KEY_MAP.update({f'f{n}': f'f{n}' for n in range(1, 13)})


class UnsupportedKeyError(ValueError):
    pass


def map_key(name: str) -> str:
    """Map one logical key name to the driver's name."""
    if len(name) == 1:
        return name.lower()
    normalized = name.strip().lower().replace(" ", "").replace("_", "")
    mapped = KEY_MAP.get(normalized)
    if mapped is None:
        raise UnsupportedKeyError(f"Unsupported key: {name}")
    return mapped


def parse_keys(key: str) -> List[str]:
    """'ctrl+s' -> ['ctrl', 's']; a lone '+' is the plus key."""
    if key == "+" or "+" not in key:
        return [map_key(key)]
    parts = [p for p in key.split("+")]
    if any(not p.strip() for p in parts):
        raise UnsupportedKeyError(f"Unsupported key combination: {key}")
    return [map_key(p.strip()) for p in parts]


class TypeTextHandler(ActionHandler):
    @property
    def action_name(self) -> str:
        return TypeText.type

    def validate(self, action: Action) -> Tuple[bool, Optional[str]]:
        if not isinstance(action, TypeText):
            return (False, f"Expected type action, got {action.type}")
        if not action.text:
            return (False, "Missing required parameter: 'text'")
        return (True, None)

    def execute(self, action: TypeText, context: ExecutionContext) -> ActionResult:
        focused = action.x is not None and action.y is not None
        try:
            if focused:
                context.driver.move(action.x, action.y)
                context.driver.click()
            context.driver.write(action.text)
        except DriverError as e:
            return ActionResult(success=False, error=str(e), method_used='driver')

        context.set_variable("typed_text", action.text)
        return ActionResult(
            success=True,
            data={
                'text_length': len(action.text),
                'text_preview': action.text[:50],
                'focus_click': focused,
            },
            method_used='driver'
        )


class KeyPressHandler(ActionHandler):
    @property
    def action_name(self) -> str:
        return KeyPress.type

    def validate(self, action: Action) -> Tuple[bool, Optional[str]]:
        if not isinstance(action, KeyPress):
            return (False, f"Expected key action, got {action.type}")
        if not action.key:
            return (False, "Missing required parameter: 'key'")
        try:
            parse_keys(action.key)
        except UnsupportedKeyError as e:
            return (False, str(e))
        return (True, None)

    def execute(self, action: KeyPress, context: ExecutionContext) -> ActionResult:
        keys = parse_keys(action.key)
        try:
            if len(keys) == 1:
                context.driver.press(keys[0])
            else:
                context.driver.hotkey(keys)
        except DriverError as e:
            return ActionResult(success=False, error=str(e), method_used='driver')

        return ActionResult(success=True, data={'keys': keys}, method_used='driver')


KEYBOARD_HANDLERS = [TypeTextHandler, KeyPressHandler]


def get_keyboard_handlers():
    return [handler() for handler in KEYBOARD_HANDLERS]
