from .pointer import get_pointer_handlers, POINTER_HANDLERS
from .keyboard import get_keyboard_handlers, KEYBOARD_HANDLERS, map_key, parse_keys
from .utility import get_util_handlers


def get_all_handlers(sleep):
    """Get instances of all handlers."""
    handlers = []
    handlers.extend(get_pointer_handlers())
    handlers.extend(get_keyboard_handlers())
    handlers.extend(get_util_handlers(sleep))
    return handlers


__all__ = [
    'get_pointer_handlers', 'POINTER_HANDLERS',
    'get_keyboard_handlers', 'KEYBOARD_HANDLERS',
    'get_util_handlers',
    'map_key', 'parse_keys',
    'get_all_handlers',
]
