from .executor import ActionExecutor
from .context import ExecutionContext
from .driver import InputDriver, PyAutoGUIDriver

__all__ = [
    'ActionExecutor',
    'ExecutionContext',
    'InputDriver',
    'PyAutoGUIDriver',
]
