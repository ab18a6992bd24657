from abc import ABC, abstractmethod
from typing import Sequence, Tuple

from ..core.errors import DriverError


class InputDriver(ABC):
    """Pointer and keyboard primitives."""

    @abstractmethod
    def move(self, x: int, y: int) -> None:
        pass

    @abstractmethod
    def position(self) -> Tuple[int, int]:
        pass

    @abstractmethod
    def click(self, button: str = "left", clicks: int = 1) -> None:
        pass

    @abstractmethod
    def mouse_down(self, button: str = "left") -> None:
        pass

    @abstractmethod
    def mouse_up(self, button: str = "left") -> None:
        pass

    @abstractmethod
    def write(self, text: str) -> None:
        pass

    @abstractmethod
    def press(self, key: str) -> None:
        pass

    @abstractmethod
    def hotkey(self, keys: Sequence[str]) -> None:
        pass

    @abstractmethod
    def scroll(self, direction: str, amount: int) -> None:
        pass


class PyAutoGUIDriver(InputDriver):
    """Drives the real pointer and keyboard through pyautogui."""

    def __init__(self, failsafe: bool = True, pause: float = 0.05, type_interval: float = 0.02):
        import pyautogui

        self._gui = pyautogui
        self._gui.FAILSAFE = failsafe
        self._gui.PAUSE = pause
        self._type_interval = type_interval

    def _guard(self, name: str, *args, **kwargs):
        try:
            return getattr(self._gui, name)(*args, **kwargs)
        except Exception as e:
            raise DriverError(f"{name} failed: {e}") from e

    def move(self, x: int, y: int) -> None:
        self._guard("moveTo", x, y)

    def position(self) -> Tuple[int, int]:
        point = self._guard("position")
        return (int(point[0]), int(point[1]))

    def click(self, button: str = "left", clicks: int = 1) -> None:
        self._guard("click", button=button, clicks=clicks, interval=0.05)

    def mouse_down(self, button: str = "left") -> None:
        self._guard("mouseDown", button=button)

    def mouse_up(self, button: str = "left") -> None:
        self._guard("mouseUp", button=button)

    def write(self, text: str) -> None:
        self._guard("write", text, interval=self._type_interval)

    def press(self, key: str) -> None:
        self._guard("press", key)

    def hotkey(self, keys: Sequence[str]) -> None:
        self._guard("hotkey", *keys)

    def scroll(self, direction: str, amount: int) -> None:
        if direction == "up":
            self._guard("scroll", amount)
        elif direction == "down":
            self._guard("scroll", -amount)
        elif direction == "left":
            self._guard("hscroll", -amount)
        elif direction == "right":
            self._guard("hscroll", amount)
        else:
            raise DriverError(f"Unknown scroll direction '{direction}'")
