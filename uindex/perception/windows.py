import logging
import os
import time
from typing import List, Optional

from ..core.config import ActiveApplication, ScannerConfig
from ..core.errors import AccessibilityPermissionError
from .scanner import PlatformScanner, RawElement

logger = logging.getLogger(__name__)


class WindowsScanner(PlatformScanner):
    """Walks the foreground window with UI Automation."""

    platform = "win32"

    def __init__(self, config: Optional[ScannerConfig] = None):
        super().__init__(config)
        self._auto = None

    def initialize(self) -> None:
        try:
            import uiautomation as auto
        except ImportError as e:
            raise AccessibilityPermissionError("uiautomation library not installed") from e

        try:
            auto.GetRootControl()
        except Exception as e:
            raise AccessibilityPermissionError(f"UI Automation unavailable: {e}") from e

        self._auto = auto
        logger.info("UI Automation bridge ready")

    def _top_level(self):
        window = self._auto.GetForegroundControl()
        if window is None:
            return None
        return window.GetTopLevelControl() or window

    def get_active_application(self) -> Optional[ActiveApplication]:
        import psutil

        try:
            window = self._top_level()
            if window is None:
                return None
            title = window.Name or ""
            process_name = psutil.Process(window.ProcessId).name()
        except Exception as e:
            logger.warning("Could not read the active application: %s", e)
            return None

        name = os.path.splitext(process_name)[0]
        return ActiveApplication(name=name, window_title=title)

    def scan_active_window(self) -> List[RawElement]:
        window = self._top_level()
        if window is None:
            return []

        results: List[RawElement] = []
        deadline = time.monotonic() + self.config.timeout_seconds

        child = window.GetFirstChildControl()
        while child is not None and len(results) < self.config.max_elements:
            self._walk(child, 1, results, deadline)
            if time.monotonic() > deadline:
                logger.warning("UI Automation walk timed out; returning %d elements", len(results))
                break
            child = child.GetNextSiblingControl()

        return results[:self.config.max_elements]

    def _walk(self, control, depth: int, results: List[RawElement], deadline: float) -> None:
        if len(results) >= self.config.max_elements or time.monotonic() > deadline:
            return

        element = self._build_raw_element(control)
        if element is not None:
            results.append(element)

        if depth >= self.config.max_depth:
            return

        count = 0
        try:
            child = control.GetFirstChildControl()
        except Exception:
            return
        while child is not None and count < self.config.max_children:
            self._walk(child, depth + 1, results, deadline)
            count += 1
            try:
                child = child.GetNextSiblingControl()
            except Exception:
                break

    def _build_raw_element(self, control) -> Optional[RawElement]:
        """Build a RawElement; one unreadable property never drops the element."""
        try:
            role = control.ControlTypeName or ""
        except Exception:
            return None

        try:
            rect = control.BoundingRectangle
            x, y, width, height = rect.left, rect.top, rect.width(), rect.height()
        except Exception:
            x, y, width, height = 0, 0, 0, 0

        try:
            title = control.Name or ""
        except Exception:
            title = ""

        value = ""
        try:
            pattern = control.GetValuePattern()
            if pattern:
                value = pattern.Value or ""
        except Exception:
            value = ""

        try:
            help_text = control.HelpText or ""
        except Exception:
            help_text = ""

        try:
            automation_id = control.AutomationId or ""
        except Exception:
            automation_id = ""

        try:
            class_name = control.ClassName or ""
        except Exception:
            class_name = ""

        try:
            enabled = bool(control.IsEnabled)
        except Exception:
            enabled = False

        try:
            visible = not control.IsOffscreen
        except Exception:
            visible = False

        return RawElement(
            role=role,
            title=title,
            value=value,
            description="",
            help=help_text,
            x=x,
            y=y,
            width=width,
            height=height,
            enabled=enabled,
            visible=visible,
            class_name=class_name,
            automation_id=automation_id,
        )
