import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from ..core.config import ActiveApplication, ScannerConfig
from ..core.errors import UnsupportedPlatformError


@dataclass
class RawElement:
    """Element exactly as the OS accessibility bridge reported it."""
    role: str
    title: str = ""
    value: str = ""
    description: str = ""
    help: str = ""
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0
    enabled: bool = True
    visible: bool = True
    # Windows reports these natively; macOS leaves them for the normalizer.
    accessibility_id: str = ""
    class_name: str = ""
    automation_id: str = ""


class PlatformScanner(ABC):
    """Reads the accessibility tree of the foreground window."""

    platform: str = ""

    def __init__(self, config: Optional[ScannerConfig] = None):
        self.config = config or ScannerConfig()

    @abstractmethod
    def initialize(self) -> None:
        """Verify the accessibility bridge; raises AccessibilityPermissionError."""

    @abstractmethod
    def get_active_application(self) -> Optional[ActiveApplication]:
        pass

    @abstractmethod
    def scan_active_window(self) -> List[RawElement]:
        pass

    def cleanup(self) -> None:
        pass


def create_scanner(config: Optional[ScannerConfig] = None,
                   platform: Optional[str] = None) -> PlatformScanner:
    """Pick the scanner for the running OS."""
    config = config or ScannerConfig()
    platform = platform or config.platform or sys.platform

    if platform == "darwin":
        from .macos import MacOSScanner
        return MacOSScanner(config)
    if platform == "win32":
        from .windows import WindowsScanner
        return WindowsScanner(config)

    raise UnsupportedPlatformError(f"No UI scanner available for platform '{platform}'")
