import logging
import subprocess
from string import Template
from typing import List, Optional

from ..core.config import ActiveApplication, ScannerConfig
from ..core.errors import AccessibilityPermissionError
from .records import FIELD_SEP, parse_records
from .scanner import PlatformScanner, RawElement

logger = logging.getLogger(__name__)

PERMISSION_SCRIPT = 'tell application "System Events" to get UI elements enabled'

ACTIVE_APP_SCRIPT = """
tell application "System Events"
    set frontProc to first application process whose frontmost is true
    set appName to name of frontProc
    set winTitle to ""
    try
        set winTitle to (name of front window of frontProc) as text
    end try
end tell
return appName & (character id 31) & winTitle
"""

# Emits one R1 record per element; see records.py for the grammar.
SCAN_SCRIPT = Template("""
on clean(t)
    if t is missing value then return ""
    try
        set t to t as text
    on error
        return ""
    end try
    if t is "missing value" then return ""
    set oldDelims to AppleScript's text item delimiters
    set AppleScript's text item delimiters to {tab, linefeed, return, character id 31}
    set parts to text items of t
    set AppleScript's text item delimiters to " "
    set t to parts as text
    set AppleScript's text item delimiters to oldDelims
    return t
end clean

on describe(el)
    set sep to character id 31
    set r to "unknown"
    set t to ""
    set v to ""
    set d to ""
    set h to ""
    set px to 0
    set py to 0
    set sw to 0
    set sh to 0
    set en to "true"
    set vis to "false"
    tell application "System Events"
        try
            set r to my clean(role of el)
        end try
        try
            set t to my clean(title of el)
        end try
        try
            set v to my clean(value of el)
        end try
        try
            set d to my clean(description of el)
        end try
        try
            set h to my clean(help of el)
        end try
        try
            set p to position of el
            if p is not missing value then
                set px to (item 1 of p) as integer
                set py to (item 2 of p) as integer
                set vis to "true"
            end if
        end try
        try
            set s to size of el
            set sw to (item 1 of s) as integer
            set sh to (item 2 of s) as integer
        end try
        try
            if (enabled of el) is false then set en to "false"
        end try
    end tell
    return "R1" & sep & r & sep & t & sep & v & sep & d & sep & h & sep & px & sep & py & sep & sw & sep & sh & sep & en & sep & vis
end describe

on walk(el, depth, acc)
    set end of acc to my describe(el)
    if depth < $max_depth then
        set kids to {}
        tell application "System Events"
            try
                set kids to UI elements of el
            end try
        end tell
        set n to count of kids
        if n > $max_children then set n to $max_children
        repeat with i from 1 to n
            try
                my walk(item i of kids, depth + 1, acc)
            end try
        end repeat
    end if
end walk

tell application "System Events"
    set frontProc to first application process whose frontmost is true
    try
        set frontWin to front window of frontProc
    on error
        return ""
    end try
    set topLevel to UI elements of frontWin
end tell

set acc to {}
repeat with el in topLevel
    try
        my walk(contents of el, 1, acc)
    on error errMsg
        set end of acc to "ERROR" & (character id 31) & my clean(errMsg)
    end try
end repeat
set AppleScript's text item delimiters to linefeed
return acc as text
""")


class MacOSScanner(PlatformScanner):
    """Reads the front window through System Events (osascript)."""

    platform = "darwin"

    def __init__(self, config: Optional[ScannerConfig] = None):
        super().__init__(config)
        self._script = SCAN_SCRIPT.substitute(
            max_depth=int(self.config.max_depth),
            max_children=int(self.config.max_children),
        )
        self.last_rejected = 0

    def _run(self, script: str, timeout: Optional[float] = None) -> str:
        result = subprocess.run(
            ["osascript", "-"],
            input=script.encode("utf-8"),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout or self.config.timeout_seconds,
        )
        if result.returncode != 0:
            message = result.stderr.decode("utf-8", errors="replace").strip()
            raise subprocess.CalledProcessError(result.returncode, "osascript", output=result.stdout, stderr=message)
        return self._truncate(result.stdout).decode("utf-8", errors="replace")

    def _truncate(self, output: bytes) -> bytes:
        limit = self.config.max_output_bytes
        if len(output) <= limit:
            return output
        cut = output.rfind(b"\n", 0, limit)
        logger.warning("Scanner output exceeded %d bytes; truncating", limit)
        return output[:cut] if cut > 0 else b""

    def initialize(self) -> None:
        try:
            answer = self._run(PERMISSION_SCRIPT).strip().lower()
        except FileNotFoundError as e:
            raise AccessibilityPermissionError("osascript is not available") from e
        except subprocess.TimeoutExpired as e:
            raise AccessibilityPermissionError("System Events did not respond") from e
        except subprocess.CalledProcessError as e:
            raise AccessibilityPermissionError(
                f"Accessibility access denied: {e.stderr or e}"
            ) from e

        if answer != "true":
            raise AccessibilityPermissionError(
                "UI scripting is disabled; grant Accessibility permission in System Settings"
            )
        logger.info("macOS accessibility bridge ready")

    def get_active_application(self) -> Optional[ActiveApplication]:
        try:
            output = self._run(ACTIVE_APP_SCRIPT).strip()
        except (subprocess.SubprocessError, OSError) as e:
            logger.warning("Could not read the active application: %s", e)
            return None

        if not output:
            return None
        name, _, title = output.partition(FIELD_SEP)
        name = name.strip()
        if not name:
            return None
        return ActiveApplication(name=name, window_title=title.strip())

    def scan_active_window(self) -> List[RawElement]:
        try:
            output = self._run(self._script)
        except subprocess.TimeoutExpired:
            logger.warning("Accessibility scan timed out after %.0fs", self.config.timeout_seconds)
            return []
        except (subprocess.SubprocessError, OSError) as e:
            logger.warning("Accessibility scan failed: %s", e)
            return []

        report = parse_records(output)
        for message in report.errors:
            logger.debug("Scanner reported: %s", message)
        self.last_rejected = report.rejected
        if report.rejected:
            logger.debug("Dropped %d malformed records", report.rejected)
        return report.elements[:self.config.max_elements]
