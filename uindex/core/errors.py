class UIndexError(Exception):
    """Base class for errors raised by uindex."""


class AccessibilityPermissionError(UIndexError):
    """The OS accessibility bridge is unavailable or not permitted."""


class UnsupportedPlatformError(UIndexError):
    """No scanner exists for the running platform."""


class PlanValidationError(UIndexError):
    """An LLM response could not be turned into a valid action plan."""


class DriverError(UIndexError):
    """The input driver could not perform an operation."""
