"""Exception types raised by the triage and self-healing engine."""

from typing import Optional


class HealingEngineError(Exception):
    """Base class for engine errors."""
    pass


class ConfigurationError(HealingEngineError):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


class HealingDisabledError(HealingEngineError):
    """Raised when healing is requested while it is disabled in configuration."""
    pass


class OracleUnavailableError(HealingEngineError):
    """The AI oracle could not be reached or returned an error."""
    pass


class OracleTimeoutError(OracleUnavailableError):
    """The AI oracle did not answer within the configured timeout."""
    pass


class MalformedOracleResponseError(HealingEngineError):
    """The AI oracle answered with a payload that does not match its schema."""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message)
        self.raw_response = raw_response


class ChangeNotFoundError(HealingEngineError):
    """No locator change exists with the given id."""

    def __init__(self, change_id: str):
        super().__init__(f"Locator change {change_id} not found")
        self.change_id = change_id


class LocatorNotFoundError(HealingEngineError):
    """The locator store has no definition for the given element path."""

    def __init__(self, element_path: str):
        super().__init__(f"No locator definition for element '{element_path}'")
        self.element_path = element_path


class InvalidStateTransition(HealingEngineError):
    """A locator change cannot move from its current status to the requested one."""

    def __init__(self, change_id: str, current: str, attempted: str):
        super().__init__(
            f"Cannot {attempted} locator change {change_id}: status is '{current}'"
        )
        self.change_id = change_id
        self.current = current
        self.attempted = attempted


class ElementBusyError(HealingEngineError):
    """Another healing request holds the element; the caller may retry later."""

    retryable = True

    def __init__(self, element_path: str, timeout: float):
        super().__init__(
            f"Element '{element_path}' is busy: lock not acquired within {timeout:.1f}s"
        )
        self.element_path = element_path
        self.timeout = timeout
