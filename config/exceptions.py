"""Custom exception hierarchy for Router Monitor.

Provides specific exceptions for the failure categories of the polling
and alerting core so callers can react to a category instead of to a
protocol-specific error.
"""

from typing import Optional


class RouterMonitorError(Exception):
    """Base exception for all Router Monitor errors.

    All custom exceptions in this application should inherit from this class.
    This allows catching all application-specific errors with a single except clause.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional error context.
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class BackendError(RouterMonitorError):
    """A protocol backend failed to return interface statistics.

    Only the connection selector catches these; they never cross into the
    scheduler or the alert engine.

    Attributes:
        method: The backend that failed ("native", "rest" or "snmp").
    """

    category = "backend"

    def __init__(self, message: str, method: Optional[str] = None, details: Optional[dict] = None):
        details = details or {}
        if method:
            details["method"] = method
        super().__init__(message, details)
        self.method = method


class AuthenticationFailure(BackendError):
    """The device rejected the credentials.

    Other protocols may still be attempted, but never with different
    credentials.

    Examples:
        >>> raise AuthenticationFailure("login rejected", method="native")
    """

    category = "auth"


class ConnectivityFailure(BackendError):
    """Timeout, refused connection or unreachable host.

    Examples:
        >>> raise ConnectivityFailure("connect timed out", method="rest", details={"timeout": 10})
    """

    category = "connectivity"


class ProtocolError(BackendError):
    """Malformed or unexpected response from the device.

    Treated like a connectivity failure for fallback purposes.
    """

    category = "protocol"


class PersistenceFailure(RouterMonitorError):
    """Durable storage errors.

    Raised when there are issues with:
    - Writing flushed samples
    - Database operations
    - File permissions

    Examples:
        >>> raise PersistenceFailure("Failed to append samples", {"device_id": "r1"})
    """

    pass


class NotificationFailure(RouterMonitorError):
    """A notification sink could not deliver an alert.

    Logged only; never rolls back the alert.
    """

    pass


class ConfigurationError(RouterMonitorError):
    """Settings and configuration errors.

    Raised when there are issues with:
    - Invalid configuration values
    - Missing required settings
    - Configuration file parsing

    Examples:
        >>> raise ConfigurationError("Invalid poll interval", {"value": -10})
    """

    pass
