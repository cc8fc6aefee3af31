"""Domain exceptions for overlord operations.

Every failure that a client can observe derives from OverlordError. The
request handler converts these (and anything unexpected) into a failure
response carrying the error text, so messages should read well on their own.
"""


class OverlordError(Exception):
    """Base exception for all overlord errors.

    Attributes:
        message: Error description sent to the client.
        hint: Optional actionable suggestion.
    """

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message}\nHint: {self.hint}"
        return self.message


class ProtocolError(OverlordError):
    """Raised for malformed, truncated, or unsupported client requests."""

    pass


class ProcessError(OverlordError):
    """Raised when the managed process cannot be launched, signaled, or identified."""

    pass


class ReadinessTimeoutError(OverlordError):
    """Raised when a caller-imposed deadline or cancellation ends a readiness wait."""

    pass


class DiagnosticsUnavailableError(OverlordError):
    """Raised when a diagnostic (cache manager) page cannot be obtained."""

    pass


class LifecycleError(OverlordError):
    """Raised when a lifecycle transition is invalid or observed to go wrong."""

    pass
