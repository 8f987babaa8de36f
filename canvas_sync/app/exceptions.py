"""Custom exceptions for the canvas sync core."""


class CanvasSyncException(Exception):
    """Base class for canvas sync exceptions.

    All custom exceptions should inherit from this class and define
    their specific error code for consistent handling by callers.
    """
    code: str = "canvas_sync_error"

    def __init__(self, message: str = "Canvas sync error"):
        self.message = message
        super().__init__(message)


class ValidationError(CanvasSyncException):
    """Raised for malformed input or a payload rejected by the remote store.

    Fatal for the current call. Never retried automatically.
    """
    code = "validation_error"

    def __init__(self, detail: str = "Invalid input", field: str | None = None):
        self.detail = detail
        self.field = field
        super().__init__(detail)


class RateLimitExceededError(CanvasSyncException):
    """Raised when a caller prefers an exception over a declined result.

    The limiter itself never raises this; see ``RateLimitResult.raise_for_status``.
    """
    code = "rate_limit_exceeded"

    def __init__(
        self,
        period: str,
        retry_after: int,
        detail: str | None = None,
    ):
        self.period = period
        self.retry_after = retry_after
        message = detail or (
            f"Rate limit exceeded for the {period} window. "
            f"Retry after {retry_after}s."
        )
        super().__init__(message)


class NetworkUnavailableError(CanvasSyncException):
    """Raised when the remote store cannot be reached.

    Covers refused connections, dropped connections and the explicit
    offline signal. Writes failing this way go to the recovery queue.
    """
    code = "network_unavailable"

    def __init__(self, detail: str = "Network unavailable"):
        self.detail = detail
        super().__init__(detail)


class OperationTimeoutError(NetworkUnavailableError):
    """Raised when a transport call exceeds its deadline."""
    code = "timeout"

    def __init__(self, detail: str = "Request timed out", timeout: float | None = None):
        self.timeout = timeout
        super().__init__(detail)


class TransportStatusError(CanvasSyncException):
    """Raised for an HTTP error status the transport does not map elsewhere."""
    code = "http_status_error"

    def __init__(self, status_code: int, detail: str | None = None):
        self.status_code = status_code
        super().__init__(detail or f"Remote store responded with HTTP {status_code}")


class RetryBudgetExhaustedError(CanvasSyncException):
    """Terminal state of one offline recovery entry.

    Not raised; carried inside the gave-up notification.
    """
    code = "retry_budget_exhausted"

    def __init__(self, entity_id: str, attempts: int):
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"Gave up persisting {entity_id} after {attempts} recovery attempts"
        )


def is_network_error(exc: BaseException) -> bool:
    """Check whether a failure is network-class.

    Network errors, timeouts and 5xx statuses are transient. Everything
    else (validation rejections, 4xx, programmer errors) is not.
    """
    if isinstance(exc, TransportStatusError):
        return exc.status_code >= 500
    return isinstance(exc, NetworkUnavailableError)
