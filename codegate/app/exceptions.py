"""Custom exceptions for the gateway application."""


class GatewayException(Exception):
    """Base class for gateway exceptions with HTTP status code.

    All custom exceptions inherit from this class and define their
    status_code and stable error code for the response envelope.
    """
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = "Gateway error"):
        self.message = message
        super().__init__(message)


class UnauthorizedError(GatewayException):
    """Raised when the bearer credential or request origin is rejected.

    Maps to HTTP 401 Unauthorized.
    """
    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, reason: str = "missing_or_malformed", detail: str | None = None):
        self.reason = reason
        super().__init__(detail or "Invalid authentication")


class RateLimitExceededError(GatewayException):
    """Raised when a client has exhausted its sliding window.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, remaining: int = 0, reset_ms: int = 0):
        self.remaining = remaining
        self.reset_ms = reset_ms
        reset_seconds = -(-reset_ms // 1000)
        super().__init__(
            f"Rate limit exceeded. Remaining: {remaining}, Reset in: {reset_seconds}s"
        )


class InvalidRequestError(GatewayException):
    """Raised when the request body is malformed or out of range.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    code = "INVALID_REQUEST"


class AssistantTimeoutError(GatewayException):
    """Raised when the assistant subprocess exceeds its deadline.

    Maps to HTTP 504 Gateway Timeout.
    """
    status_code = 504
    code = "TIMEOUT_ERROR"

    def __init__(self, timeout: float, message: str | None = None):
        self.timeout = timeout
        super().__init__(message or f"Code assistant did not finish within {timeout:g}s")


class ExecutionError(GatewayException):
    """Raised when the assistant subprocess fails or cannot be spawned.

    Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502
    code = "EXECUTION_ERROR"

    def __init__(self, message: str = "Code assistant execution failed", attempts: int = 1):
        self.attempts = attempts
        super().__init__(message)


class InternalError(GatewayException):
    """Anything unanticipated.

    Maps to HTTP 500 Internal Server Error.
    """
    status_code = 500
    code = "INTERNAL_ERROR"
