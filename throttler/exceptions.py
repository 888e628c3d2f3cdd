"""Custom exceptions for the throttler package."""


class ThrottlerException(Exception):
    """Base class for throttler exceptions.

    All custom exceptions inherit from this class so callers can catch
    every throttling failure with a single ``except`` clause.
    """

    def __init__(self, message: str = "Throttler error"):
        self.message = message
        super().__init__(message)


class ConfigurationError(ThrottlerException, ValueError):
    """Raised when a limiter is built with an unusable bucket configuration.

    Zero or negative sizes and refill values would make the refill
    arithmetic divide by zero or never refill at all.
    """

    def __init__(self, detail: str = "Invalid throttle configuration", errors: list | None = None):
        self.detail = detail
        self.errors = errors or []
        super().__init__(detail)


class StoreUnavailableError(ThrottlerException):
    """Raised when the shared key-value store cannot be reached or fails.

    The limiter never turns this into an "empty" or "full" bucket decision.
    """

    def __init__(self, operation: str, key: str | None = None, detail: str | None = None):
        self.operation = operation
        self.key = key
        message = detail or f"Store operation '{operation}' failed"
        if key:
            message += f" for key {key}"
        super().__init__(message)


class InvalidArgumentError(ThrottlerException, ValueError):
    """Raised when ``consume`` is called with arguments outside its contract."""

    def __init__(self, argument: str, detail: str):
        self.argument = argument
        super().__init__(detail)
