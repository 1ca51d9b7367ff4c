"""Custom exceptions for the URL shortener application."""


class ShortenerException(Exception):
    """Base class for shortener exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500
    error: str = "internal_error"

    def __init__(self, message: str = "Shortener error"):
        self.message = message
        super().__init__(message)


class URLExistsError(ShortenerException):
    """Raised when an alias is already taken.

    Maps to HTTP 409 Conflict.
    """
    status_code = 409
    error = "url_exists"

    def __init__(self, alias: str):
        self.alias = alias
        super().__init__(f"Alias '{alias}' already exists")


class URLNotFoundError(ShortenerException):
    """Raised when no URL is stored under the requested alias.

    Maps to HTTP 404 Not Found.
    """
    status_code = 404
    error = "url_not_found"

    def __init__(self, alias: str):
        self.alias = alias
        super().__init__(f"URL for alias '{alias}' not found")


class PeakRateNotFoundError(ShortenerException):
    """Raised when no peak-rate record has been persisted yet."""
    status_code = 404
    error = "peak_rate_not_found"

    def __init__(self, message: str = "No persisted peak rate"):
        super().__init__(message)


class StorageError(ShortenerException):
    """Raised when a storage operation fails.

    Carries the name of the failing operation so background jobs can log
    something more useful than the driver error alone.
    """
    status_code = 500
    error = "storage_error"

    def __init__(self, operation: str, cause: Exception | None = None):
        self.operation = operation
        self.cause = cause
        message = f"{operation}: {cause}" if cause is not None else operation
        super().__init__(message)


class ConfigurationError(ShortenerException):
    """Raised when required configuration is missing or invalid.

    Startup must abort when this is raised.
    """
    status_code = 500
    error = "configuration_error"
