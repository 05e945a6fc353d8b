"""
Custom exceptions for the traffic backend with structured error context.

Each exception carries a context dict for debugging and monitoring, and
can be serialized with ``to_dict()`` for logs and error responses.

Exception Hierarchy:
    TrafficSystemError (base)
    ├── ExternalAPIError
    │   ├── NetworkError (retryable)
    │   ├── RateLimitError (retryable)
    │   ├── AuthenticationError
    │   ├── ResourceNotFoundError
    │   └── ProviderNotConfiguredError
    ├── InvalidBoundsError
    ├── StorageError
    ├── APIKeyError
    │   ├── MissingAPIKeyError (401)
    │   ├── InvalidAPIKeyError (403)
    │   └── PermissionDeniedError (403)
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class TrafficSystemError(Exception):
    """
    Base exception for all traffic backend errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (endpoint, bounds, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(TrafficSystemError):
    """
    Mixin for transient errors: timeouts, HTTP 429, HTTP 5xx.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(TrafficSystemError):
    """
    Mixin for permanent errors: bad credentials, unknown resources,
    missing configuration.
    """
    pass


# ============================================================================
# External provider errors
# ============================================================================

class ExternalAPIError(TrafficSystemError):
    """
    Raised when a call to the traffic provider fails.

    Context should include:
        - api_url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
        - retry_count: Number of retries attempted
    """
    pass


class NetworkError(RetryableError, ExternalAPIError):
    """Network-related errors that should be retried."""
    pass


class RateLimitError(RetryableError, ExternalAPIError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, ExternalAPIError):
    """Provider rejected our credentials (HTTP 401, 403)."""
    pass


class ResourceNotFoundError(NonRetryableError, ExternalAPIError):
    """Provider returned HTTP 404."""
    pass


class ProviderNotConfiguredError(NonRetryableError, ExternalAPIError):
    """No API key configured for the provider."""
    pass


# ============================================================================
# Input and storage errors
# ============================================================================

class InvalidBoundsError(NonRetryableError):
    """
    Raised when a bounding box string cannot be parsed.

    Context should include:
        - bounds: The raw value supplied by the client
    """
    pass


class StorageError(TrafficSystemError):
    """
    Raised when a database operation fails.

    Context should include:
        - operation: INSERT, UPDATE, SELECT
        - table_name: Name of the table
    """
    pass


# ============================================================================
# API key errors
# ============================================================================

class APIKeyError(NonRetryableError):
    """Base class for client credential failures."""
    status_code = 401


class MissingAPIKeyError(APIKeyError):
    status_code = 401


class InvalidAPIKeyError(APIKeyError):
    status_code = 403


class PermissionDeniedError(APIKeyError):
    status_code = 403
