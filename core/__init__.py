"""
Core utilities and configuration for the Nairobi traffic backend.

Modules:
    config: Application configuration and environment variable management
    database: Database connection and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration plus performance, business and security loggers

Usage:
    from core.config import settings
    from core.database import get_session
    from core.exceptions import ExternalAPIError, NetworkError
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "get_session",
    "setup_logging",
    # Exceptions
    "TrafficSystemError",
    "ExternalAPIError",
    "RetryableError",
    "NonRetryableError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "ResourceNotFoundError",
    "ProviderNotConfiguredError",
    "InvalidBoundsError",
    "StorageError",
    "APIKeyError",
    "MissingAPIKeyError",
    "InvalidAPIKeyError",
    "PermissionDeniedError",
]
