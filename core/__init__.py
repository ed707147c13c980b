"""
Core utilities and configuration for the catalog sync service.

This package provides foundational components used throughout the
reconciliation pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Database engine and session factory
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import AuthenticationError, ReconciliationSkip
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Open a short-lived session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "async_session_maker",
    "setup_logging",
    # Exceptions
    "SyncException",
    "RetryableError",
    "NonRetryableError",
    "RemoteServiceError",
    "NetworkError",
    "RateLimitError",
    "FatalRequestError",
    "AuthenticationError",
    "ResourceNotFoundError",
    "RequestRejectedError",
    "MarketplaceValidationError",
    "JobFatalError",
    "MissingCredentialsError",
    "ReconciliationSkip",
    "ReconciliationError",
    "UnitTimeoutError",
    "StoreError",
    "ExchangeRateError",
]
