"""
Core utilities and configuration for the bucketed ETL engine.

This package provides foundational components used throughout the engine:

Modules:
    config: Application configuration and environment variable management
    database: Async database engine and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import FetchError, NetworkError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Get database session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "async_session_maker",
    "get_session",
    "setup_logging",
    # Exceptions
    "ETLException",
    "RetryableError",
    "NonRetryableError",
    "ValidationError",
    "ExtractionError",
    "FetchError",
    "FetchFatalError",
    "FetchRetryableError",
    "BadRequestError",
    "AuthenticationError",
    "ResourceNotFoundError",
    "RateLimitError",
    "ServerError",
    "NetworkError",
    "DispatchCancelledError",
    "TransformationError",
    "DataFormatError",
    "LoadError",
    "PersistenceBatchError",
    "InvalidDestinationKeyError",
    "PipelineFatalError",
]
