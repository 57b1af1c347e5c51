"""
Core modules for the generation history service.

This package contains fundamental utilities used across the application:
- config: Application settings and configuration
- security: JWT token handling
- auth: Request identity dependencies
- redis: Redis connection management
- tasks: Detached background task runner
- exceptions: Custom exception classes
"""

from .config import Settings, get_settings
from .exceptions import (
    AppException,
    AuthenticationError,
    GenerationNotFoundError,
    InvalidStateTransitionError,
    NotFoundError,
    StorageError,
    ValidationError,
)

__all__ = [
    # Config
    "get_settings",
    "Settings",
    # Exceptions
    "AppException",
    "AuthenticationError",
    "NotFoundError",
    "GenerationNotFoundError",
    "ValidationError",
    "InvalidStateTransitionError",
    "StorageError",
]
