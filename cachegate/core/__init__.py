"""
Core Module

Foundational components: configuration, logging, exceptions and usage stats.
"""

from .exceptions import (
    CacheCommandError,
    CacheConnectionError,
    CacheError,
    CacheGateError,
    CacheSerializationError,
    ConfigurationError,
    RateLimitError,
    RateLimitExceededError,
)
from .logging import (
    clear_request_id,
    get_logger,
    get_request_id,
    log_stage,
    set_request_id,
    setup_logging,
)

__all__ = [
    # Exceptions
    "CacheGateError",
    "ConfigurationError",
    "CacheError",
    "CacheConnectionError",
    "CacheCommandError",
    "CacheSerializationError",
    "RateLimitError",
    "RateLimitExceededError",
    # Logging
    "clear_request_id",
    "get_logger",
    "get_request_id",
    "log_stage",
    "set_request_id",
    "setup_logging",
]
