"""
Exception Hierarchy

CacheGateError
├── ConfigurationError
├── CacheError
│   ├── CacheConnectionError
│   └── CacheCommandError
│       └── CacheSerializationError
└── RateLimitError
    └── RateLimitExceededError
"""

from cachegate.core.exceptions.base import CacheGateError, ConfigurationError
from cachegate.core.exceptions.cache import (
    CacheCommandError,
    CacheConnectionError,
    CacheError,
    CacheSerializationError,
)
from cachegate.core.exceptions.rate_limit import RateLimitError, RateLimitExceededError

__all__ = [
    "CacheGateError",
    "ConfigurationError",
    "CacheError",
    "CacheConnectionError",
    "CacheCommandError",
    "CacheSerializationError",
    "RateLimitError",
    "RateLimitExceededError",
]
