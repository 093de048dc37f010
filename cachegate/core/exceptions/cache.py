"""
Cache-Related Exceptions

All exceptions related to backing-store operations. None of these escape the
KeyValueCacheClient: it converts them into safe default results.
"""

from cachegate.core.exceptions.base import CacheGateError


class CacheError(CacheGateError):
    """Base exception for cache-related errors."""
    pass


class CacheConnectionError(CacheError):
    """
    Raised when the backing store is unreachable.

    Common causes:
    - Redis server is down
    - Network connectivity issues
    - Connect timeout elapsed

    Raising this from a command marks the connection as failed and starts
    the reconnect loop.
    """
    pass


class CacheCommandError(CacheError):
    """
    Raised when a single command fails on a live connection.

    Common causes:
    - WRONGTYPE (hash command on a string key)
    - Memory limit exceeded
    """
    pass


class CacheSerializationError(CacheCommandError):
    """Raised when a value cannot be encoded to or decoded from JSON."""
    pass
