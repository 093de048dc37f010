"""
System Constants and Enumerations

Defines system-wide constants and enumerations used across the caching,
rate limiting and session layer.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for key prefixes and header names
- Type-safe enums for state management
"""

from enum import Enum

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Request processing stages, attached to log entries as ``stage=``.

    The request pipeline is strictly ordered within one request:
    rate check -> cache check -> handler -> cache write.
    """

    INITIALIZATION = "0.0_INITIALIZATION"
    RATE_LIMITING = "1.0_RATE_LIMITING"
    CACHE_LOOKUP = "2.0_CACHE_LOOKUP"
    CACHE_WRITE = "2.1_CACHE_WRITE"
    CACHE_INVALIDATION = "2.2_CACHE_INVALIDATION"
    SESSION = "3.0_SESSION"
    CLEANUP = "6.0_CLEANUP"

    CONNECTION = "C_CONNECTION"
    COMMAND = "K_KV_COMMAND"


# ============================================================================
# Connection States
# ============================================================================


class ConnectionState(str, Enum):
    """
    Backing-store connection states.

    DISCONNECTED -> CONNECTING -> READY
    READY -> RECONNECTING (I/O error) -> READY | DISABLED
    DISABLED is terminal until process restart.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    RECONNECTING = "reconnecting"
    DISABLED = "disabled"


# ============================================================================
# Redis Key Prefixes
# ============================================================================

REDIS_KEY_RESPONSE_CACHE = "cache"
REDIS_KEY_USER_DATA = "user"
REDIS_KEY_RATE_LIMIT = "ratelimit"
REDIS_KEY_SESSION = "session"
REDIS_KEY_USER_SESSIONS = "user_sessions"
REDIS_KEY_TEMP = "temp"
REDIS_KEY_HISTORY = "history"

ANONYMOUS_IDENTITY = "anonymous"
UNKNOWN_IDENTITY = "unknown"

# ============================================================================
# HTTP Headers
# ============================================================================

HEADER_REQUEST_ID = "X-Request-ID"
HEADER_USER_ID = "X-User-ID"
HEADER_FORWARDED_FOR = "X-Forwarded-For"
HEADER_RATE_LIMIT = "X-RateLimit-Limit"
HEADER_RATE_REMAINING = "X-RateLimit-Remaining"
HEADER_RETRY_AFTER = "Retry-After"
HEADER_CACHE_STATUS = "X-Cache"
