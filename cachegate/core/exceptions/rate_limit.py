"""
Rate Limiting Exceptions
"""

from cachegate.core.exceptions.base import CacheGateError


class RateLimitError(CacheGateError):
    """Base exception for rate limiting errors."""
    pass


class RateLimitExceededError(RateLimitError):
    """
    Raised when an identity exceeds its request budget for the current window.

    The middleware renders this as HTTP 429 with:
    - X-RateLimit-Limit: Maximum requests allowed
    - X-RateLimit-Remaining: 0
    - Retry-After: Window length in seconds
    """

    def __init__(
        self,
        message: str,
        limit: int,
        retry_after: int,
        request_id: str | None = None,
    ):
        super().__init__(
            message,
            request_id=request_id,
            details={"limit": limit, "retry_after": retry_after},
        )
        self.limit = limit
        self.retry_after = retry_after
