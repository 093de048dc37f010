"""
Middleware Package

AVAILABLE MIDDLEWARE:
---------------------
1. request_context: Request ID correlation and access logging
2. rate_limiter: Fixed-window admission control (429 when over limit)
3. response_cache: Read-through cache for GET responses, plus invalidation
   after mutations
4. key_strategy: How cache and rate-limit keys are built

MIDDLEWARE ORDERING:
--------------------
Starlette runs the LAST registered middleware FIRST. The request pipeline
must be: rate check -> cache check -> handler -> cache write, so the
response cache is registered before the rate limiter:

    app.add_middleware(ResponseCacheMiddleware, policy=...)
    app.add_middleware(RateLimitMiddleware, policy=...)
    app.add_middleware(RequestContextMiddleware)

A rate-limited request therefore never reads from or writes to the cache.
"""

from .key_strategy import (
    CallableKeyStrategy,
    KeyStrategy,
    RateLimitKeyStrategy,
    UserRouteKeyStrategy,
    default_identity_resolver,
    header_identity_resolver,
)
from .rate_limiter import (
    InMemoryRateLimitStore,
    RateLimitMiddleware,
    RateLimitPolicy,
    api_rate_limit_policy,
    strict_rate_limit_policy,
    upload_rate_limit_policy,
)
from .request_context import RequestContextMiddleware
from .response_cache import (
    CacheInvalidationMiddleware,
    CacheInvalidationPolicy,
    ResponseCacheMiddleware,
    ResponseCachePolicy,
    clear_route_cache,
    clear_user_cache,
)

__all__ = [
    "KeyStrategy",
    "UserRouteKeyStrategy",
    "RateLimitKeyStrategy",
    "CallableKeyStrategy",
    "default_identity_resolver",
    "header_identity_resolver",
    "RateLimitPolicy",
    "RateLimitMiddleware",
    "InMemoryRateLimitStore",
    "api_rate_limit_policy",
    "strict_rate_limit_policy",
    "upload_rate_limit_policy",
    "RequestContextMiddleware",
    "ResponseCachePolicy",
    "ResponseCacheMiddleware",
    "CacheInvalidationPolicy",
    "CacheInvalidationMiddleware",
    "clear_user_cache",
    "clear_route_cache",
]
