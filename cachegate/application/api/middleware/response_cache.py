"""
Response Cache Middleware

READ-THROUGH CACHING OF GET RESPONSES:
--------------------------------------
    Client -> ResponseCacheMiddleware -> Route Handler
                 |  hit: return cached JSON, handler never runs
                 |  miss: run handler, store 2xx JSON body with TTL

Only GET requests are intercepted. When Redis is not ready the middleware
passes every request straight through.

Only JSON bodies are stored. A hit is replayed as 200 application/json, so
handler-set headers and non-200 success codes are not replayed.

INVALIDATION:
-------------
CacheInvalidationPolicy runs after mutating requests. When the handler
completes with 2xx, each configured pattern is expanded and pattern-deleted:
    "/api/history*"              -> cache:{identity}:/api/history*
    lambda req, identity: "..."  -> whatever the function returns

STRATEGY PATTERN:
-----------------
The configurable behavior lives in policy objects with an
``apply(request, call_next)`` method; the middleware classes only decide
which requests a policy sees.
"""

from collections.abc import Callable, Sequence

import orjson
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from cachegate.application.api.middleware.key_strategy import (
    IdentityResolver,
    KeyStrategy,
    UserRouteKeyStrategy,
    default_identity_resolver,
)
from cachegate.core.config.constants import (
    ANONYMOUS_IDENTITY,
    HEADER_CACHE_STATUS,
    REDIS_KEY_RESPONSE_CACHE,
    REDIS_KEY_USER_DATA,
    Stage,
)
from cachegate.core.logging import get_logger
from cachegate.core.observability.usage_stats import UsageStatsTracker, get_usage_tracker
from cachegate.infrastructure.cache.cache_client import KeyValueCacheClient
from cachegate.infrastructure.cache.codec import encode_key_segment, segment_pattern

logger = get_logger(__name__)

DEFAULT_RESPONSE_TTL = 300
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

InvalidationPattern = str | Callable[[Request, str], str]


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def _is_json(response: Response) -> bool:
    content_type = response.headers.get("content-type", "")
    return content_type.split(";")[0].strip().lower() == "application/json"


# ============================================================================
# POLICIES
# ============================================================================


class ResponseCachePolicy:
    """
    Read-through cache for successful GET responses.

    Args:
        cache: Fail-safe cache client
        ttl: Seconds a stored response lives (default 300)
        key_strategy: Builds the cache key (default cache:{identity}:{path?query})
        user_scoped: Namespace keys per identity (ignored with a custom strategy)
        identity_resolver: Extracts the optional user id from the request
        tracker: Hit/miss counters
    """

    def __init__(
        self,
        cache: KeyValueCacheClient,
        ttl: int = DEFAULT_RESPONSE_TTL,
        key_strategy: KeyStrategy | None = None,
        user_scoped: bool = True,
        identity_resolver: IdentityResolver | None = None,
        tracker: UsageStatsTracker | None = None,
    ):
        self.cache = cache
        self.ttl = ttl
        self.key_strategy = key_strategy or UserRouteKeyStrategy(user_scoped=user_scoped)
        self.identity_resolver = identity_resolver or default_identity_resolver
        self.tracker = tracker or get_usage_tracker()

    async def apply(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method != "GET" or not self.cache.is_ready():
            return await call_next(request)

        key = self.key_strategy.build(request, self.identity_resolver(request))

        cached = await self.cache.get(key)
        if cached is not None:
            self.tracker.record_hit(key)
            return Response(
                content=orjson.dumps(cached),
                media_type="application/json",
                headers={HEADER_CACHE_STATUS: "HIT"},
            )

        self.tracker.record_miss(key)
        response = await call_next(request)

        if not (_is_success(response.status_code) and _is_json(response)):
            return response

        return await self._store(key, response)

    async def _store(self, key: str, response: Response) -> Response:
        """Drain the streamed body, cache it, and hand back an equivalent response."""
        body = b"".join([chunk async for chunk in response.body_iterator])

        try:
            payload = orjson.loads(body)
        except orjson.JSONDecodeError as e:
            logger.warning(
                "Response body is not valid JSON, not caching",
                stage=Stage.CACHE_WRITE,
                cache_key=key,
                error=str(e),
            )
        else:
            await self.cache.set(key, payload, self.ttl)

        replay = Response(
            content=body,
            status_code=response.status_code,
            headers=response.headers,
            background=response.background,
        )
        replay.headers[HEADER_CACHE_STATUS] = "MISS"
        return replay


class CacheInvalidationPolicy:
    """
    Deletes related cache groups after a successful mutation.

    String patterns are relative to the caller's namespace
    (``cache:{identity}:{pattern}``); callables receive
    ``(request, identity)`` and return a full pattern.
    """

    def __init__(
        self,
        cache: KeyValueCacheClient,
        patterns: Sequence[InvalidationPattern],
        identity_resolver: IdentityResolver | None = None,
        tracker: UsageStatsTracker | None = None,
    ):
        self.cache = cache
        self.patterns = list(patterns)
        self.identity_resolver = identity_resolver or default_identity_resolver
        self.tracker = tracker or get_usage_tracker()

    def expand(self, request: Request, identity: str) -> list[str]:
        expanded = []
        for pattern in self.patterns:
            if callable(pattern):
                expanded.append(pattern(request, identity))
            else:
                expanded.append(
                    f"{REDIS_KEY_RESPONSE_CACHE}:{segment_pattern(identity)}:{pattern}"
                )
        return expanded

    async def apply(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)

        if _is_success(response.status_code) and self.cache.is_ready():
            identity = self.identity_resolver(request) or ANONYMOUS_IDENTITY
            for pattern in self.expand(request, identity):
                removed = await self.cache.delete_by_pattern(pattern)
                self.tracker.record_invalidation(pattern, removed)
                logger.info(
                    "Cache invalidated",
                    stage=Stage.CACHE_INVALIDATION,
                    pattern=pattern,
                    keys_removed=removed,
                )

        return response


# ============================================================================
# MIDDLEWARE
# ============================================================================


def _matches(path: str, prefixes: Sequence[str] | None) -> bool:
    return prefixes is None or any(path.startswith(prefix) for prefix in prefixes)


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """
    Applies a ResponseCachePolicy to requests under the given path prefixes
    (all requests when ``paths`` is None).
    """

    def __init__(self, app, policy: ResponseCachePolicy, paths: Sequence[str] | None = None):
        super().__init__(app)
        self.policy = policy
        self.paths = paths

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not _matches(request.url.path, self.paths):
            return await call_next(request)
        return await self.policy.apply(request, call_next)


class CacheInvalidationMiddleware(BaseHTTPMiddleware):
    """Applies a CacheInvalidationPolicy to mutating requests under ``paths``."""

    def __init__(
        self,
        app,
        policy: CacheInvalidationPolicy,
        paths: Sequence[str] | None = None,
        methods: frozenset[str] = MUTATING_METHODS,
    ):
        super().__init__(app)
        self.policy = policy
        self.paths = paths
        self.methods = methods

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method not in self.methods or not _matches(request.url.path, self.paths):
            return await call_next(request)
        return await self.policy.apply(request, call_next)


# ============================================================================
# DIRECT INVALIDATION HELPERS
# ============================================================================


async def clear_user_cache(
    cache: KeyValueCacheClient,
    user_id: str,
    tracker: UsageStatsTracker | None = None,
) -> bool:
    """Drop every cached response and user-data entry for one user."""
    if not cache.is_ready():
        return False

    tracker = tracker or get_usage_tracker()
    safe_user = segment_pattern(user_id)
    for prefix in (REDIS_KEY_RESPONSE_CACHE, REDIS_KEY_USER_DATA):
        pattern = f"{prefix}:{safe_user}:*"
        removed = await cache.delete_by_pattern(pattern)
        tracker.record_invalidation(pattern, removed)

    logger.info("User cache cleared", stage=Stage.CACHE_INVALIDATION, user_id=user_id)
    return True


async def clear_route_cache(cache: KeyValueCacheClient, user_id: str, route: str) -> bool:
    """Drop the cached response for one user and one exact route (path?query)."""
    key = f"{REDIS_KEY_RESPONSE_CACHE}:{encode_key_segment(user_id)}:{route}"
    return await cache.delete(key)
