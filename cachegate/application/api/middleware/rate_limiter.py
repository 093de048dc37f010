"""
Rate Limiter Middleware

Fixed-window admission control per identity + route.

Features:
- Distributed counters in Redis when the connection is ready
- Automatic in-process fallback when it is not (single instance only)
- Identical headers, 429 body and thresholds on both paths
- Fail-open: a fault inside the limiter admits the request
- Optional refund of requests that end with status >= 400
- Presets for general API traffic, sensitive endpoints and uploads

Known approximation: the distributed counter is read, compared and written
back as separate commands, so two concurrent requests can both observe N and
both write N+1. Limits may be exceeded by the number of concurrent requests.
"""

import asyncio
import time
from collections.abc import Callable, Sequence
from typing import Any

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from cachegate.application.api.middleware.key_strategy import (
    IdentityResolver,
    KeyStrategy,
    RateLimitKeyStrategy,
    default_identity_resolver,
)
from cachegate.core.config.constants import (
    HEADER_RATE_LIMIT,
    HEADER_RATE_REMAINING,
    HEADER_RETRY_AFTER,
    Stage,
)
from cachegate.core.config.settings import Settings, get_settings
from cachegate.core.exceptions import RateLimitExceededError
from cachegate.core.logging import get_logger
from cachegate.infrastructure.cache.cache_client import KeyValueCacheClient

logger = get_logger(__name__)

DEFAULT_MESSAGE = "Too many requests, please try again later."
API_MESSAGE = "API rate limit exceeded. Please slow down."
STRICT_MESSAGE = "Too many attempts. Please try again in 15 minutes."
UPLOAD_MESSAGE = "Upload rate limit exceeded. Please wait before uploading more files."


# ============================================================================
# COUNTER STORES
# ============================================================================


class InMemoryRateLimitStore:
    """
    Process-local fixed-window counters.

    Entry: key -> {"count": int, "reset_time": float}. A window restarts once
    ``now > reset_time``. sweep() drops expired entries to bound memory.

    No lock: the event loop is single-threaded and nothing here awaits, so
    check-and-increment cannot interleave with another request or the sweep.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _current(self, key: str) -> dict[str, Any] | None:
        entry = self._entries.get(key)
        if entry is not None and self._clock() > entry["reset_time"]:
            del self._entries[key]
            return None
        return entry

    async def check_and_increment(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        """
        Returns:
            (allowed, count) where count includes this request when allowed
        """
        entry = self._current(key)
        if entry is None:
            entry = {"count": 0, "reset_time": self._clock() + window}
            self._entries[key] = entry

        if entry["count"] >= limit:
            return False, entry["count"]

        entry["count"] += 1
        return True, entry["count"]

    async def refund(self, key: str) -> None:
        entry = self._current(key)
        if entry is not None and entry["count"] > 0:
            entry["count"] -= 1

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now > entry["reset_time"]]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()


class DistributedRateLimitStore:
    """
    Redis-backed fixed-window counters.

    The first write of a window sets the TTL; later writes use KEEPTTL + XX
    so the window end never moves. If the key expired between read and write
    the XX write is refused and a new window is started.
    """

    def __init__(self, cache: KeyValueCacheClient):
        self._cache = cache

    async def _read(self, key: str) -> int | None:
        value = await self._cache.get(key)
        return None if value is None else int(value)

    async def check_and_increment(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        current = await self._read(key)
        if current is not None and current >= limit:
            return False, current

        if current is not None:
            count = current + 1
            if await self._cache.set(key, count, keep_ttl=True, only_if_exists=True):
                return True, count

        # New window (or the previous one ended between read and write)
        await self._cache.set(key, 1, ttl=window)
        return True, 1

    async def refund(self, key: str) -> None:
        current = await self._read(key)
        if current is not None and current > 0:
            await self._cache.set(key, current - 1, keep_ttl=True, only_if_exists=True)


# ============================================================================
# POLICY
# ============================================================================


class RateLimitPolicy:
    """
    Fixed-window rate limit for one group of routes.

    Args:
        cache: Fail-safe cache client (distributed counters when ready)
        window_seconds: Window length; also the Retry-After value
        max_requests: Requests allowed per identity + route per window
        message: Text returned in the 429 body
        key_strategy: Builds the counter key (default ratelimit:{identity}:{path})
        skip_failed_requests: Refund requests whose response status is >= 400
        identity_resolver: Extracts the optional user id from the request
        clock: Monotonic clock for the in-process fallback
    """

    def __init__(
        self,
        cache: KeyValueCacheClient,
        window_seconds: int = 60,
        max_requests: int = 100,
        message: str = DEFAULT_MESSAGE,
        key_strategy: KeyStrategy | None = None,
        skip_failed_requests: bool = False,
        identity_resolver: IdentityResolver | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.message = message
        self.key_strategy = key_strategy or RateLimitKeyStrategy()
        self.skip_failed_requests = skip_failed_requests
        self.identity_resolver = identity_resolver or default_identity_resolver

        self.distributed_store = DistributedRateLimitStore(cache)
        self.memory_store = InMemoryRateLimitStore(clock)
        self._sweep_task: asyncio.Task | None = None

    def _select_store(self) -> DistributedRateLimitStore | InMemoryRateLimitStore:
        if self.cache.is_ready():
            return self.distributed_store
        self._ensure_sweeper()
        return self.memory_store

    def _ensure_sweeper(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.window_seconds)
            removed = self.memory_store.sweep()
            if removed:
                logger.debug(
                    "Expired rate limit entries swept",
                    stage=Stage.RATE_LIMITING,
                    removed=removed,
                )

    async def close(self) -> None:
        """Stop the periodic sweep."""
        if self._sweep_task is not None and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None

    async def check(self, key: str, store) -> int:
        """
        Count this request against the window.

        Raises:
            RateLimitExceededError: The window is already full
        """
        allowed, count = await store.check_and_increment(
            key, self.max_requests, self.window_seconds
        )
        if not allowed:
            raise RateLimitExceededError(
                self.message, limit=self.max_requests, retry_after=self.window_seconds
            )
        return count

    def reject(self, exc: RateLimitExceededError) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "error": "Rate limit exceeded",
                "message": exc.message,
                "retryAfter": exc.retry_after,
            },
            headers={
                HEADER_RATE_LIMIT: str(exc.limit),
                HEADER_RATE_REMAINING: "0",
                HEADER_RETRY_AFTER: str(exc.retry_after),
            },
        )

    async def apply(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        key = None
        store = None
        count = None
        try:
            key = self.key_strategy.build(request, self.identity_resolver(request))
            store = self._select_store()
            count = await self.check(key, store)
        except RateLimitExceededError as exc:
            logger.warning(
                "Rate limit exceeded",
                stage=Stage.RATE_LIMITING,
                key=key,
                limit=self.max_requests,
                window=self.window_seconds,
            )
            return self.reject(exc)
        except Exception as e:
            # Limiter faults admit the request
            logger.error(
                "Rate limiter failed, admitting request",
                stage=Stage.RATE_LIMITING,
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return await call_next(request)

        response = await call_next(request)

        response.headers[HEADER_RATE_LIMIT] = str(self.max_requests)
        response.headers[HEADER_RATE_REMAINING] = str(max(0, self.max_requests - count))

        if self.skip_failed_requests and response.status_code >= 400:
            try:
                await store.refund(key)
            except Exception as e:
                logger.error(
                    "Rate limit refund failed",
                    stage=Stage.RATE_LIMITING,
                    key=key,
                    error=str(e),
                )

        return response


# ============================================================================
# MIDDLEWARE
# ============================================================================


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies a RateLimitPolicy to requests under the given path prefixes
    (all requests when ``paths`` is None).

    Register it after the response cache so it runs first:
        app.add_middleware(ResponseCacheMiddleware, policy=cache_policy)
        app.add_middleware(RateLimitMiddleware, policy=api_rate_limit_policy(cache))
    """

    def __init__(self, app, policy: RateLimitPolicy, paths: Sequence[str] | None = None):
        super().__init__(app)
        self.policy = policy
        self.paths = paths

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self.paths is not None and not any(
            request.url.path.startswith(prefix) for prefix in self.paths
        ):
            return await call_next(request)
        return await self.policy.apply(request, call_next)


# ============================================================================
# PRESETS
# ============================================================================


def api_rate_limit_policy(
    cache: KeyValueCacheClient, settings: Settings | None = None, **overrides
) -> RateLimitPolicy:
    """General API traffic (60 requests per minute by default)."""
    limits = (settings or get_settings()).rate_limit
    options = {
        "window_seconds": limits.RATE_LIMIT_WINDOW_SECONDS,
        "max_requests": limits.RATE_LIMIT_MAX,
        "message": API_MESSAGE,
        **overrides,
    }
    return RateLimitPolicy(cache, **options)


def strict_rate_limit_policy(
    cache: KeyValueCacheClient, settings: Settings | None = None, **overrides
) -> RateLimitPolicy:
    """Login, registration, password reset (5 per 15 minutes, failures refunded)."""
    limits = (settings or get_settings()).rate_limit
    options = {
        "window_seconds": limits.RATE_LIMIT_STRICT_WINDOW_SECONDS,
        "max_requests": limits.RATE_LIMIT_STRICT_MAX,
        "message": STRICT_MESSAGE,
        "skip_failed_requests": True,
        **overrides,
    }
    return RateLimitPolicy(cache, **options)


def upload_rate_limit_policy(
    cache: KeyValueCacheClient, settings: Settings | None = None, **overrides
) -> RateLimitPolicy:
    """File uploads (10 per minute by default)."""
    limits = (settings or get_settings()).rate_limit
    options = {
        "window_seconds": limits.RATE_LIMIT_UPLOAD_WINDOW_SECONDS,
        "max_requests": limits.RATE_LIMIT_UPLOAD_MAX,
        "message": UPLOAD_MESSAGE,
        **overrides,
    }
    return RateLimitPolicy(cache, **options)
