"""
Unit Tests for Rate Limiter Middleware

Tests the in-process and Redis-backed fixed-window stores, the 429
response contract, failed-request refunds, fail-open behavior and presets.
"""

from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from cachegate.application.api.middleware.key_strategy import (
    CallableKeyStrategy,
    header_identity_resolver,
)
from cachegate.application.api.middleware.rate_limiter import (
    API_MESSAGE,
    STRICT_MESSAGE,
    DistributedRateLimitStore,
    InMemoryRateLimitStore,
    RateLimitMiddleware,
    RateLimitPolicy,
    api_rate_limit_policy,
    strict_rate_limit_policy,
    upload_rate_limit_policy,
)
from cachegate.core.config.settings import Settings
from cachegate.core.exceptions import RateLimitExceededError
from cachegate.infrastructure.cache.cache_client import KeyValueCacheClient


def limited_app(policy: RateLimitPolicy, connection=None, paths=None) -> FastAPI:
    """Minimal app with one limiter; connects the store if a manager is given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if connection is not None:
            await connection.connect()
        yield
        await policy.close()
        if connection is not None:
            await connection.close()

    app = FastAPI(lifespan=lifespan)
    app.add_middleware(RateLimitMiddleware, policy=policy, paths=paths)

    @app.get("/items")
    async def items():
        return {"ok": True}

    @app.get("/other")
    async def other():
        return {"ok": True}

    @app.post("/login")
    async def login(valid: bool = False):
        if valid:
            return {"token": "t"}
        return JSONResponse(status_code=401, content={"error": "invalid credentials"})

    return app


@pytest.mark.unit
class TestInMemoryStore:
    """Test the process-local fallback store."""

    async def test_allows_up_to_limit(self, fake_clock):
        store = InMemoryRateLimitStore(fake_clock)

        results = [await store.check_and_increment("k", 3, 60) for _ in range(4)]

        assert results == [(True, 1), (True, 2), (True, 3), (False, 3)]

    async def test_window_resets_after_expiry(self, fake_clock):
        store = InMemoryRateLimitStore(fake_clock)
        await store.check_and_increment("k", 1, 60)

        fake_clock.advance(60)
        assert await store.check_and_increment("k", 1, 60) == (False, 1)

        fake_clock.advance(0.5)
        assert await store.check_and_increment("k", 1, 60) == (True, 1)

    async def test_refund(self, fake_clock):
        store = InMemoryRateLimitStore(fake_clock)
        await store.check_and_increment("k", 1, 60)

        await store.refund("k")

        assert await store.check_and_increment("k", 1, 60) == (True, 1)

    async def test_sweep_removes_expired(self, fake_clock):
        store = InMemoryRateLimitStore(fake_clock)
        await store.check_and_increment("old", 5, 10)
        fake_clock.advance(30)
        await store.check_and_increment("new", 5, 10)

        assert store.sweep() == 1
        assert len(store) == 1

        store.clear()
        assert len(store) == 0


@pytest.mark.unit
class TestDistributedStore:
    """Test the Redis-backed store."""

    async def test_counts_and_denies(self, cache):
        store = DistributedRateLimitStore(cache)

        results = [await store.check_and_increment("ratelimit:u1:/x", 2, 60) for _ in range(3)]

        assert results == [(True, 1), (True, 2), (False, 2)]

    async def test_window_end_does_not_move(self, cache, fake_clock):
        """Test that later requests keep the TTL set by the first one."""
        store = DistributedRateLimitStore(cache)
        await store.check_and_increment("k", 5, 60)
        fake_clock.advance(20)

        await store.check_and_increment("k", 5, 60)

        assert await cache.ttl("k") == 40
        assert await cache.get("k") == 2

    async def test_new_window_after_expiry(self, cache, fake_clock):
        store = DistributedRateLimitStore(cache)
        await store.check_and_increment("k", 1, 60)
        fake_clock.advance(61)

        assert await store.check_and_increment("k", 1, 60) == (True, 1)
        assert await cache.ttl("k") == 60

    async def test_refund_never_recreates_key(self, cache, fake_clock):
        store = DistributedRateLimitStore(cache)
        await store.check_and_increment("k", 5, 60)
        await store.check_and_increment("k", 5, 60)

        await store.refund("k")
        assert await cache.get("k") == 1

        fake_clock.advance(61)
        await store.refund("k")
        assert await cache.exists("k") is False

    async def test_shared_between_instances(self, cache):
        """Test that two app instances over one Redis share a budget."""
        first = DistributedRateLimitStore(cache)
        second = DistributedRateLimitStore(cache)

        await first.check_and_increment("k", 2, 60)
        await second.check_and_increment("k", 2, 60)

        assert await first.check_and_increment("k", 2, 60) == (False, 2)


@pytest.mark.unit
class TestRateLimitMiddlewareFallback:
    """Test HTTP behavior on the in-process store (Redis not connected)."""

    def test_limit_then_429(self, offline_cache, fake_clock):
        policy = RateLimitPolicy(offline_cache, window_seconds=60, max_requests=3, clock=fake_clock)

        with TestClient(limited_app(policy)) as client:
            responses = [client.get("/items") for _ in range(4)]

        assert [r.status_code for r in responses] == [200, 200, 200, 429]
        assert [r.headers["X-RateLimit-Remaining"] for r in responses[:3]] == ["2", "1", "0"]
        assert responses[0].headers["X-RateLimit-Limit"] == "3"

        rejected = responses[3]
        assert rejected.headers["Retry-After"] == "60"
        assert rejected.headers["X-RateLimit-Remaining"] == "0"
        assert rejected.json() == {
            "success": False,
            "error": "Rate limit exceeded",
            "message": "Too many requests, please try again later.",
            "retryAfter": 60,
        }

    def test_window_expiry_readmits(self, offline_cache, fake_clock):
        policy = RateLimitPolicy(offline_cache, window_seconds=60, max_requests=1, clock=fake_clock)

        with TestClient(limited_app(policy)) as client:
            assert client.get("/items").status_code == 200
            assert client.get("/items").status_code == 429
            fake_clock.advance(61)
            assert client.get("/items").status_code == 200

    def test_identities_and_routes_are_isolated(self, offline_cache, fake_clock):
        policy = RateLimitPolicy(
            offline_cache,
            max_requests=1,
            identity_resolver=header_identity_resolver,
            clock=fake_clock,
        )

        with TestClient(limited_app(policy)) as client:
            assert client.get("/items", headers={"X-User-ID": "alice"}).status_code == 200
            assert client.get("/items", headers={"X-User-ID": "alice"}).status_code == 429
            assert client.get("/items", headers={"X-User-ID": "bob"}).status_code == 200
            assert client.get("/other", headers={"X-User-ID": "alice"}).status_code == 200
            assert client.get("/items").status_code == 200

    def test_skip_failed_requests_refunds(self, offline_cache, fake_clock):
        """Test that failed attempts do not consume the budget."""
        policy = RateLimitPolicy(
            offline_cache, max_requests=2, skip_failed_requests=True, clock=fake_clock
        )

        with TestClient(limited_app(policy)) as client:
            failures = [client.post("/login") for _ in range(5)]
            successes = [client.post("/login?valid=true") for _ in range(3)]

        assert all(r.status_code == 401 for r in failures)
        assert [r.status_code for r in successes] == [200, 200, 429]

    def test_failed_requests_count_by_default(self, offline_cache, fake_clock):
        policy = RateLimitPolicy(offline_cache, max_requests=2, clock=fake_clock)

        with TestClient(limited_app(policy)) as client:
            statuses = [client.post("/login").status_code for _ in range(3)]

        assert statuses == [401, 401, 429]

    def test_limiter_fault_admits_request(self, offline_cache):
        """Test fail-open: an internal limiter error never blocks traffic."""

        def broken(request, identity):
            raise RuntimeError("key store exploded")

        policy = RateLimitPolicy(
            offline_cache, max_requests=1, key_strategy=CallableKeyStrategy(broken)
        )

        with TestClient(limited_app(policy)) as client:
            responses = [client.get("/items") for _ in range(3)]

        assert all(r.status_code == 200 for r in responses)
        assert "X-RateLimit-Limit" not in responses[0].headers

    def test_paths_filter(self, offline_cache, fake_clock):
        policy = RateLimitPolicy(offline_cache, max_requests=1, clock=fake_clock)

        with TestClient(limited_app(policy, paths=["/login"])) as client:
            statuses = [client.get("/items").status_code for _ in range(3)]

        assert statuses == [200, 200, 200]

    def test_close_stops_sweeper(self, offline_cache, fake_clock):
        policy = RateLimitPolicy(offline_cache, clock=fake_clock)

        with TestClient(limited_app(policy)) as client:
            client.get("/items")
            assert policy._sweep_task is not None

        assert policy._sweep_task is None


@pytest.mark.unit
class TestRateLimitMiddlewareDistributed:
    """Test HTTP behavior on the Redis-backed store."""

    def test_counters_live_in_redis(self, connection, fake_redis, fake_clock):
        """Test that counters are shared through Redis with the window TTL."""
        policy = RateLimitPolicy(
            KeyValueCacheClient(connection), window_seconds=30, max_requests=2, clock=fake_clock
        )

        with TestClient(limited_app(policy, connection=connection)) as client:
            statuses = [client.get("/items").status_code for _ in range(3)]

            assert fake_redis.data["ratelimit:testclient:/items"] == "2"
            assert fake_redis.expires["ratelimit:testclient:/items"] == fake_clock() + 30

        assert statuses == [200, 200, 429]
        assert len(policy.memory_store) == 0

    def test_skip_failed_requests_refunds_in_redis(self, connection, fake_redis, fake_clock):
        """Test that failures refund the shared counter exactly as the fallback does."""
        policy = RateLimitPolicy(
            KeyValueCacheClient(connection),
            max_requests=2,
            skip_failed_requests=True,
            clock=fake_clock,
        )

        with TestClient(limited_app(policy, connection=connection)) as client:
            failures = [client.post("/login") for _ in range(5)]
            assert fake_redis.data["ratelimit:testclient:/login"] == "0"
            successes = [client.post("/login?valid=true") for _ in range(3)]

        assert all(r.status_code == 401 for r in failures)
        assert [r.status_code for r in successes] == [200, 200, 429]
        assert len(policy.memory_store) == 0

@pytest.mark.unit
class TestPresets:
    """Test the preset policies."""

    def test_api_preset(self, offline_cache, test_settings):
        policy = api_rate_limit_policy(offline_cache, test_settings)

        assert (policy.window_seconds, policy.max_requests) == (60, 60)
        assert policy.message == API_MESSAGE
        assert policy.skip_failed_requests is False

    def test_strict_preset(self, offline_cache, test_settings):
        policy = strict_rate_limit_policy(offline_cache, test_settings)

        assert (policy.window_seconds, policy.max_requests) == (900, 5)
        assert policy.message == STRICT_MESSAGE
        assert policy.skip_failed_requests is True

    def test_upload_preset(self, offline_cache, test_settings):
        policy = upload_rate_limit_policy(offline_cache, test_settings)
        assert (policy.window_seconds, policy.max_requests) == (60, 10)

    def test_overrides(self, offline_cache, test_settings):
        policy = api_rate_limit_policy(offline_cache, test_settings, max_requests=7)
        assert policy.max_requests == 7

    def test_presets_follow_settings(self, offline_cache):
        settings = Settings(RATE_LIMIT_STRICT_MAX=3, RATE_LIMIT_STRICT_WINDOW_SECONDS=120)
        policy = strict_rate_limit_policy(offline_cache, settings)
        assert (policy.window_seconds, policy.max_requests) == (120, 3)

    def test_strict_paths_in_app(self, build_app):
        """Test that create_app mounts the strict limiter on the given prefixes."""
        with TestClient(build_app(strict_paths=["/api/items"])) as client:
            statuses = [client.post("/api/items?fail=true").status_code for _ in range(7)]
            response = client.post("/api/items")
            for _ in range(5):
                client.post("/api/items")
            limited = client.post("/api/items")

        assert statuses == [400] * 7
        assert response.status_code == 200
        assert limited.status_code == 429
        assert limited.json()["message"] == STRICT_MESSAGE


@pytest.mark.unit
class TestCheck:
    async def test_check_raises(self, offline_cache, fake_clock):
        policy = RateLimitPolicy(offline_cache, max_requests=1, clock=fake_clock)
        await policy.check("k", policy.memory_store)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await policy.check("k", policy.memory_store)

        assert exc_info.value.retry_after == 60
        assert exc_info.value.limit == 1
