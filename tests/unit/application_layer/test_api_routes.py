"""
Unit Tests for API Routes

Tests the health and cache statistics endpoints, request ID propagation,
dependency providers and the application exception handler.
"""

import pytest
from fastapi import APIRouter
from fastapi.testclient import TestClient

from cachegate.application.api.dependencies import SessionStoreDep, UserIdDep
from cachegate.application.app import create_app
from cachegate.core.config.settings import Settings
from cachegate.core.exceptions import CacheGateError, RateLimitExceededError


@pytest.mark.unit
class TestHealthRoutes:
    """Test suite for health check routes."""

    def test_health_endpoint_returns_200(self, build_app):
        """Test health endpoint returns successful response."""
        with TestClient(build_app()) as client:
            response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["environment"] == "test"
        assert data["redis"] == "connected"
        assert data["redis_state"] == "ready"
        assert "timestamp" in data

    def test_health_reports_disconnected_redis(self, build_app, offline_connection):
        """Test that the app stays healthy without Redis."""
        with TestClient(build_app(connection_manager=offline_connection)) as client:
            response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["redis"] == "disconnected"

    def test_redis_health_healthy(self, build_app):
        with TestClient(build_app()) as client:
            response = client.get("/api/redis/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["reply"] == "PONG"
        assert data["latency_ms"] >= 0

    def test_redis_health_unavailable(self, build_app, offline_connection):
        with TestClient(build_app(connection_manager=offline_connection)) as client:
            response = client.get("/api/redis/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["connected"] is False

    def test_malformed_redis_url_does_not_block_startup(self):
        """Test that an unusable REDIS_URL leaves the app serving without Redis."""
        settings = Settings(ENVIRONMENT="test", REDIS_URL="localhost:6379")

        with TestClient(create_app(settings=settings)) as client:
            response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["redis"] == "disconnected"
        assert response.json()["redis_state"] == "disabled"

    def test_root_endpoint(self, build_app):
        with TestClient(build_app()) as client:
            data = client.get("/").json()

        assert data["name"] == "CacheGate"
        assert data["health"] == "/api/health"


@pytest.mark.unit
class TestCacheStatsRoutes:
    """Test cache statistics endpoints."""

    def test_initial_stats(self, build_app):
        with TestClient(build_app()) as client:
            data = client.get("/api/cache/stats").json()

        assert data["status"] == "ok"
        assert data["cache_stats"] == {
            "hits": 0,
            "misses": 0,
            "invalidations": 0,
            "total_requests": 0,
            "hit_rate": "0%",
        }

    def test_reset(self, build_app):
        with TestClient(build_app()) as client:
            client.get("/api/items")
            client.get("/api/items")

            reset = client.post("/api/cache/stats/reset")
            data = client.get("/api/cache/stats").json()

        assert reset.status_code == 200
        assert reset.json()["message"] == "Cache statistics reset"
        assert data["cache_stats"]["total_requests"] == 0

    def test_apps_do_not_share_stats(self, build_app):
        """Test that each app instance owns its counters."""
        with TestClient(build_app()) as client:
            client.get("/api/items")

        with TestClient(build_app()) as client:
            data = client.get("/api/cache/stats").json()

        assert data["cache_stats"]["misses"] == 0


@pytest.mark.unit
class TestRequestContext:
    """Test request ID handling."""

    def test_request_id_generated(self, build_app):
        with TestClient(build_app()) as client:
            response = client.get("/api/health")

        assert len(response.headers["X-Request-ID"]) == 36

    def test_request_id_echoed(self, build_app):
        with TestClient(build_app()) as client:
            response = client.get("/api/health", headers={"X-Request-ID": "req-abc"})

        assert response.headers["X-Request-ID"] == "req-abc"


@pytest.mark.unit
class TestDependenciesAndErrors:
    """Test dependency providers and the exception handler."""

    @pytest.fixture
    def extra_router(self):
        router = APIRouter()

        @router.get("/whoami")
        async def whoami(user_id: UserIdDep):
            return {"user_id": user_id}

        @router.post("/sessions")
        async def create_session(user_id: UserIdDep, sessions: SessionStoreDep):
            return await sessions.create_session(user_id, {"device": "test"})

        @router.get("/boom")
        async def boom():
            raise CacheGateError("Something broke", details={"component": "test"})

        @router.get("/throttled")
        async def throttled():
            raise RateLimitExceededError("Slow down", limit=1, retry_after=30)

        return router

    def test_user_id_dependency(self, build_app, items_router, extra_router):
        with TestClient(build_app(routers=[items_router, extra_router])) as client:
            anonymous = client.get("/api/whoami").json()
            alice = client.get("/api/whoami", headers={"X-User-ID": "alice"}).json()

        assert anonymous == {"user_id": "anonymous"}
        assert alice == {"user_id": "alice"}

    def test_user_id_header_ignored_by_default(self, build_app, items_router, extra_router):
        """Test that without a trusted gateway the header does not set the user."""
        app = build_app(routers=[items_router, extra_router], identity_resolver=None)

        with TestClient(app) as client:
            response = client.get("/api/whoami", headers={"X-User-ID": "alice"})

        assert response.json() == {"user_id": "anonymous"}

    def test_session_store_dependency(self, build_app, items_router, extra_router, fake_redis):
        with TestClient(build_app(routers=[items_router, extra_router])) as client:
            session = client.post("/api/sessions", headers={"X-User-ID": "alice"}).json()

        assert session["user_id"] == "alice"
        assert f"session:{session['id']}" in fake_redis.data
        assert "user_sessions:alice" in fake_redis.data

    def test_cachegate_error_rendered_as_500(self, build_app, items_router, extra_router):
        with TestClient(build_app(routers=[items_router, extra_router])) as client:
            response = client.get("/api/boom")

        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert data["error_type"] == "CacheGateError"
        assert data["details"] == {"component": "test"}

    def test_rate_limit_error_rendered_as_429(self, build_app, items_router, extra_router):
        with TestClient(build_app(routers=[items_router, extra_router])) as client:
            response = client.get("/api/throttled")

        assert response.status_code == 429
        assert response.json()["details"] == {"limit": 1, "retry_after": 30}
