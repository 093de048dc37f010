"""
Application Layer Fixtures

Apps are built around the fake Redis from the root conftest. Tests must use
``with TestClient(app) as client`` so the lifespan connects and cleans up.
"""

import pytest
from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse

from cachegate.application.api.dependencies import UserIdDep
from cachegate.application.api.middleware.key_strategy import header_identity_resolver
from cachegate.application.app import create_app
from cachegate.core.config.settings import Settings
from cachegate.infrastructure.cache.connection_manager import ConnectionManager
from tests.test_fixtures import FakeRedis


@pytest.fixture
def calls():
    """Per-endpoint handler invocation counters."""
    return {"list": 0, "create": 0, "missing": 0, "text": 0}


@pytest.fixture
def items_router(calls):
    """A small resource API used to exercise caching and invalidation."""
    router = APIRouter()

    @router.get("/items")
    async def list_items(user_id: UserIdDep, page: int = 1):
        calls["list"] += 1
        return {"owner": user_id, "page": page, "items": ["a", "b"], "call": calls["list"]}

    @router.post("/items")
    async def create_item(fail: bool = False):
        calls["create"] += 1
        if fail:
            raise HTTPException(status_code=400, detail="invalid item")
        return {"created": True}

    @router.get("/missing")
    async def missing():
        calls["missing"] += 1
        raise HTTPException(status_code=404, detail="not found")

    @router.get("/text")
    async def text():
        calls["text"] += 1
        return PlainTextResponse("plain")

    return router


@pytest.fixture
def build_app(test_settings, connection, items_router):
    """
    Create the application around the fake Redis with the items router mounted.

    Identity comes from the X-User-ID header, as it would behind a gateway that
    authenticates the caller and sets the header itself.
    """

    def _build(settings: Settings | None = None, connection_manager=None, **kwargs):
        options = {
            "routers": [items_router],
            "cached_paths": ["/api/items", "/api/missing", "/api/text"],
            "invalidations": {"/api/items": ["/api/items*"]},
            "identity_resolver": header_identity_resolver,
            **kwargs,
        }
        return create_app(
            settings=settings or test_settings,
            connection=connection_manager or connection,
            **options,
        )

    return _build


@pytest.fixture
def offline_connection():
    """A connection whose store is down and never retried."""
    settings = Settings(ENVIRONMENT="test", REDIS_RECONNECT_ON_STARTUP_FAILURE=False)
    fake = FakeRedis(fail=True)
    return ConnectionManager(settings, client_factory=lambda s: fake)
