#!/usr/bin/env python3
"""
FastAPI Application Entry Point

Wires the caching, admission-control and session layer into a FastAPI app:
one ConnectionManager, one KeyValueCacheClient, the session store, the history
cache, usage stats and the middleware policies, all created once and shared
through ``app.state``.

Request pipeline (outermost first):
    RequestContext -> CORS -> RateLimit -> CacheInvalidation -> ResponseCache -> route

Redis being unreachable never fails startup: the app serves requests with
caching disabled and the rate limiter on its in-process fallback until the
connection manager reconnects.
"""

from collections.abc import Iterable, Mapping, Sequence
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cachegate.application.api.middleware.key_strategy import (
    IdentityResolver,
    default_identity_resolver,
)
from cachegate.application.api.middleware.rate_limiter import (
    RateLimitMiddleware,
    RateLimitPolicy,
    api_rate_limit_policy,
    strict_rate_limit_policy,
    upload_rate_limit_policy,
)
from cachegate.application.api.middleware.request_context import RequestContextMiddleware
from cachegate.application.api.middleware.response_cache import (
    CacheInvalidationMiddleware,
    CacheInvalidationPolicy,
    InvalidationPattern,
    ResponseCacheMiddleware,
    ResponseCachePolicy,
)
from cachegate.application.api.routes.health import router as health_router
from cachegate.core.config.constants import HEADER_REQUEST_ID, Stage
from cachegate.core.config.settings import Settings, get_settings
from cachegate.core.exceptions import CacheGateError, RateLimitExceededError
from cachegate.core.logging import get_logger, setup_logging
from cachegate.core.observability.usage_stats import UsageStatsTracker
from cachegate.infrastructure.cache.cache_client import KeyValueCacheClient
from cachegate.infrastructure.cache.connection_manager import ConnectionManager
from cachegate.infrastructure.cache.scoped_cache import HistoryCacheManager
from cachegate.infrastructure.session.session_store import SessionStore

logger = get_logger(__name__)


# ============================================================================
# Application Lifespan
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle (startup and shutdown).
    """
    settings: Settings = app.state.settings

    setup_logging(log_level=settings.logging.LOG_LEVEL, log_format=settings.logging.LOG_FORMAT)

    logger.info(
        "Starting CacheGate",
        stage=Stage.INITIALIZATION,
        environment=settings.app.ENVIRONMENT,
        version=settings.app.APP_VERSION,
    )

    try:
        connected = await app.state.connection.connect()
        logger.info(
            "Application startup complete",
            stage=Stage.INITIALIZATION,
            redis="connected" if connected else "disconnected",
        )

        yield

    finally:
        logger.info("Shutting down application", stage=Stage.CLEANUP)

        for policy in app.state.rate_limit_policies:
            await policy.close()
        await app.state.connection.close()

        logger.info("Application shutdown complete", stage=Stage.CLEANUP)


# ============================================================================
# Exception Handlers
# ============================================================================


async def cachegate_exception_handler(request: Request, exc: CacheGateError) -> JSONResponse:
    """Render escaped CacheGate errors as JSON."""
    status_code = 429 if isinstance(exc, RateLimitExceededError) else 500
    logger.error(
        f"CacheGate exception: {exc.message}",
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(status_code=status_code, content={"success": False, **exc.to_dict()})


# ============================================================================
# Application Factory
# ============================================================================


def create_app(
    settings: Settings | None = None,
    connection: ConnectionManager | None = None,
    routers: Iterable[APIRouter] = (),
    cached_paths: Sequence[str] = (),
    invalidations: Mapping[str, Sequence[InvalidationPattern]] | None = None,
    strict_paths: Sequence[str] = (),
    upload_paths: Sequence[str] = (),
    identity_resolver: IdentityResolver | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Configuration (defaults to the process settings)
        connection: Pre-built connection manager (tests inject one around a fake)
        routers: Extra routers mounted under API_BASE_PATH
        cached_paths: Path prefixes whose GET responses are cached
        invalidations: Path prefix -> patterns dropped after successful mutations
        strict_paths: Path prefixes under the strict (5 per 15 min) limiter
        upload_paths: Path prefixes under the upload limiter
        identity_resolver: Resolves the caller identity for keys and
            UserIdDep (default: request.state.user_id only)

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    connection = connection or ConnectionManager(settings)
    identity_resolver = identity_resolver or default_identity_resolver

    app = FastAPI(
        title=settings.app.APP_NAME,
        version=settings.app.APP_VERSION,
        description="Caching, rate limiting and session layer over Redis",
        lifespan=lifespan,
    )

    # Shared components
    usage_stats = UsageStatsTracker()
    cache = KeyValueCacheClient(connection, default_ttl=settings.cache.CACHE_DEFAULT_TTL)

    app.state.settings = settings
    app.state.connection = connection
    app.state.cache = cache
    app.state.usage_stats = usage_stats
    app.state.identity_resolver = identity_resolver
    app.state.session_store = SessionStore(cache, settings)
    app.state.history_cache = HistoryCacheManager(cache, settings, tracker=usage_stats)

    base_path = settings.app.API_BASE_PATH

    # ========================================================================
    # MIDDLEWARE REGISTRATION
    # ========================================================================
    # Starlette runs the last registered middleware first. Registration order
    # below yields: request context -> CORS -> rate limits -> invalidation ->
    # response cache -> route.

    app.add_middleware(
        ResponseCacheMiddleware,
        policy=ResponseCachePolicy(
            cache,
            ttl=settings.cache.CACHE_RESPONSE_TTL,
            identity_resolver=identity_resolver,
            tracker=usage_stats,
        ),
        paths=list(cached_paths),
    )

    for prefix, patterns in (invalidations or {}).items():
        app.add_middleware(
            CacheInvalidationMiddleware,
            policy=CacheInvalidationPolicy(
                cache, patterns, identity_resolver=identity_resolver, tracker=usage_stats
            ),
            paths=[prefix],
        )

    rate_limit_policies: list[RateLimitPolicy] = []
    for factory, paths in (
        (strict_rate_limit_policy, strict_paths),
        (upload_rate_limit_policy, upload_paths),
    ):
        if paths:
            policy = factory(cache, settings, identity_resolver=identity_resolver)
            rate_limit_policies.append(policy)
            app.add_middleware(RateLimitMiddleware, policy=policy, paths=list(paths))

    api_policy = api_rate_limit_policy(cache, settings, identity_resolver=identity_resolver)
    rate_limit_policies.append(api_policy)
    app.add_middleware(RateLimitMiddleware, policy=api_policy, paths=[base_path or "/"])
    app.state.rate_limit_policies = rate_limit_policies

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[HEADER_REQUEST_ID],
    )

    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(CacheGateError, cachegate_exception_handler)

    # ========================================================================
    # ROUTER REGISTRATION
    # ========================================================================

    app.include_router(health_router, prefix=base_path)
    for router in routers:
        app.include_router(router, prefix=base_path)

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "name": settings.app.APP_NAME,
            "version": settings.app.APP_VERSION,
            "environment": settings.app.ENVIRONMENT,
            "health": f"{base_path}/health",
        }

    return app


# Create application instance
app = create_app()


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "cachegate.application.app:app",
        host=settings.app.API_HOST,
        port=settings.app.API_PORT,
        reload=settings.app.ENVIRONMENT == "development",
        log_level=settings.logging.LOG_LEVEL.lower(),
    )
