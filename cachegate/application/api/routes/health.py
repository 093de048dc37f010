"""
Health and Cache Statistics Routes

Endpoints (all under API_BASE_PATH, default /api):
    GET  /health              application status, always 200
    GET  /redis/health        Redis ping with latency, 503 when unreachable
    GET  /cache/stats         hit/miss/invalidation counters
    POST /cache/stats/reset   log a final report and zero the counters

The application keeps serving when Redis is down, so /health reports the
connection state without failing. Load balancers that should drain an
instance without Redis can probe /redis/health instead.
"""

from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from cachegate.application.api.dependencies import ConnectionDep, SettingsDep, UsageStatsDep

router = APIRouter(tags=["Health"])


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# RESPONSE MODELS
# ============================================================================


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    environment: str
    redis: str  # "connected" | "disconnected"
    redis_state: str


class CacheStats(BaseModel):
    hits: int
    misses: int
    invalidations: int
    total_requests: int
    hit_rate: str


class CacheStatsResponse(BaseModel):
    status: str
    cache_stats: CacheStats
    timestamp: str


# ============================================================================
# HEALTH ENDPOINTS
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: SettingsDep, connection: ConnectionDep):
    """Quick health check; Redis being down does not make the app unhealthy."""
    return HealthResponse(
        status="ok",
        timestamp=_timestamp(),
        environment=settings.app.ENVIRONMENT,
        redis="connected" if connection.is_ready() else "disconnected",
        redis_state=connection.state.value,
    )


@router.get("/redis/health")
async def redis_health(connection: ConnectionDep):
    """
    Redis health with round-trip latency.

    HTTP Status Codes:
        200: PING answered
        503: Redis not ready or PING failed
    """
    result = await connection.ping()
    if not result["ok"]:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "timestamp": _timestamp(), **result},
        )
    return {"status": "healthy", "timestamp": _timestamp(), **result}


# ============================================================================
# CACHE STATISTICS
# ============================================================================


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(usage_stats: UsageStatsDep):
    return CacheStatsResponse(
        status="ok",
        cache_stats=CacheStats(**usage_stats.get_stats()),
        timestamp=_timestamp(),
    )


@router.post("/cache/stats/reset")
async def reset_cache_stats(usage_stats: UsageStatsDep):
    """Log the current counters as a performance report, then reset them."""
    usage_stats.log_report()
    usage_stats.reset()
    return {"status": "ok", "message": "Cache statistics reset", "timestamp": _timestamp()}
