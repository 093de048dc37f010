"""
FastAPI Dependency Providers

Route handlers receive the application's shared components through FastAPI's
dependency injection instead of module-level globals.

WHERE THE INSTANCES LIVE:
-------------------------
create_app() builds one instance of each component and stores it on
``app.state``. The providers below simply read them back, so a test can
build an app around a fake Redis and every route sees the same fake.

Example:
    @router.get("/history")
    async def list_history(history_cache: HistoryCacheDep, user_id: UserIdDep):
        page = await history_cache.get_cached_list(user_id, 1, 20)
        ...
"""

from typing import Annotated

from fastapi import Depends, Request

from cachegate.core.config.constants import ANONYMOUS_IDENTITY
from cachegate.core.config.settings import Settings
from cachegate.core.observability.usage_stats import UsageStatsTracker
from cachegate.infrastructure.cache.cache_client import KeyValueCacheClient
from cachegate.infrastructure.cache.connection_manager import ConnectionManager
from cachegate.infrastructure.cache.scoped_cache import HistoryCacheManager
from cachegate.infrastructure.session.session_store import SessionStore

# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_connection(request: Request) -> ConnectionManager:
    return request.app.state.connection


def get_cache_client(request: Request) -> KeyValueCacheClient:
    return request.app.state.cache


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_history_cache(request: Request) -> HistoryCacheManager:
    return request.app.state.history_cache


def get_usage_stats(request: Request) -> UsageStatsTracker:
    return request.app.state.usage_stats


def get_user_id(request: Request) -> str:
    """
    Resolve the caller's user id with the app's identity resolver, the same
    one the cache and rate-limit middleware use.

    Returns "anonymous" when no identity is attached to the request.
    """
    return request.app.state.identity_resolver(request) or ANONYMOUS_IDENTITY


# ============================================================================
# TYPE ALIASES FOR DEPENDENCY INJECTION
# ============================================================================

SettingsDep = Annotated[Settings, Depends(get_app_settings)]
ConnectionDep = Annotated[ConnectionManager, Depends(get_connection)]
CacheDep = Annotated[KeyValueCacheClient, Depends(get_cache_client)]
SessionStoreDep = Annotated[SessionStore, Depends(get_session_store)]
HistoryCacheDep = Annotated[HistoryCacheManager, Depends(get_history_cache)]
UsageStatsDep = Annotated[UsageStatsTracker, Depends(get_usage_stats)]
UserIdDep = Annotated[str, Depends(get_user_id)]
