"""
Scoped Domain Cache

Per-user cache for a paginated resource: list pages, single items, aggregate
stats and a count. The durable store stays the source of truth; everything
here is a derived view that callers invalidate after mutations.

Key scheme ({resource} defaults to "history", {user} percent-encoded):
    {resource}:{user}:list:{page}:{limit}   list page
    {resource}:{user}:item:{id}             single item
    {resource}:{user}:stats                 aggregate stats
    {resource}:{user}:count                 total count, stored as {"count": n}

Invalidation is tiered and explicit:
    invalidate_item   one item
    invalidate_list   every list page
    invalidate_stats  stats + count
    invalidate_user   everything under the user's namespace
List invalidation does NOT touch stats/count.
"""

from dataclasses import dataclass
from typing import Any

from cachegate.core.config.constants import REDIS_KEY_HISTORY, Stage
from cachegate.core.config.settings import Settings, get_settings
from cachegate.core.logging import get_logger
from cachegate.core.observability.usage_stats import UsageStatsTracker, get_usage_tracker
from cachegate.infrastructure.cache.cache_client import KeyValueCacheClient
from cachegate.infrastructure.cache.codec import encode_key_segment, segment_pattern

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScopedCacheTTLs:
    list_ttl: int = 60
    item_ttl: int = 300
    stats_ttl: int = 120
    count_ttl: int = 120

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScopedCacheTTLs":
        cache = settings.cache
        return cls(
            list_ttl=cache.HISTORY_LIST_TTL,
            item_ttl=cache.HISTORY_ITEM_TTL,
            stats_ttl=cache.HISTORY_STATS_TTL,
            count_ttl=cache.HISTORY_COUNT_TTL,
        )


class ScopedCacheManager:
    """Tiered per-user cache for one resource type."""

    def __init__(
        self,
        cache: KeyValueCacheClient,
        resource: str,
        ttls: ScopedCacheTTLs | None = None,
        tracker: UsageStatsTracker | None = None,
    ):
        self._cache = cache
        self._resource = resource
        self._ttls = ttls or ScopedCacheTTLs()
        self._tracker = tracker or get_usage_tracker()

    @property
    def resource(self) -> str:
        return self._resource

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    def list_key(self, user_id: str, page: int, limit: int) -> str:
        return f"{self._resource}:{encode_key_segment(user_id)}:list:{page}:{limit}"

    def item_key(self, user_id: str, item_id: str) -> str:
        return f"{self._resource}:{encode_key_segment(user_id)}:item:{item_id}"

    def stats_key(self, user_id: str) -> str:
        return f"{self._resource}:{encode_key_segment(user_id)}:stats"

    def count_key(self, user_id: str) -> str:
        return f"{self._resource}:{encode_key_segment(user_id)}:count"

    def user_pattern(self, user_id: str) -> str:
        return f"{self._resource}:{segment_pattern(user_id)}:*"

    def list_pattern(self, user_id: str) -> str:
        return f"{self._resource}:{segment_pattern(user_id)}:list:*"

    async def _read(self, key: str) -> Any | None:
        value = await self._cache.get(key)
        if value is None:
            self._tracker.record_miss(key)
        else:
            self._tracker.record_hit(key)
        return value

    # -------------------------------------------------------------------------
    # Write / read per tier
    # -------------------------------------------------------------------------

    async def cache_list(
        self, user_id: str, page: int, limit: int, data: Any, ttl: int | None = None
    ) -> bool:
        key = self.list_key(user_id, page, limit)
        return await self._cache.set(key, data, self._ttls.list_ttl if ttl is None else ttl)

    async def get_cached_list(self, user_id: str, page: int, limit: int) -> Any | None:
        return await self._read(self.list_key(user_id, page, limit))

    async def cache_item(
        self, user_id: str, item_id: str, data: Any, ttl: int | None = None
    ) -> bool:
        key = self.item_key(user_id, item_id)
        return await self._cache.set(key, data, self._ttls.item_ttl if ttl is None else ttl)

    async def get_cached_item(self, user_id: str, item_id: str) -> Any | None:
        return await self._read(self.item_key(user_id, item_id))

    async def cache_stats(self, user_id: str, data: Any, ttl: int | None = None) -> bool:
        ttl = self._ttls.stats_ttl if ttl is None else ttl
        return await self._cache.set(self.stats_key(user_id), data, ttl)

    async def get_cached_stats(self, user_id: str) -> Any | None:
        return await self._read(self.stats_key(user_id))

    async def cache_count(self, user_id: str, count: int, ttl: int | None = None) -> bool:
        return await self._cache.set(
            self.count_key(user_id), {"count": count}, self._ttls.count_ttl if ttl is None else ttl
        )

    async def get_cached_count(self, user_id: str) -> int | None:
        """Cached count, or None when absent. A cached 0 is returned as 0."""
        data = await self._read(self.count_key(user_id))
        if not isinstance(data, dict):
            return None
        return data.get("count")

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    async def invalidate_user(self, user_id: str) -> bool:
        """Drop every cached tier for one user. Call after create/delete."""
        if not self._cache.is_ready():
            return False
        pattern = self.user_pattern(user_id)
        removed = await self._cache.delete_by_pattern(pattern)
        self._tracker.record_invalidation(pattern, removed)
        logger.info(
            "Scoped cache invalidated for user",
            stage=Stage.CACHE_INVALIDATION,
            resource=self._resource,
            user_id=user_id,
            keys_removed=removed,
        )
        return True

    async def invalidate_item(self, user_id: str, item_id: str) -> bool:
        key = self.item_key(user_id, item_id)
        deleted = await self._cache.delete(key)
        if deleted:
            self._tracker.record_invalidation(key)
        return deleted

    async def invalidate_list(self, user_id: str) -> bool:
        """Drop every cached list page. Stats and count are left alone."""
        if not self._cache.is_ready():
            return False
        pattern = self.list_pattern(user_id)
        removed = await self._cache.delete_by_pattern(pattern)
        self._tracker.record_invalidation(pattern, removed)
        return True

    async def invalidate_stats(self, user_id: str) -> bool:
        """Drop stats and count together."""
        stats_deleted = await self._cache.delete(self.stats_key(user_id))
        count_deleted = await self._cache.delete(self.count_key(user_id))
        if stats_deleted or count_deleted:
            self._tracker.record_invalidation(self.stats_key(user_id), 2)
        return stats_deleted and count_deleted


class HistoryCacheManager(ScopedCacheManager):
    """
    Scoped cache for the user's extraction history.

    Usage:
        history_cache = HistoryCacheManager(cache, settings)
        page = await history_cache.get_cached_list(user_id, 1, 20)
        if page is None:
            page = await load_history_page(user_id, 1, 20)
            await history_cache.cache_list(user_id, 1, 20, page)
    """

    def __init__(
        self,
        cache: KeyValueCacheClient,
        settings: Settings | None = None,
        tracker: UsageStatsTracker | None = None,
    ):
        settings = settings or get_settings()
        super().__init__(
            cache,
            resource=REDIS_KEY_HISTORY,
            ttls=ScopedCacheTTLs.from_settings(settings),
            tracker=tracker,
        )
