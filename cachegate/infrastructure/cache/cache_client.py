"""
Fail-Safe Key-Value Cache Client

Architecture:
    KeyValueCacheClient (Public API, never raises)
        └── CommandExecutor (Raw commands, raises CacheError subclasses)
              └── ConnectionManager (readiness + redis.asyncio client)

Contract:
- Every operation checks ConnectionManager.is_ready() first and returns a
  safe default without touching the network when it is not ready.
- Any command or serialization failure is logged and converted into the
  same safe default. Connection-class failures also notify the manager.
- No operation-level retries; only the ConnectionManager reconnects.

Safe defaults:
    get / hash_get_field / get_and_delete / increment -> None
    set / delete / hash_set_field / hash_delete_field / exists / expire / flush_all -> False
    delete_by_pattern -> 0, hash_get_all -> {}, ttl -> -1
"""

from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

import redis.asyncio as redis
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from cachegate.core.config.constants import Stage
from cachegate.core.exceptions import (
    CacheCommandError,
    CacheConnectionError,
    CacheError,
)
from cachegate.core.logging import get_logger
from cachegate.infrastructure.cache.codec import decode_value, encode_value
from cachegate.infrastructure.cache.connection_manager import ConnectionManager

logger = get_logger(__name__)

T = TypeVar("T")

DELETE_BATCH_SIZE = 500
SCAN_COUNT = 100


@contextmanager
def _translate_errors(command: str, **context) -> Iterator[None]:
    try:
        yield
    except (ConnectionError, TimeoutError, OSError) as e:
        raise CacheConnectionError.from_exception(
            e, message=f"Redis {command.upper()} failed: {e}", command=command, **context
        )
    except RedisError as e:
        raise CacheCommandError.from_exception(
            e, message=f"Redis {command.upper()} failed: {e}", command=command, **context
        )


# =============================================================================
# LAYER 2: COMMAND EXECUTION
# Raw Redis commands with consistent error translation
# =============================================================================


class CommandExecutor:
    """
    Executes Redis commands against the live client.

    Responsibility: Issue commands and translate redis-py errors.
    - connection, timeout and socket errors -> CacheConnectionError
    - any other RedisError -> CacheCommandError
    """

    def __init__(self, connection: ConnectionManager):
        self._connection = connection

    @property
    def _redis(self) -> redis.Redis:
        client = self._connection.get_client()
        if client is None:
            raise CacheConnectionError("Redis client is not connected")
        return client

    async def get(self, key: str) -> str | None:
        with _translate_errors("get", key=key):
            return await self._redis.get(key)

    async def set(
        self, key: str, value: str, ttl: int | None, keep_ttl: bool = False, xx: bool = False
    ) -> bool:
        with _translate_errors("set", key=key):
            if keep_ttl:
                result = await self._redis.set(key, value, keepttl=True, xx=xx)
            else:
                result = await self._redis.set(key, value, ex=ttl, xx=xx)
            return bool(result)

    async def get_and_delete(self, key: str) -> str | None:
        with _translate_errors("getdel", key=key):
            return await self._redis.getdel(key)

    async def delete(self, *keys: str) -> int:
        with _translate_errors("delete", keys=keys):
            return await self._redis.delete(*keys)

    async def scan_keys(self, pattern: str) -> list[str]:
        with _translate_errors("scan", pattern=pattern):
            return [key async for key in self._redis.scan_iter(match=pattern, count=SCAN_COUNT)]

    async def hset(self, key: str, field: str, value: str) -> int:
        with _translate_errors("hset", key=key, field=field):
            return await self._redis.hset(key, field, value)

    async def hget(self, key: str, field: str) -> str | None:
        with _translate_errors("hget", key=key, field=field):
            return await self._redis.hget(key, field)

    async def hgetall(self, key: str) -> dict[str, str]:
        with _translate_errors("hgetall", key=key):
            return await self._redis.hgetall(key)

    async def hdel(self, key: str, *fields: str) -> int:
        with _translate_errors("hdel", key=key, fields=fields):
            return await self._redis.hdel(key, *fields)

    async def incr(self, key: str) -> int:
        with _translate_errors("incr", key=key):
            return await self._redis.incr(key)

    async def exists(self, key: str) -> int:
        with _translate_errors("exists", key=key):
            return await self._redis.exists(key)

    async def expire(self, key: str, ttl: int) -> bool:
        with _translate_errors("expire", key=key):
            return bool(await self._redis.expire(key, ttl))

    async def ttl(self, key: str) -> int:
        with _translate_errors("ttl", key=key):
            return await self._redis.ttl(key)

    async def flushdb(self) -> bool:
        with _translate_errors("flushdb"):
            return bool(await self._redis.flushdb())


# =============================================================================
# LAYER 3: PUBLIC API
# Readiness gate, serialization and safe defaults
# =============================================================================


class KeyValueCacheClient:
    """
    Typed, fail-safe operations over the managed Redis connection.

    Usage:
        connection = ConnectionManager(settings)
        await connection.connect()
        cache = KeyValueCacheClient(connection, default_ttl=3600)

        await cache.set("user:42:profile", {"name": "Ada"}, ttl=600)
        profile = await cache.get("user:42:profile")

    Every method returns its safe default instead of raising. A non-positive
    ttl is a caller error and raises ValueError.
    """

    def __init__(self, connection: ConnectionManager, default_ttl: int | None = None):
        self._connection = connection
        self._executor = CommandExecutor(connection)
        self._default_ttl = (
            connection.settings.cache.CACHE_DEFAULT_TTL if default_ttl is None else default_ttl
        )

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def default_ttl(self) -> int:
        return self._default_ttl

    def is_ready(self) -> bool:
        return self._connection.is_ready()

    def _resolve_ttl(self, ttl: int | None) -> int:
        if ttl is None:
            return self._default_ttl
        if ttl <= 0:
            raise ValueError(f"ttl must be a positive number of seconds, got {ttl}")
        return ttl

    async def _run(
        self,
        command: str,
        default: T,
        operation: Callable[[], Awaitable[T]],
        **context,
    ) -> T:
        if not self._connection.is_ready():
            return default
        try:
            return await operation()
        except CacheConnectionError as e:
            logger.warning(
                "Redis unavailable, returning default",
                stage=Stage.COMMAND,
                command=command,
                error=e.message,
                **context,
            )
            self._connection.report_failure(e)
            return default
        except CacheError as e:
            logger.error(
                "Redis command failed, returning default",
                stage=Stage.COMMAND,
                command=command,
                error_type=e.__class__.__name__,
                error=e.message,
                **context,
            )
            return default

    # -------------------------------------------------------------------------
    # Plain values
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        async def _get():
            return decode_value(await self._executor.get(key), key=key)

        return await self._run("get", None, _get, key=key)

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
        keep_ttl: bool = False,
        only_if_exists: bool = False,
    ) -> bool:
        """
        Store a value with a TTL (defaults to CACHE_DEFAULT_TTL).

        Args:
            keep_ttl: Preserve the key's remaining expiry (KEEPTTL); ttl is ignored
            only_if_exists: Write only if the key still exists (XX). Combined
                with keep_ttl this updates a value without ever creating a
                key that has no expiry.

        Returns:
            True if the value was written
        """
        ttl = self._resolve_ttl(ttl)

        async def _set():
            payload = encode_value(value, key=key)
            return await self._executor.set(
                key, payload, ttl, keep_ttl=keep_ttl, xx=only_if_exists
            )

        return await self._run("set", False, _set, key=key)

    async def get_and_delete(self, key: str) -> Any | None:
        """Atomically read and remove a value (GETDEL)."""
        async def _getdel():
            return decode_value(await self._executor.get_and_delete(key), key=key)

        return await self._run("getdel", None, _getdel, key=key)

    async def delete(self, key: str) -> bool:
        async def _delete():
            await self._executor.delete(key)
            return True

        return await self._run("delete", False, _delete, key=key)

    async def delete_by_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern.

        Keys are enumerated with SCAN and then removed in batches. This is not
        atomic: keys written between enumeration and deletion may survive.

        Returns:
            Number of keys removed
        """
        async def _delete_pattern():
            keys = await self._executor.scan_keys(pattern)
            removed = 0
            for i in range(0, len(keys), DELETE_BATCH_SIZE):
                removed += await self._executor.delete(*keys[i:i + DELETE_BATCH_SIZE])
            return removed

        return await self._run("delete_by_pattern", 0, _delete_pattern, pattern=pattern)

    # -------------------------------------------------------------------------
    # Hashes
    # -------------------------------------------------------------------------

    async def hash_set_field(
        self, key: str, field: str, value: Any, ttl: int | None = None
    ) -> bool:
        """Set one hash field and (re)apply the hash TTL."""
        ttl = self._resolve_ttl(ttl)

        async def _hset():
            await self._executor.hset(key, field, encode_value(value, key=key))
            await self._executor.expire(key, ttl)
            return True

        return await self._run("hset", False, _hset, key=key, field=field)

    async def hash_get_field(self, key: str, field: str) -> Any | None:
        async def _hget():
            return decode_value(await self._executor.hget(key, field), key=key)

        return await self._run("hget", None, _hget, key=key, field=field)

    async def hash_get_all(self, key: str) -> dict[str, Any]:
        async def _hgetall():
            raw = await self._executor.hgetall(key)
            return {field: decode_value(value, key=key) for field, value in raw.items()}

        return await self._run("hgetall", {}, _hgetall, key=key)

    async def hash_delete_field(self, key: str, *fields: str) -> bool:
        """Remove fields from a hash. True if at least one was removed."""
        async def _hdel():
            return await self._executor.hdel(key, *fields) > 0

        return await self._run("hdel", False, _hdel, key=key)

    # -------------------------------------------------------------------------
    # Counters and expiry
    # -------------------------------------------------------------------------

    async def increment(self, key: str, ttl: int | None = None) -> int | None:
        """INCR a counter; when ttl is given the expiry is refreshed."""
        async def _incr():
            value = await self._executor.incr(key)
            if ttl:
                await self._executor.expire(key, ttl)
            return value

        return await self._run("incr", None, _incr, key=key)

    async def exists(self, key: str) -> bool:
        async def _exists():
            return await self._executor.exists(key) == 1

        return await self._run("exists", False, _exists, key=key)

    async def expire(self, key: str, ttl: int) -> bool:
        async def _expire():
            return await self._executor.expire(key, ttl)

        return await self._run("expire", False, _expire, key=key)

    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds; -2 if the key is missing, -1 on no expiry or unavailable."""
        async def _ttl():
            return await self._executor.ttl(key)

        return await self._run("ttl", -1, _ttl, key=key)

    async def flush_all(self) -> bool:
        """Remove every key in the current database (FLUSHDB)."""
        async def _flush():
            await self._executor.flushdb()
            logger.warning("Redis database flushed", stage=Stage.COMMAND)
            return True

        return await self._run("flushdb", False, _flush)
