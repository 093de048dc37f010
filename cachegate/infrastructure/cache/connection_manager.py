"""
Redis Connection Lifecycle Management

Architecture:
    ConnectionManager
        ├── connect()      bounded initial connect, never fails startup
        ├── report_failure() ready -> reconnecting on I/O errors
        ├── _reconnect_loop() capped incremental backoff (tenacity)
        └── ping() / close()

State machine:
    disconnected -> connecting -> ready
    ready -> reconnecting -> ready | disabled
    connecting -> disabled when the client cannot be built (bad REDIS_URL)
    disabled is terminal until the process restarts

Every higher-level operation checks is_ready() before issuing a command, so a
dead connection never blocks a request.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from cachegate.core.config.constants import ConnectionState, Stage
from cachegate.core.config.settings import Settings, get_settings
from cachegate.core.exceptions import ConfigurationError
from cachegate.core.logging import get_logger

logger = get_logger(__name__)

# Errors that mean "the store is unreachable", as opposed to a bad command.
CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    OSError,
    asyncio.TimeoutError,
)

ClientFactory = Callable[[Settings], redis.Redis]
Sleep = Callable[[float], Awaitable[None]]


def default_client_factory(settings: Settings) -> redis.Redis:
    """Build a redis.asyncio client from the configured URL."""
    redis_settings = settings.redis
    return redis.from_url(
        redis_settings.REDIS_URL,
        socket_connect_timeout=redis_settings.REDIS_CONNECT_TIMEOUT,
        socket_timeout=redis_settings.REDIS_SOCKET_TIMEOUT,
        decode_responses=True,
    )


# =============================================================================
# LAYER 1: CONNECTION MANAGEMENT
# Handles connection lifecycle, readiness and reconnection
# =============================================================================


class ConnectionManager:
    """
    Owns the Redis connection and its readiness state.

    Responsibility: connect, reconnect with backoff, expose readiness.

    Constructed once per application and passed to every dependent, so tests
    substitute a double through ``client_factory`` and record backoff delays
    through ``sleep``.

    Reconnection:
    - delay after failed attempt n = min(n * step, max_delay)
    - gives up after REDIS_RECONNECT_MAX_ATTEMPTS and stays disabled
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client_factory: ClientFactory | None = None,
        sleep: Sleep | None = None,
    ):
        self._settings = settings or get_settings()
        self._redis_settings = self._settings.redis
        self._client_factory = client_factory or default_client_factory
        self._sleep = sleep or asyncio.sleep
        self._client: redis.Redis | None = None
        self._state = ConnectionState.DISCONNECTED
        self._reconnect_task: asyncio.Task | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_ready(self) -> bool:
        """True only when commands may be issued."""
        return self._state == ConnectionState.READY and self._client is not None

    def get_client(self) -> redis.Redis | None:
        """Get the Redis client instance (None unless connected)."""
        return self._client

    def _set_state(self, state: ConnectionState, **context) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        log = logger.warning if state in (
            ConnectionState.RECONNECTING, ConnectionState.DISABLED
        ) else logger.info
        log(
            "Redis connection state changed",
            stage=Stage.CONNECTION,
            previous=previous.value,
            state=state.value,
            **context,
        )

    async def connect(self) -> bool:
        """
        Establish the connection with a bounded connect timeout.

        STAGE-C.1: Connection establishment

        A failure is logged and leaves the manager not ready; it never raises.
        When REDIS_RECONNECT_ON_STARTUP_FAILURE is set the reconnect loop is
        started in the background.

        Returns:
            True if the connection is ready
        """
        if self.is_ready():
            return True
        if self._state == ConnectionState.DISABLED:
            return False

        self._set_state(ConnectionState.CONNECTING, url=self._redis_settings.REDIS_URL)
        try:
            await self._open()
        except CONNECTION_ERRORS as e:
            logger.error(
                "Failed to connect to Redis, continuing without cache",
                stage=Stage.CONNECTION,
                url=self._redis_settings.REDIS_URL,
                error=str(e) or e.__class__.__name__,
            )
            self._set_state(ConnectionState.DISCONNECTED)
            if self._redis_settings.REDIS_RECONNECT_ON_STARTUP_FAILURE:
                self._schedule_reconnect()
            return False
        except ConfigurationError as e:
            self._disable_for_configuration(e)
            return False
        return True

    async def _open(self) -> None:
        try:
            client = self._client_factory(self._settings)
        except ValueError as e:
            raise ConfigurationError.from_exception(
                e,
                message=f"Invalid Redis configuration: {e}",
                url=self._redis_settings.REDIS_URL,
            ).with_suggestion("Use a redis://, rediss:// or unix:// REDIS_URL")
        try:
            await asyncio.wait_for(
                client.ping(), timeout=self._redis_settings.REDIS_CONNECT_TIMEOUT
            )
        except BaseException:
            await self._close_client(client)
            raise
        self._client = client
        self._set_state(ConnectionState.READY)

    def report_failure(self, error: BaseException) -> None:
        """
        Mark a ready connection as failed and start reconnecting.

        STAGE-C.2: Failure detection

        Called by the cache client when a command fails with a
        connection-class error. Ignored unless currently ready.
        """
        if self._state != ConnectionState.READY:
            return
        self._set_state(ConnectionState.RECONNECTING, error=str(error) or error.__class__.__name__)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        """
        STAGE-C.3: Reconnection with capped incremental backoff
        """
        self._set_state(ConnectionState.RECONNECTING)
        stale, self._client = self._client, None
        if stale is not None:
            await self._close_client(stale)

        step = self._redis_settings.REDIS_RECONNECT_STEP
        max_attempts = self._redis_settings.REDIS_RECONNECT_MAX_ATTEMPTS
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_incrementing(
                start=step, increment=step, max=self._redis_settings.REDIS_RECONNECT_MAX_DELAY
            ),
            retry=retry_if_exception_type(CONNECTION_ERRORS),
            sleep=self._sleep,
            before_sleep=lambda retry_state: logger.info(
                "Redis reconnect attempt failed",
                stage=Stage.CONNECTION,
                attempt=retry_state.attempt_number,
                delay=round(retry_state.next_action.sleep, 3),
            ),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._open()
        except RetryError:
            self._set_state(ConnectionState.DISABLED, attempts=max_attempts)
            logger.error(
                "Redis reconnection abandoned, cache disabled until restart",
                stage=Stage.CONNECTION,
                attempts=max_attempts,
            )
        except ConfigurationError as e:
            self._disable_for_configuration(e)

    def _disable_for_configuration(self, error: ConfigurationError) -> None:
        """A client that cannot be built will not recover by retrying."""
        logger.error(
            "Redis client configuration is invalid, cache disabled until restart",
            stage=Stage.CONNECTION,
            error=error.message,
            **error.details,
        )
        self._set_state(ConnectionState.DISABLED)

    async def wait_reconnected(self) -> None:
        """Await the running reconnect loop, if any."""
        if self._reconnect_task is not None:
            await self._reconnect_task

    async def ping(self) -> dict[str, Any]:
        """
        Check Redis health and measure round-trip latency.

        Returns:
            {"ok", "connected", "reply", "latency_ms"} when healthy;
            {"ok": False, "connected": False, ...} otherwise
        """
        if not self.is_ready():
            return {"ok": False, "connected": False, "state": self._state.value}

        start = time.perf_counter()
        try:
            reply = await self._client.ping()
        except CONNECTION_ERRORS as e:
            logger.warning("Redis ping failed", stage=Stage.CONNECTION, error=str(e))
            self.report_failure(e)
            return {"ok": False, "connected": False, "error": str(e) or e.__class__.__name__}

        return {
            "ok": True,
            "connected": True,
            "reply": "PONG" if reply is True else str(reply),
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
        }

    async def close(self) -> None:
        """
        Stop reconnecting and release the client.

        STAGE-C.4: Connection cleanup
        """
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        self._reconnect_task = None

        client, self._client = self._client, None
        if client is not None:
            await self._close_client(client)
        self._set_state(ConnectionState.DISCONNECTED)

    @staticmethod
    async def _close_client(client: redis.Redis) -> None:
        try:
            await client.aclose()
        except CONNECTION_ERRORS as e:
            logger.debug("Error closing Redis client", stage=Stage.CONNECTION, error=str(e))
