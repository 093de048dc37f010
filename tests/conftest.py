"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.

The Redis client is replaced by tests.test_fixtures.FakeRedis, injected
through ConnectionManager's client_factory, so no test needs a server.
"""

import os
import sys

import pytest

# Add project root to sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from cachegate.core.config.settings import Settings  # noqa: E402
from cachegate.core.observability.usage_stats import UsageStatsTracker  # noqa: E402
from cachegate.infrastructure.cache.cache_client import KeyValueCacheClient  # noqa: E402
from cachegate.infrastructure.cache.connection_manager import ConnectionManager  # noqa: E402
from tests.test_fixtures import FakeClock, FakeRedis  # noqa: E402


# ============================================================================
# Pytest Configuration
# ============================================================================

# pytest-asyncio runs in auto mode (see pyproject.toml), so async tests and
# async fixtures need no marker.


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def test_settings():
    """
    Settings tuned for tests.

    Reconnect delays are zero so reconnect loops finish immediately.
    """
    return Settings(
        ENVIRONMENT="test",
        LOG_FORMAT="console",
        REDIS_URL="redis://fake:6379",
        REDIS_RECONNECT_STEP=0.0,
        REDIS_RECONNECT_MAX_DELAY=0.0,
        REDIS_RECONNECT_MAX_ATTEMPTS=3,
    )


# ============================================================================
# Redis Fixtures
# ============================================================================


@pytest.fixture
def fake_clock():
    """Clock shared by the fake Redis and in-process rate limit stores."""
    return FakeClock()


@pytest.fixture
def fake_redis(fake_clock):
    """Healthy in-memory Redis."""
    return FakeRedis(fake_clock)


@pytest.fixture
def connection(test_settings, fake_redis):
    """Connection manager wired to the fake Redis (not yet connected)."""
    return ConnectionManager(test_settings, client_factory=lambda settings: fake_redis)


@pytest.fixture
async def ready_connection(connection):
    """Connected manager; closed after the test."""
    await connection.connect()
    yield connection
    await connection.close()


@pytest.fixture
def cache(ready_connection):
    """Fail-safe cache client over a ready connection."""
    return KeyValueCacheClient(ready_connection)


@pytest.fixture
def offline_cache(test_settings, fake_redis):
    """Cache client whose connection was never established."""
    connection = ConnectionManager(test_settings, client_factory=lambda settings: fake_redis)
    return KeyValueCacheClient(connection)


@pytest.fixture
def tracker():
    """Fresh usage stats tracker (not the process-wide one)."""
    return UsageStatsTracker()
