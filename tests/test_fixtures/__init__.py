"""
Test Fixtures Package

Shared test utilities and helpers for consistent testing across all modules.
"""

from .cache_factory import CacheTestFactory, FakeClock, FakeRedis, glob_to_regex

__all__ = ["CacheTestFactory", "FakeClock", "FakeRedis", "glob_to_regex"]
