"""
Cache Infrastructure

- **connection_manager.py**: Redis connection lifecycle and reconnection
- **cache_client.py**: Fail-safe key-value operations
- **codec.py**: JSON value serialization
- **scoped_cache.py**: Tiered per-user domain cache
"""

from cachegate.infrastructure.cache.cache_client import KeyValueCacheClient
from cachegate.infrastructure.cache.codec import (
    decode_value,
    encode_key_segment,
    encode_value,
    escape_pattern,
    segment_pattern,
)
from cachegate.infrastructure.cache.connection_manager import ConnectionManager
from cachegate.infrastructure.cache.scoped_cache import (
    HistoryCacheManager,
    ScopedCacheManager,
    ScopedCacheTTLs,
)

__all__ = [
    "ConnectionManager",
    "KeyValueCacheClient",
    "ScopedCacheManager",
    "ScopedCacheTTLs",
    "HistoryCacheManager",
    "decode_value",
    "encode_value",
    "escape_pattern",
    "encode_key_segment",
    "segment_pattern",
]
