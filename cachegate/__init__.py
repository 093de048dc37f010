"""
CacheGate: caching, admission-control and session-lifecycle layer over Redis.
"""

__version__ = "1.0.0"
