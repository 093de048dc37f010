"""
Integration tests.

These run against a real Redis server and are skipped unless USE_REAL_REDIS
is set (REDIS_URL selects the server):

    USE_REAL_REDIS=1 REDIS_URL=redis://localhost:6379/15 pytest -m integration
"""
