"""
Infrastructure Layer

Redis-backed building blocks: connection lifecycle, fail-safe key-value
client, scoped domain cache and session store.
"""
