"""
Cache and Rate-Limit Key Strategies

A KeyStrategy turns a request (plus the caller's identity) into the Redis key
used by the response cache or the rate limiter.

KEY LAYOUT:
-----------
    cache:{identity or "anonymous"}:{path?query}   response cache
    ratelimit:{identity}:{path}                    rate limiter

IDENTITY:
---------
The authenticated-identity resolver is an external collaborator. It is
expected to put the user id on ``request.state.user_id``, which is the only
source the default resolver reads. ``header_identity_resolver`` also accepts
the X-User-ID header and is meant only for deployments behind a gateway that
strips the header from client traffic and sets it itself.
For rate limiting an anonymous caller is identified by client address.

The identity is percent-encoded before it is embedded in a key, so it always
fills exactly one ``:``-separated segment.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

from fastapi import Request

from cachegate.core.config.constants import (
    ANONYMOUS_IDENTITY,
    HEADER_FORWARDED_FOR,
    HEADER_USER_ID,
    REDIS_KEY_RATE_LIMIT,
    REDIS_KEY_RESPONSE_CACHE,
    UNKNOWN_IDENTITY,
)
from cachegate.infrastructure.cache.codec import encode_key_segment

IdentityResolver = Callable[[Request], str | None]


def default_identity_resolver(request: Request) -> str | None:
    """User id set on request.state by the authentication layer."""
    user_id = getattr(request.state, "user_id", None)
    return str(user_id) if user_id else None


def header_identity_resolver(request: Request) -> str | None:
    """request.state user id, else the gateway-supplied X-User-ID header."""
    return default_identity_resolver(request) or request.headers.get(HEADER_USER_ID) or None


def client_address(request: Request) -> str:
    """
    Best-effort client address.

    Priority: socket peer address > first X-Forwarded-For hop > "unknown"
    """
    if request.client and request.client.host:
        return request.client.host
    forwarded = request.headers.get(HEADER_FORWARDED_FOR)
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return UNKNOWN_IDENTITY


def request_target(request: Request) -> str:
    """Full request path including the query string."""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


class KeyStrategy(ABC):
    """Builds the storage key for one request."""

    @abstractmethod
    def build(self, request: Request, identity: str | None) -> str:
        ...


class UserRouteKeyStrategy(KeyStrategy):
    """
    Response cache key: ``cache:{identity}:{path?query}``.

    With user_scoped=False every caller shares the "anonymous" namespace.
    """

    def __init__(self, prefix: str = REDIS_KEY_RESPONSE_CACHE, user_scoped: bool = True):
        self.prefix = prefix
        self.user_scoped = user_scoped

    def build(self, request: Request, identity: str | None) -> str:
        owner = identity if (self.user_scoped and identity) else ANONYMOUS_IDENTITY
        return f"{self.prefix}:{encode_key_segment(owner)}:{request_target(request)}"


class RateLimitKeyStrategy(KeyStrategy):
    """
    Rate limit key: ``ratelimit:{identity}:{path}``.

    Anonymous callers fall back to their client address.
    """

    def __init__(self, prefix: str = REDIS_KEY_RATE_LIMIT):
        self.prefix = prefix

    def build(self, request: Request, identity: str | None) -> str:
        owner = identity or client_address(request)
        return f"{self.prefix}:{encode_key_segment(owner)}:{request.url.path}"


class CallableKeyStrategy(KeyStrategy):
    """Adapts a plain ``(request, identity) -> key`` function."""

    def __init__(self, func: Callable[[Request, str | None], str]):
        self._func = func

    def build(self, request: Request, identity: str | None) -> str:
        return self._func(request, identity)
