"""
Session Store

Opaque-token sessions kept in Redis, plus a per-user session index and
single-use temporary tokens.

Keys:
    session:{id}           full session record (JSON), TTL = session TTL
    user_sessions:{user}   hash: session id -> {created_at, device, ip}
    temp:{key}             one-time payload, removed by the first read

Architectural Decision: Touch preserves TTL
- get_session() updates last_accessed_at with SET KEEPTTL XX, so reading a
  session never extends or clears its expiry.

Architectural Decision: Single-field index removal
- delete_session() removes its index entry with HDEL instead of rewriting
  the whole index.

Known limitation: the index and the session records are written with
separate commands, so concurrent create/delete for one user can leave a
stale index entry until the index TTL expires.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from cachegate.core.config.constants import (
    REDIS_KEY_SESSION,
    REDIS_KEY_TEMP,
    REDIS_KEY_USER_SESSIONS,
    UNKNOWN_IDENTITY,
    Stage,
)
from cachegate.core.config.settings import Settings, get_settings
from cachegate.core.logging import get_logger
from cachegate.infrastructure.cache.cache_client import KeyValueCacheClient

logger = get_logger(__name__)


def generate_session_id() -> str:
    """64 hex characters from 32 cryptographically random bytes."""
    return secrets.token_hex(32)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def session_key(session_id: str) -> str:
    return f"{REDIS_KEY_SESSION}:{session_id}"


def user_sessions_key(user_id: str) -> str:
    return f"{REDIS_KEY_USER_SESSIONS}:{user_id}"


def temp_key(key: str) -> str:
    return f"{REDIS_KEY_TEMP}:{key}"


class SessionStore:
    """
    Session issuance, lookup and revocation.

    Every method returns None / False / [] when Redis is unavailable.

    Usage:
        store = SessionStore(cache, settings)
        session = await store.create_session(user_id, {"device": "iPhone", "ip": ip})
        ...
        session = await store.validate_session(session["id"])
    """

    def __init__(self, cache: KeyValueCacheClient, settings: Settings | None = None):
        self._cache = cache
        session_settings = (settings or get_settings()).session
        self._session_ttl = session_settings.SESSION_TTL
        self._temp_ttl = session_settings.TEMP_DATA_TTL

    @property
    def session_ttl(self) -> int:
        return self._session_ttl

    async def create_session(
        self,
        user_id: str,
        data: dict[str, Any] | None = None,
        ttl: int | None = None,
    ) -> dict[str, Any] | None:
        """
        Issue a new session.

        STAGE-3.1: Session creation

        The record holds id, user_id, created_at, last_accessed_at,
        expires_at and every caller-supplied field. A caller-supplied
        expires_at wins over the computed one.

        Returns:
            The session record, or None if it could not be stored
        """
        if not self._cache.is_ready():
            return None

        data = dict(data or {})
        ttl = self._session_ttl if ttl is None else ttl
        session_id = generate_session_id()
        now = _utcnow()

        session = {
            "id": session_id,
            "user_id": user_id,
            "created_at": now.isoformat(),
            "last_accessed_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=ttl)).isoformat(),
            **data,
        }

        if not await self._cache.set(session_key(session_id), session, ttl):
            return None

        await self._cache.hash_set_field(
            user_sessions_key(user_id),
            session_id,
            {
                "created_at": session["created_at"],
                "device": data.get("device") or UNKNOWN_IDENTITY,
                "ip": data.get("ip") or UNKNOWN_IDENTITY,
            },
            ttl,
        )

        logger.info("Session created", stage=Stage.SESSION, user_id=user_id, ttl=ttl)
        return session

    async def get_session(self, session_id: str) -> dict[str, Any] | None:
        """
        Read a session and refresh last_accessed_at.

        STAGE-3.2: Session touch

        The write uses KEEPTTL + XX: the remaining TTL is kept and a record
        that expired in the meantime is not resurrected without an expiry.
        """
        key = session_key(session_id)
        session = await self._cache.get(key)
        if not isinstance(session, dict):
            return None

        session["last_accessed_at"] = _utcnow().isoformat()
        await self._cache.set(key, session, keep_ttl=True, only_if_exists=True)
        return session

    async def delete_session(self, session_id: str, user_id: str | None = None) -> bool:
        """
        Revoke one session and drop it from the owner's index.

        STAGE-3.3: Session deletion
        """
        if not self._cache.is_ready():
            return False

        key = session_key(session_id)
        if user_id is None:
            session = await self._cache.get(key)
            if isinstance(session, dict):
                user_id = session.get("user_id")

        deleted = await self._cache.delete(key)

        if user_id is not None:
            await self._cache.hash_delete_field(user_sessions_key(user_id), session_id)

        logger.info("Session deleted", stage=Stage.SESSION, user_id=user_id)
        return deleted

    async def get_user_sessions(self, user_id: str) -> list[dict[str, Any]]:
        """List the owner's index as [{"session_id", "created_at", "device", "ip"}, ...]."""
        index = await self._cache.hash_get_all(user_sessions_key(user_id))
        return [
            {"session_id": session_id, **(meta if isinstance(meta, dict) else {})}
            for session_id, meta in index.items()
        ]

    async def delete_all_user_sessions(self, user_id: str) -> bool:
        """
        Log a user out everywhere.

        STAGE-3.4: Bulk session revocation
        """
        if not self._cache.is_ready():
            return False

        sessions = await self.get_user_sessions(user_id)
        for entry in sessions:
            await self._cache.delete(session_key(entry["session_id"]))

        deleted = await self._cache.delete(user_sessions_key(user_id))
        logger.info(
            "All user sessions deleted",
            stage=Stage.SESSION,
            user_id=user_id,
            sessions=len(sessions),
        )
        return deleted

    async def validate_session(self, session_id: str) -> dict[str, Any] | None:
        """
        Return the session if it exists and its expires_at has not passed.

        An expired record is deleted (with its index entry) and None returned.
        """
        session = await self.get_session(session_id)
        if session is None:
            return None

        expires_at = _parse_timestamp(session.get("expires_at"))
        if expires_at is not None and expires_at < _utcnow():
            await self.delete_session(session_id, session.get("user_id"))
            logger.info("Expired session removed", stage=Stage.SESSION)
            return None

        return session

    async def store_temporary_data(self, key: str, data: Any, ttl: int | None = None) -> bool:
        """Store a single-use payload (e.g. a password reset token)."""
        return await self._cache.set(temp_key(key), data, self._temp_ttl if ttl is None else ttl)

    async def get_and_delete_temporary_data(self, key: str) -> Any | None:
        """Read a single-use payload. A second call returns None."""
        return await self._cache.get_and_delete(temp_key(key))
