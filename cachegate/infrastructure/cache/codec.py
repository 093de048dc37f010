"""
Cache Value Codec

Values are stored as JSON text so arbitrary structured data can be cached.
orjson handles datetimes, UUIDs and dataclasses natively; pydantic models and
sets are converted in the default hook.
"""

from typing import Any

import orjson

from cachegate.core.exceptions import CacheSerializationError


def _default(obj: Any) -> Any:
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if isinstance(obj, (set, frozenset)):
        return list(obj)
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def encode_value(value: Any, key: str | None = None) -> str:
    """Serialize a value for storage."""
    try:
        return orjson.dumps(value, default=_default).decode()
    except (TypeError, orjson.JSONEncodeError) as e:
        raise CacheSerializationError.from_exception(
            e, message=f"Cannot encode value: {e}", key=key
        )


def decode_value(raw: str | bytes | None, key: str | None = None) -> Any:
    """Deserialize a stored value. None stays None."""
    if raw is None:
        return None
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise CacheSerializationError.from_exception(
            e, message=f"Cannot decode cached value: {e}", key=key
        )


_GLOB_SPECIAL = set("*?[]\\")


def escape_pattern(value: str) -> str:
    """
    Escape glob metacharacters so a literal value can be embedded in a
    SCAN MATCH pattern.
    """
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIAL else ch for ch in str(value))


def encode_key_segment(value: str) -> str:
    """
    Percent-encode ``%`` and ``:`` so an identity occupies exactly one
    ``:``-separated key segment. ``a:b`` becomes ``a%3Ab``.
    """
    return str(value).replace("%", "%25").replace(":", "%3A")


def segment_pattern(value: str) -> str:
    """Encoded and glob-escaped form of a key segment, for SCAN MATCH patterns."""
    return escape_pattern(encode_key_segment(value))
