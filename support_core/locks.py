"""
Distributed mutual exclusion on top of Redis.

A lock is a single key written with `SET key token NX EX ttl`; the store
decides the winner atomically, so exactly one concurrent caller on a key
succeeds. Keys always carry a TTL so a crashed holder cannot block a
fingerprint forever.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator

from redis.exceptions import RedisError

from .errors import LockStoreUnavailable
from .logging_config import logger
from .settings import settings

if TYPE_CHECKING:  # pragma: no cover - typing hint only
    from redis.asyncio import Redis

LOCK_KEY_TEMPLATE = "support:lock:{key}"
TOOL_FINGERPRINT_TEMPLATE = "tool:{conversation_id}:{tool_name}:{digest}"


def canonical_json(value: Any) -> str:
    """Stable JSON form: sorted keys at every depth, compact separators."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def build_tool_fingerprint(conversation_id: str, tool_name: str, args: dict[str, Any] | None) -> str:
    """
    Lock key for one tool invocation. Argument sets that differ only in key
    order map to the same fingerprint.
    """
    digest = hashlib.sha256(canonical_json(args or {}).encode("utf-8")).hexdigest()
    return TOOL_FINGERPRINT_TEMPLATE.format(
        conversation_id=conversation_id,
        tool_name=tool_name.strip().lower(),
        digest=digest,
    )


class LockService:
    def __init__(
        self,
        redis: "Redis",
        *,
        default_ttl_seconds: int | None = None,
        max_ttl_seconds: int | None = None,
    ) -> None:
        self._redis = redis
        self._max_ttl = max(1, int(max_ttl_seconds or settings.lock_max_ttl_seconds))
        self._default_ttl = self._clamp_ttl(default_ttl_seconds or settings.tool_lock_ttl_seconds)

    def _clamp_ttl(self, ttl_seconds: int | float | None) -> int:
        if ttl_seconds is None:
            return self._default_ttl
        return max(1, min(int(ttl_seconds), self._max_ttl))

    @staticmethod
    def _key(key: str) -> str:
        return LOCK_KEY_TEMPLATE.format(key=key)

    async def _take(self, key: str, ttl_seconds: int | None) -> str | None:
        ttl = self._clamp_ttl(ttl_seconds)
        token = uuid.uuid4().hex
        try:
            acquired = await self._redis.set(self._key(key), token, ex=ttl, nx=True)
        except RedisError as exc:
            logger.error("lock store unavailable while acquiring %s: %s", key, exc)
            raise LockStoreUnavailable(
                "lock store unavailable", details={"key": key}
            ) from exc

        if acquired:
            logger.debug("lock acquired key=%s ttl=%ss", key, ttl)
            return token
        logger.debug("lock busy key=%s", key)
        return None

    async def acquire(self, key: str, ttl_seconds: int | None = None) -> bool:
        """
        Try to take the lock. Returns False when someone else holds it.

        Raises LockStoreUnavailable when Redis cannot be reached; callers
        must treat that as "not acquired".
        """
        return await self._take(key, ttl_seconds) is not None

    async def release(self, key: str, token: str | None = None) -> bool:
        """
        Idempotent; False when there was nothing to release or Redis failed.

        With `token`, the key is only deleted while it still holds that
        token, so a holder whose lock expired cannot drop the next holder's.
        """
        redis_key = self._key(key)
        try:
            if token is not None:
                current = await self._redis.get(redis_key)
                if isinstance(current, bytes):
                    current = current.decode("utf-8")
                if current != token:
                    if current is not None:
                        logger.warning("lock %s is held by another caller, not releasing", key)
                    return False
            removed = await self._redis.delete(redis_key)
        except RedisError as exc:
            logger.warning("failed to release lock %s: %s", key, exc)
            return False
        return bool(removed)

    async def is_locked(self, key: str) -> bool:
        try:
            return bool(await self._redis.exists(self._key(key)))
        except RedisError as exc:
            raise LockStoreUnavailable(
                "lock store unavailable", details={"key": key}
            ) from exc

    async def extend(self, key: str, additional_seconds: int) -> bool:
        """Push the expiry of a held lock further out, still bounded by the max TTL."""
        redis_key = self._key(key)
        try:
            remaining = await self._redis.ttl(redis_key)
            if remaining is None or remaining < 0:
                # -2: key is gone, -1: no expiry (not one of ours)
                return False
            new_ttl = self._clamp_ttl(remaining + max(0, int(additional_seconds)))
            return bool(await self._redis.expire(redis_key, new_ttl))
        except RedisError as exc:
            logger.warning("failed to extend lock %s: %s", key, exc)
            return False

    @asynccontextmanager
    async def hold(self, key: str, ttl_seconds: int | None = None) -> AsyncIterator[bool]:
        """
        `async with locks.hold(key) as acquired:` runs the body either way and
        releases the lock afterwards only if this caller took it.
        """
        token = await self._take(key, ttl_seconds)
        try:
            yield token is not None
        finally:
            if token is not None:
                await self.release(key, token)


__all__ = [
    "LOCK_KEY_TEMPLATE",
    "LockService",
    "build_tool_fingerprint",
    "canonical_json",
]
