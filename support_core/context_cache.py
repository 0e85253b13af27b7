"""
Redis cache of per-session context windows.

The cache is an optimisation only: a miss, an expired key, a malformed
payload or an unreachable Redis all read as "nothing cached" and the
caller rebuilds from durable history. Writes never raise.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Sequence

from pydantic import ValidationError
from redis.exceptions import RedisError

from .logging_config import logger
from .redis_client import redis_delete, redis_get_json, redis_set_json
from .schemas import ContextMessage, ContextWindow
from .settings import settings

if TYPE_CHECKING:  # pragma: no cover - typing hint only
    from redis.asyncio import Redis

CONTEXT_KEY_TEMPLATE = "support:context:{session_key}"


def context_session_key(client_id: str, session_id: str) -> str:
    return f"{client_id}:{session_id}"


def _role_of(message: Any) -> str | None:
    if isinstance(message, dict):
        return message.get("role")
    return getattr(message, "role", None)


def manage_context_window(messages: Sequence[Any], max_messages: int | None = None) -> list[Any]:
    """
    Bound a message list to `max_messages`.

    A leading system directive is always kept; the rest of the budget goes
    to the most recent messages. Works on ContextMessage objects and plain
    role/content dicts alike.
    """
    limit = max(1, int(max_messages or settings.context_max_messages))
    items = list(messages)
    if len(items) <= limit:
        return items
    if limit > 1 and _role_of(items[0]) == "system":
        return [items[0], *items[-(limit - 1):]]
    return items[-limit:]


class ContextCache:
    def __init__(
        self,
        redis: "Redis",
        *,
        ttl_seconds: int | None = None,
        max_messages: int | None = None,
    ) -> None:
        self._redis = redis
        self._ttl = int(ttl_seconds or settings.context_cache_ttl_seconds)
        self._max_messages = int(max_messages or settings.context_max_messages)

    @staticmethod
    def _key(session_key: str) -> str:
        return CONTEXT_KEY_TEMPLATE.format(session_key=session_key)

    async def get(self, session_key: str) -> ContextWindow | None:
        key = self._key(session_key)
        try:
            payload = await redis_get_json(self._redis, key)
        except RedisError as exc:
            logger.warning("context cache read failed for %s: %s", session_key, exc)
            return None
        if payload is None:
            return None
        try:
            return ContextWindow.model_validate(payload)
        except ValidationError:
            logger.warning("dropping malformed context cache entry %s", session_key)
            try:
                await redis_delete(self._redis, key)
            except RedisError:
                pass
            return None

    async def set(
        self, session_key: str, window: ContextWindow, ttl: int | None = None
    ) -> None:
        try:
            await redis_set_json(
                self._redis,
                self._key(session_key),
                window.model_dump(mode="json"),
                ttl_seconds=int(ttl or self._ttl),
            )
        except RedisError as exc:
            logger.warning("context cache write skipped for %s: %s", session_key, exc)

    async def update(
        self,
        session_key: str,
        messages: Sequence[ContextMessage],
        *,
        message_count: int | None = None,
    ) -> ContextWindow | None:
        """
        Append turns to the cached window and refresh its TTL.

        Returns None when nothing is cached; the next turn then rebuilds
        the window from durable history.
        """
        current = await self.get(session_key)
        if current is None:
            return None

        now = datetime.now(UTC)
        merged = manage_context_window([*current.messages, *messages], self._max_messages)
        window = current.model_copy(
            update={
                "messages": merged,
                "message_count": (
                    message_count
                    if message_count is not None
                    else current.message_count + len(messages)
                ),
                "last_activity": now,
            }
        )
        await self.set(session_key, window)
        return window

    async def delete(self, session_key: str) -> bool:
        try:
            return await redis_delete(self._redis, self._key(session_key))
        except RedisError as exc:
            logger.warning("context cache delete failed for %s: %s", session_key, exc)
            return False


__all__ = [
    "CONTEXT_KEY_TEMPLATE",
    "ContextCache",
    "context_session_key",
    "manage_context_window",
]
