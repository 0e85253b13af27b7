"""
Conversation lifecycle: Absent -> Active -> Ended per (client, session).

An ended conversation is terminal; the next inbound message for the same
session starts a fresh one. Durable state lives in the conversation and
message stores; the context cache only mirrors recent history.
"""

from __future__ import annotations

import random
import re
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Sequence

from .context_cache import ContextCache, context_session_key, manage_context_window
from .errors import ErrorKind, Outcome
from .interfaces import ConversationStore, MessageStore
from .logging_config import logger
from .phrases import FAREWELL_MESSAGES, STRONG_ENDING_PHRASES, WEAK_ENDING_PHRASES
from .schemas import (
    ContextMessage,
    ContextWindow,
    Conversation,
    Message,
    MessageRole,
    SweepFailure,
    SweepResult,
)
from .settings import settings

_WEAK_ENDING_RE = re.compile(
    r"^(?:%s)[.!?]?$" % "|".join(re.escape(p) for p in WEAK_ENDING_PHRASES)
)
# Strong phrases must close the message, optionally followed by punctuation
# ("ok bye!" ends, "that's all, thanks" does not). Apostrophes count as part
# of a word, so "bye" never matches inside "bye's".
_STRONG_ENDING_RES = tuple(
    re.compile(r"(?<![\w'])%s[.!?,;]*$" % re.escape(p)) for p in STRONG_ENDING_PHRASES
)
_CONTEXT_ROLES = {MessageRole.USER, MessageRole.ASSISTANT}


def _normalize(text: str) -> str:
    return text.replace("’", "'").strip().lower()


def detect_conversation_end(text: Any, max_length: int | None = None) -> bool:
    """
    Whether a user message asks to end the conversation.

    Weak phrases ("thanks") only count as the entire message; strong
    phrases ("bye", "that's all") count when they close a short message.
    """
    if not isinstance(text, str):
        return False
    normalized = _normalize(text)
    if not normalized:
        return False

    if _WEAK_ENDING_RE.match(normalized):
        return True

    limit = max_length or settings.max_message_length_for_ending
    if len(normalized) > limit:
        return False
    return any(pattern.search(normalized) for pattern in _STRONG_ENDING_RES)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ConversationManager:
    def __init__(
        self,
        conversations: ConversationStore,
        messages: MessageStore,
        cache: ContextCache,
        *,
        max_context_messages: int | None = None,
        max_message_length_for_ending: int | None = None,
        inactivity_minutes: int | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._conversations = conversations
        self._messages = messages
        self._cache = cache
        self._max_context_messages = max_context_messages or settings.context_max_messages
        self._max_ending_length = (
            max_message_length_for_ending or settings.max_message_length_for_ending
        )
        self._inactivity_minutes = inactivity_minutes or settings.auto_end_inactive_minutes
        self._now = now_fn or _utcnow

    # ------------------------------------------------------------------
    # lookup / creation
    # ------------------------------------------------------------------

    async def get_or_create_conversation(
        self, client_id: str, session_id: str
    ) -> tuple[Conversation, bool]:
        existing = await self._conversations.find_active_by_session(client_id, session_id)
        if existing is not None:
            await self._conversations.touch(existing.id, self._now())
            return existing, False

        conversation = await self._conversations.create(client_id, session_id)
        logger.info(
            "started conversation %s for client=%s session=%s",
            conversation.id,
            client_id,
            session_id,
        )
        return conversation, True

    # ------------------------------------------------------------------
    # messages
    # ------------------------------------------------------------------

    async def add_message(
        self,
        conversation_id: str,
        role: MessageRole | str,
        content: str,
        tokens: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        return await self._messages.append(
            conversation_id,
            MessageRole(role),
            content,
            tokens=tokens,
            metadata=metadata,
        )

    async def add_debug_message(
        self,
        conversation_id: str,
        content: str,
        *,
        kind: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message | None:
        """Trace entry for operators; a failure here never affects the turn."""
        try:
            return await self._messages.append(
                conversation_id,
                MessageRole.DEBUG,
                content,
                metadata={"kind": kind, **(metadata or {})},
            )
        except Exception:
            logger.warning(
                "failed to store %s debug message for conversation %s",
                kind,
                conversation_id,
                exc_info=True,
            )
            return None

    # ------------------------------------------------------------------
    # end detection / context window
    # ------------------------------------------------------------------

    def detect_conversation_end(self, text: Any) -> bool:
        return detect_conversation_end(text, self._max_ending_length)

    def manage_context_window(
        self, messages: Sequence[Any], max_messages: int | None = None
    ) -> list[Any]:
        return manage_context_window(messages, max_messages or self._max_context_messages)

    async def _rebuild_context(
        self, session_key: str, conversation: Conversation, system_prompt: str, count: int
    ) -> list[ContextMessage]:
        history = await self._messages.list_for_conversation(conversation.id)
        messages = [ContextMessage(role="system", content=system_prompt)]
        messages.extend(
            ContextMessage(role=m.role.value, content=m.content)
            for m in history
            if m.role in _CONTEXT_ROLES
        )
        messages = self.manage_context_window(messages)

        now = self._now()
        await self._cache.set(
            session_key,
            ContextWindow(
                conversation_id=conversation.id,
                messages=messages,
                message_count=count,
                cached_at=now,
                last_activity=now,
            ),
        )
        return messages

    async def load_context(
        self, session_id: str, conversation: Conversation, system_prompt: str
    ) -> list[ContextMessage]:
        """
        Context window for the next completion, led by `system_prompt`.

        Served from the cache when its snapshot is current, otherwise
        rebuilt from durable history and written back.
        """
        session_key = context_session_key(conversation.client_id, session_id)
        durable_count = await self._messages.count(conversation.id)
        window = await self._cache.get(session_key)

        if (
            window is not None
            and window.conversation_id == conversation.id
            and window.message_count >= durable_count
        ):
            messages = list(window.messages)
            if messages and messages[0].role == "system":
                messages[0] = ContextMessage(role="system", content=system_prompt)
            else:
                messages.insert(0, ContextMessage(role="system", content=system_prompt))
            return self.manage_context_window(messages)

        if window is not None:
            logger.debug(
                "context cache stale for conversation %s (cached=%s durable=%s)",
                conversation.id,
                window.message_count,
                durable_count,
            )
        return await self._rebuild_context(session_key, conversation, system_prompt, durable_count)

    async def append_to_context(
        self,
        session_id: str,
        conversation: Conversation,
        messages: Sequence[ContextMessage],
    ) -> ContextWindow | None:
        session_key = context_session_key(conversation.client_id, session_id)
        durable_count = await self._messages.count(conversation.id)
        return await self._cache.update(session_key, messages, message_count=durable_count)

    # ------------------------------------------------------------------
    # ending
    # ------------------------------------------------------------------

    async def end_conversation_by_id(self, conversation_id: str) -> Outcome[Conversation]:
        """Idempotent: ending an ended conversation returns it unchanged."""
        conversation = await self._conversations.end(conversation_id, self._now())
        if conversation is None:
            return Outcome.failure(
                ErrorKind.NOT_FOUND,
                "conversation not found",
                details={"conversation_id": conversation_id},
            )
        await self._cache.delete(
            context_session_key(conversation.client_id, conversation.session_id)
        )
        logger.info("conversation %s ended", conversation_id)
        return Outcome.success(conversation)

    async def end_conversation(self, client_id: str, session_id: str) -> Outcome[Conversation]:
        active = await self._conversations.find_active_by_session(client_id, session_id)
        if active is None:
            return Outcome.failure(
                ErrorKind.NOT_FOUND,
                "no active conversation for session",
                details={"client_id": client_id, "session_id": session_id},
            )
        return await self.end_conversation_by_id(active.id)

    async def handle_conversation_end(
        self,
        conversation: Conversation,
        session_id: str,
        user_text: str,
        *,
        save_user_message: bool = True,
    ) -> str:
        """
        Close the conversation on the user's request and say goodbye.

        Callers that already stored the user message pass
        `save_user_message=False`.
        """
        if save_user_message:
            await self.add_message(conversation.id, MessageRole.USER, user_text)
        farewell = random.choice(FAREWELL_MESSAGES)
        await self.add_message(conversation.id, MessageRole.ASSISTANT, farewell)
        await self.end_conversation_by_id(conversation.id)
        await self._cache.delete(context_session_key(conversation.client_id, session_id))
        return farewell

    async def auto_end_inactive(self, inactivity_minutes: int | None = None) -> SweepResult:
        """
        End every active conversation idle for longer than the threshold.

        Each conversation is ended independently; one failure is recorded
        and the sweep moves on.
        """
        minutes = inactivity_minutes or self._inactivity_minutes
        cutoff = self._now() - timedelta(minutes=minutes)
        candidates = await self._conversations.find_inactive_since(cutoff)

        result = SweepResult()
        for candidate in candidates:
            try:
                outcome = await self.end_conversation_by_id(candidate.id)
            except Exception as exc:
                logger.exception("failed to auto-end conversation %s", candidate.id)
                result.failures.append(SweepFailure(conversation_id=candidate.id, error=str(exc)))
                continue
            if outcome.ok and outcome.value is not None:
                result.conversations.append(outcome.value)
            else:
                result.failures.append(
                    SweepFailure(conversation_id=candidate.id, error=outcome.message or "unknown")
                )

        result.ended = len(result.conversations)
        if candidates:
            logger.info(
                "inactivity sweep ended %d of %d conversation(s), %d failure(s)",
                result.ended,
                len(candidates),
                len(result.failures),
            )
        return result


__all__ = ["ConversationManager", "detect_conversation_end", "manage_context_window"]
