from __future__ import annotations

import json
import math
import uuid
from datetime import UTC, datetime
from typing import Any, Callable, Sequence

from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from support_core.db import Base
from support_core.schemas import (
    AdaptiveTurn,
    ChatRequest,
    Completion,
    ContextMessage,
    Conversation,
    ConversationStatus,
    LimitDecision,
    Message,
    MessageRole,
    PlanInfo,
    ToolDefinition,
    ToolResult,
    UsageRecord,
)


def make_session_factory() -> sessionmaker[Session]:
    """In-memory SQLite database with the support schema created."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )


class ManualClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryRedis:
    """Key/value subset of Redis with SET NX and key expiry driven by a clock."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._data: dict[str, str] = {}
        self._expires: dict[str, float] = {}
        self._clock = clock or ManualClock()

    def _alive(self, key: str) -> bool:
        expires_at = self._expires.get(key)
        if expires_at is not None and expires_at <= self._clock():
            self._data.pop(key, None)
            self._expires.pop(key, None)
        return key in self._data

    async def get(self, key: str):
        return self._data.get(key) if self._alive(key) else None

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False):
        if nx and self._alive(key):
            return None
        self._data[key] = value
        if ex is not None:
            self._expires[key] = self._clock() + ex
        else:
            self._expires.pop(key, None)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self._data.pop(key, None)
            self._expires.pop(key, None)
        return removed

    async def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if self._alive(key))

    async def ttl(self, key: str) -> int:
        if not self._alive(key):
            return -2
        expires_at = self._expires.get(key)
        if expires_at is None:
            return -1
        return int(math.ceil(expires_at - self._clock()))

    async def expire(self, key: str, seconds: int) -> bool:
        if not self._alive(key):
            return False
        self._expires[key] = self._clock() + seconds
        return True


class UnavailableRedis:
    """Every command fails as if the server were unreachable."""

    async def _fail(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    get = set = delete = exists = ttl = expire = _fail


# ----------------------------------------------------------------------
# in-memory stores
# ----------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InMemoryConversationStore:
    def __init__(self, now_fn: Callable[[], datetime] | None = None) -> None:
        self.conversations: dict[str, Conversation] = {}
        self.fail_end_for: set[str] = set()
        self._now = now_fn or _utcnow

    async def get(self, conversation_id: str) -> Conversation | None:
        return self.conversations.get(conversation_id)

    async def find_active_by_session(self, client_id: str, session_id: str) -> Conversation | None:
        for conv in self.conversations.values():
            if conv.client_id == client_id and conv.session_id == session_id and conv.is_active:
                return conv
        return None

    async def create(self, client_id: str, session_id: str) -> Conversation:
        now = self._now()
        conv = Conversation(
            id=str(uuid.uuid4()),
            client_id=client_id,
            session_id=session_id,
            started_at=now,
            last_activity_at=now,
        )
        self.conversations[conv.id] = conv
        return conv

    async def end(self, conversation_id: str, ended_at: datetime) -> Conversation | None:
        if conversation_id in self.fail_end_for:
            raise RuntimeError("database is gone")
        conv = self.conversations.get(conversation_id)
        if conv is None:
            return None
        if conv.is_active:
            conv = conv.model_copy(update={"status": ConversationStatus.ENDED, "ended_at": ended_at})
            self.conversations[conversation_id] = conv
        return conv

    async def find_inactive_since(self, cutoff: datetime) -> list[Conversation]:
        return [
            c for c in self.conversations.values() if c.is_active and c.last_activity_at < cutoff
        ]

    async def touch(self, conversation_id: str, at: datetime) -> None:
        conv = self.conversations[conversation_id]
        self.conversations[conversation_id] = conv.model_copy(update={"last_activity_at": at})


class InMemoryMessageStore:
    def __init__(self, conversations: InMemoryConversationStore, events: list | None = None) -> None:
        self.messages: list[Message] = []
        self.events = events if events is not None else []
        self._conversations = conversations

    async def append(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        *,
        tokens: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        role = MessageRole(role)
        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            tokens=tokens,
            metadata=metadata,
            created_at=_utcnow(),
        )
        self.messages.append(message)
        self.events.append(("message", role.value))
        if role is not MessageRole.DEBUG:
            conv = self._conversations.conversations.get(conversation_id)
            if conv is not None:
                self._conversations.conversations[conversation_id] = conv.model_copy(
                    update={
                        "message_count": conv.message_count + 1,
                        "tokens_total": conv.tokens_total + int(tokens or 0),
                    }
                )
        return message

    async def list_for_conversation(
        self, conversation_id: str, *, include_debug: bool = False
    ) -> list[Message]:
        return [
            m
            for m in self.messages
            if m.conversation_id == conversation_id
            and (include_debug or m.role is not MessageRole.DEBUG)
        ]

    async def count(self, conversation_id: str, *, include_debug: bool = False) -> int:
        return len(await self.list_for_conversation(conversation_id, include_debug=include_debug))

    def by_role(self, role: MessageRole) -> list[Message]:
        return [m for m in self.messages if m.role is role]


# ----------------------------------------------------------------------
# collaborator fakes
# ----------------------------------------------------------------------


class ScriptedLLM:
    """Returns the queued completions in order and records every request."""

    def __init__(
        self,
        completions: Sequence[Completion | Exception],
        *,
        provider: str = "openai",
        supports_native_tools: bool = True,
    ) -> None:
        self.provider = provider
        self.supports_native_tools = supports_native_tools
        self._queue = list(completions)
        self.requests: list[tuple[list[dict[str, Any]], list[dict[str, Any]] | None]] = []

    async def complete(self, messages, tools=None) -> Completion:
        self.requests.append(([dict(m) for m in messages], tools))
        if not self._queue:
            raise AssertionError("unexpected completion request")
        item = self._queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def text_completion(content: str, tokens_in: int = 10, tokens_out: int = 5) -> Completion:
    return Completion(
        content=content,
        tokens_in=tokens_in,
        tokens_out=tokens_out,
        tokens_total=tokens_in + tokens_out,
    )


def native_call_completion(
    name: str, arguments: dict[str, Any], call_id: str = "call_1", tokens_in: int = 10, tokens_out: int = 5
) -> Completion:
    return Completion(
        content="",
        tool_calls=[
            {
                "id": call_id,
                "type": "function",
                "function": {"name": name, "arguments": json.dumps(arguments)},
            }
        ],
        tokens_in=tokens_in,
        tokens_out=tokens_out,
        tokens_total=tokens_in + tokens_out,
    )


class StaticToolRegistry:
    def __init__(self, tools: Sequence[ToolDefinition] = ()) -> None:
        self._tools = list(tools)

    async def enabled_tools_for(self, client_id: str) -> list[ToolDefinition]:
        return list(self._tools)


class RecordingExecutor:
    def __init__(self, result: ToolResult | None = None, events: list | None = None) -> None:
        self.result = result or ToolResult(ok=True, data={"message": "Done"}, status_code=200)
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.events = events if events is not None else []
        self.before_return: Callable[[], Any] | None = None

    async def invoke(self, tool, arguments, *, client_id, conversation_id) -> ToolResult:
        self.calls.append((tool.name, dict(arguments)))
        self.events.append(("tool", tool.name))
        if self.before_return is not None:
            await self.before_return()
        return self.result


class FakeLedger:
    def __init__(
        self,
        decision: LimitDecision | None = None,
        *,
        failures: int = 0,
        events: list | None = None,
    ) -> None:
        self.decision = decision or LimitDecision(allowed=True, remaining=100, limit=100)
        self.failures = failures
        self.attempts = 0
        self.records: list[UsageRecord] = []
        self.events = events if events is not None else []

    async def check_limit(self, client_id: str, plan: PlanInfo) -> LimitDecision:
        return self.decision

    async def record(self, usage: UsageRecord) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("ledger unavailable")
        self.records.append(usage)
        self.events.append(("usage", usage.tokens_total))


class StaticPlans:
    def __init__(self, *plans: PlanInfo) -> None:
        self._plans = {p.name: p for p in plans}

    async def get(self, plan_name: str | None) -> PlanInfo | None:
        return self._plans.get(plan_name or "")


class FakeAdaptiveReasoner:
    def __init__(self, turn: AdaptiveTurn) -> None:
        self.turn = turn
        self.calls: list[tuple[ChatRequest, Conversation, list[ContextMessage]]] = []

    async def run_turn(self, request, conversation, context) -> AdaptiveTurn:
        self.calls.append((request, conversation, list(context)))
        return self.turn


async def no_sleep(_seconds: float) -> None:
    return None


__all__ = [
    "FakeAdaptiveReasoner",
    "FakeLedger",
    "InMemoryConversationStore",
    "InMemoryMessageStore",
    "InMemoryRedis",
    "ManualClock",
    "RecordingExecutor",
    "ScriptedLLM",
    "StaticPlans",
    "StaticToolRegistry",
    "UnavailableRedis",
    "make_session_factory",
    "native_call_completion",
    "no_sleep",
    "text_completion",
]
