"""
Contracts of the collaborators this package consumes but does not own.

The SQL stores in `support_core.db`, the webhook executor and the HTTP LLM
client are the bundled implementations; tests swap in fakes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, Sequence

from .schemas import (
    AdaptiveTurn,
    ChatRequest,
    Completion,
    ContextMessage,
    Conversation,
    LimitDecision,
    Message,
    MessageRole,
    PlanInfo,
    ToolDefinition,
    ToolResult,
    UsageRecord,
)


class PlanLookup(Protocol):
    async def get(self, plan_name: str | None) -> PlanInfo | None:
        ...


class UsageLedger(Protocol):
    async def check_limit(self, client_id: str, plan: PlanInfo) -> LimitDecision:
        ...

    async def record(self, usage: UsageRecord) -> None:
        ...


class MessageStore(Protocol):
    async def append(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        *,
        tokens: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """
        Insert a message. Non-debug messages bump the conversation's
        counters in the same transaction.
        """
        ...

    async def list_for_conversation(
        self, conversation_id: str, *, include_debug: bool = False
    ) -> list[Message]:
        ...

    async def count(self, conversation_id: str, *, include_debug: bool = False) -> int:
        ...


class ConversationStore(Protocol):
    async def find_active_by_session(self, client_id: str, session_id: str) -> Conversation | None:
        ...

    async def create(self, client_id: str, session_id: str) -> Conversation:
        ...

    async def end(self, conversation_id: str, ended_at: datetime) -> Conversation | None:
        """End an active conversation; an ended one is returned unchanged."""
        ...

    async def get(self, conversation_id: str) -> Conversation | None:
        ...

    async def find_inactive_since(self, cutoff: datetime) -> list[Conversation]:
        ...

    async def touch(self, conversation_id: str, at: datetime) -> None:
        ...


class LLMClient(Protocol):
    provider: str
    supports_native_tools: bool

    async def complete(
        self,
        messages: Sequence[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> Completion:
        ...


class ToolRegistry(Protocol):
    async def enabled_tools_for(self, client_id: str) -> list[ToolDefinition]:
        ...


class ToolExecutor(Protocol):
    async def invoke(
        self,
        tool: ToolDefinition,
        arguments: dict[str, Any],
        *,
        client_id: str,
        conversation_id: str,
    ) -> ToolResult:
        ...


class AdaptiveReasoner(Protocol):
    async def run_turn(
        self,
        request: ChatRequest,
        conversation: Conversation,
        context: list[ContextMessage],
    ) -> AdaptiveTurn:
        ...


__all__ = [
    "AdaptiveReasoner",
    "ConversationStore",
    "LLMClient",
    "MessageStore",
    "PlanLookup",
    "ToolExecutor",
    "ToolRegistry",
    "UsageLedger",
]
