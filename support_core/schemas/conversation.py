from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"
    # Internal trace entries; never sent to the model.
    DEBUG = "debug"


class Conversation(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    session_id: str
    status: ConversationStatus = ConversationStatus.ACTIVE
    started_at: datetime
    ended_at: datetime | None = None
    last_activity_at: datetime
    message_count: int = 0
    tokens_total: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == ConversationStatus.ACTIVE


class Message(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    role: MessageRole
    content: str
    tokens: int | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime


class ContextMessage(BaseModel):
    role: str = Field(..., description="user / assistant / system / tool")
    content: str

    def as_llm_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class ContextWindow(BaseModel):
    """
    Cached, non-authoritative view of the recent conversation history.

    `message_count` is a snapshot of the durable non-debug message count at
    the time the window was written; a lagging snapshot means the window
    is stale.
    """

    conversation_id: str
    messages: list[ContextMessage] = Field(default_factory=list)
    message_count: int = 0
    cached_at: datetime
    last_activity: datetime


class SweepFailure(BaseModel):
    conversation_id: str
    error: str


class SweepResult(BaseModel):
    ended: int = 0
    conversations: list[Conversation] = Field(default_factory=list)
    failures: list[SweepFailure] = Field(default_factory=list)


__all__ = [
    "ContextMessage",
    "ContextWindow",
    "Conversation",
    "ConversationStatus",
    "Message",
    "MessageRole",
    "SweepFailure",
    "SweepResult",
]
