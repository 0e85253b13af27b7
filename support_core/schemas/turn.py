from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .plan import ReasoningMode
from .tool import ToolOutcome


class ChatRequest(BaseModel):
    """One inbound user message as handed over by the messaging layer."""

    client_id: str
    session_id: str
    message: str
    plan_name: str | None = None
    system_prompt: str | None = Field(
        default=None, description="Client-specific base prompt; a default is used when absent"
    )
    language: str | None = None
    skip_user_message_save: bool = False


class Completion(BaseModel):
    """Normalized response of one LLM completion call."""

    content: str = ""
    # Raw structured calls as returned by the backend ({id?, name, arguments}).
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)
    tokens_in: int | None = None
    tokens_out: int | None = None
    tokens_total: int = 0
    stop_reason: str | None = None
    model: str | None = None


class AdaptiveTurn(BaseModel):
    """Result of a turn fully handled by the adaptive reasoner."""

    content: str
    tokens_in: int = 0
    tokens_out: int = 0
    tool_calls: int = 0
    needs_escalation: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class TurnResult(BaseModel):
    conversation_id: str
    response: str
    mode: ReasoningMode | None = None
    conversation_ended: bool = False
    new_conversation: bool = False
    needs_escalation: bool = False
    tool_outcomes: list[ToolOutcome] = Field(default_factory=list)
    tokens_in: int = 0
    tokens_out: int = 0
    rounds: int = 0
    usage_recorded: bool = False
    remaining: int | None = None


__all__ = ["AdaptiveTurn", "ChatRequest", "Completion", "TurnResult"]
