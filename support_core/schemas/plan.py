from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ReasoningMode(str, Enum):
    ADAPTIVE = "adaptive"
    STANDARD = "standard"


class PlanInfo(BaseModel):
    name: str
    reasoning_mode: ReasoningMode = ReasoningMode.STANDARD
    limits: dict[str, Any] = Field(default_factory=dict)
    features: dict[str, Any] = Field(default_factory=dict)
    # USD per 1M tokens.
    input_token_price: float = Field(default=0.0, ge=0)
    output_token_price: float = Field(default=0.0, ge=0)


class LimitDecision(BaseModel):
    """
    Answer from the usage ledger; `None` remaining/limit means unbounded.
    """

    allowed: bool
    remaining: int | None = None
    limit: int | None = None
    exceeded: bool = False


class UsageRecord(BaseModel):
    client_id: str
    conversation_id: str | None = None
    tokens_in: int = 0
    tokens_out: int = 0
    tool_calls: int = 0
    cost: float = 0.0
    new_conversation: bool = False

    @property
    def tokens_total(self) -> int:
        return self.tokens_in + self.tokens_out


__all__ = ["LimitDecision", "PlanInfo", "ReasoningMode", "UsageRecord"]
