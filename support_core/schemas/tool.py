from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ParamType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "ParamType":
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return cls.UNKNOWN
        return cls.UNKNOWN


class ParamSpec(BaseModel):
    name: str
    type: ParamType = ParamType.UNKNOWN
    required: bool = False
    description: str = ""
    enum: list[Any] | None = None


class ToolDefinition(BaseModel):
    """
    A client-enabled tool backed by an outbound webhook.

    `parameters` is a JSON-schema object (`type`, `properties`, `required`).
    """

    name: str = Field(..., description="Tool name as exposed to the model")
    description: str = ""
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )
    webhook_url: str | None = None
    timeout_seconds: float | None = Field(
        default=None, description="Per-tool webhook timeout; falls back to settings"
    )


class ToolCallSource(str, Enum):
    NATIVE = "native"
    TEXT = "text"


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    source: ToolCallSource = ToolCallSource.TEXT


class ToolResult(BaseModel):
    """What a webhook invocation produced."""

    ok: bool
    data: Any = None
    error: str | None = None
    status_code: int | None = None
    duration_ms: int = 0
    timed_out: bool = False


class ToolOutcomeStatus(str, Enum):
    EXECUTED = "executed"
    FAILED = "failed"
    BLOCKED = "blocked"
    DUPLICATE_SUPPRESSED = "duplicate_suppressed"
    LOCK_UNAVAILABLE = "lock_unavailable"
    UNKNOWN_TOOL = "unknown_tool"


class ToolOutcome(BaseModel):
    call_id: str
    name: str
    status: ToolOutcomeStatus
    arguments: dict[str, Any] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    duration_ms: int = 0
    # Text fed back to the model for this call.
    feedback: str = ""


__all__ = [
    "ParamSpec",
    "ParamType",
    "ToolCall",
    "ToolCallSource",
    "ToolDefinition",
    "ToolOutcome",
    "ToolOutcomeStatus",
    "ToolResult",
]
