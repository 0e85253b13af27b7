"""
Pydantic data models shared by the lifecycle manager, the tool layer and
the reasoning dispatcher.
"""

from .conversation import (
    ContextMessage,
    ContextWindow,
    Conversation,
    ConversationStatus,
    Message,
    MessageRole,
    SweepFailure,
    SweepResult,
)
from .plan import LimitDecision, PlanInfo, ReasoningMode, UsageRecord
from .tool import (
    ParamSpec,
    ParamType,
    ToolCall,
    ToolCallSource,
    ToolDefinition,
    ToolOutcome,
    ToolOutcomeStatus,
    ToolResult,
)
from .turn import AdaptiveTurn, ChatRequest, Completion, TurnResult

__all__ = [
    "AdaptiveTurn",
    "ChatRequest",
    "Completion",
    "ContextMessage",
    "ContextWindow",
    "Conversation",
    "ConversationStatus",
    "LimitDecision",
    "Message",
    "MessageRole",
    "ParamSpec",
    "ParamType",
    "PlanInfo",
    "ReasoningMode",
    "SweepFailure",
    "SweepResult",
    "ToolCall",
    "ToolCallSource",
    "ToolDefinition",
    "ToolOutcome",
    "ToolOutcomeStatus",
    "ToolResult",
    "TurnResult",
    "UsageRecord",
]
