from __future__ import annotations

from typing import Sequence

from .schemas import ToolDefinition
from .tools.formatting import format_tools_for_prompt

_BASE_PROMPT_EN = """You are a friendly customer support person for {business}. Keep responses SHORT (1-2 sentences).

## TOOL CALLING RULES:

1. **Call tools only when you need external data you don't already have.**
2. **Answer from context if possible** - don't call a tool for info already provided to you.
3. **Never make up or assume information** - if required data is missing, ask the user first.
4. **Never repeat a tool call** - reuse answers from previous calls.

## AFTER TOOL RESULT:
Summarize the result naturally. Don't show JSON or technical details.
"""

_BASE_PROMPT_HE = """אתה נציג שירות לקוחות ידידותי של {business}. תהיה קצר ותמציתי (משפט או שניים מקסימום).

## כללי שימוש בכלים:

1. **קרא לכלים רק כשאתה צריך מידע חיצוני שאין לך.**
2. **ענה מההקשר אם אפשר** - אל תקרא לכלי למידע שכבר סופק לך.
3. **לעולם אל תמציא או תניח מידע** - אם חסר מידע נדרש, שאל את המשתמש קודם.
4. **לעולם אל תחזור על קריאה לכלי** - השתמש בתשובות מקריאות קודמות.

## אחרי תוצאת הכלי:
סכם את התוצאה בצורה טבעית. אל תציג JSON או פרטים טכניים.

## שפה
- ענה תמיד בעברית
"""

_ERROR_MESSAGES = {
    "en": (
        "I'm sorry, I'm having trouble processing that request right now. Please try again, "
        "or if the issue persists, I can connect you with a human agent."
    ),
    "he": "מצטער, אני מתקשה לעבד את הבקשה הזו כרגע. אנא נסה שוב, או אם הבעיה נמשכת, אוכל לחבר אותך לנציג אנושי.",
}

_LIMIT_MESSAGES = {
    "en": "This service has reached its usage limit for now. Please try again later.",
    "he": "השירות הגיע למגבלת השימוש כרגע. אנא נסה שוב מאוחר יותר.",
}

HALLUCINATED_ACTION_NUDGE = (
    "You described performing an action but did not call a tool. Nothing has been done yet. "
    "If a tool is needed, call it using the tool format; otherwise answer without claiming "
    "that anything was completed."
)

TOOL_REJECTED_TEMPLATE = (
    "TOOL CALL REJECTED: {errors}. You MUST ask the user for the missing or invalid "
    "information before calling this tool again. Do not use placeholder values."
)
DUPLICATE_SUPPRESSED_MESSAGE = (
    "This action is already being processed. Please wait for the current execution to complete."
)
LOCK_UNAVAILABLE_MESSAGE = "This action cannot be performed right now. Please try again shortly."

FALLBACK_RESPONSE = (
    "I apologize, but I encountered an issue processing your request. "
    "Please try again or rephrase your question."
)


def default_system_prompt(business_name: str | None = None, language: str | None = None) -> str:
    template = _BASE_PROMPT_HE if language == "he" else _BASE_PROMPT_EN
    return template.format(business=business_name or "our company")


def build_system_prompt(
    base_prompt: str | None,
    tools: Sequence[ToolDefinition] = (),
    *,
    native_tools: bool = True,
    language: str | None = None,
) -> str:
    """
    System directive for a completion call.

    Backends with structured function calling receive tool declarations
    separately; the others get the tool list and call format appended.
    """
    prompt = base_prompt or default_system_prompt(language=language)
    if tools and not native_tools:
        prompt = prompt.rstrip() + "\n" + format_tools_for_prompt(tools)
    return prompt


def error_message(language: str | None = None) -> str:
    return _ERROR_MESSAGES.get(language or "en", _ERROR_MESSAGES["en"])


def limit_exceeded_message(language: str | None = None) -> str:
    return _LIMIT_MESSAGES.get(language or "en", _LIMIT_MESSAGES["en"])


__all__ = [
    "DUPLICATE_SUPPRESSED_MESSAGE",
    "FALLBACK_RESPONSE",
    "HALLUCINATED_ACTION_NUDGE",
    "LOCK_UNAVAILABLE_MESSAGE",
    "TOOL_REJECTED_TEMPLATE",
    "build_system_prompt",
    "default_system_prompt",
    "error_message",
    "limit_exceeded_message",
]
