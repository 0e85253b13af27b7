"""
Phrase lists used for conversation flow detection.

Everything here is plain data plus a few lookup helpers; numeric
thresholds live in `support_core.settings`.
"""

from __future__ import annotations

import re

# Strong phrases clearly signal intent to end; they may appear anywhere in
# a short message.
STRONG_ENDING_PHRASES: tuple[str, ...] = (
    # goodbye variations
    "goodbye",
    "bye",
    "bye bye",
    "see you",
    "see ya",
    # explicit completion statements
    "that's all",
    "thats all",
    "that is all",
    "i'm done",
    "im done",
    "i am done",
    "we're done",
    "were done",
    "we are done",
    "i'm finished",
    "im finished",
    "i am finished",
    "we're finished",
    "were finished",
    "we are finished",
    # explicit ending commands
    "end conversation",
    "end the conversation",
    "close conversation",
    "close the conversation",
    # completion signals
    "that's it",
    "thats it",
    "that is it",
    "all done",
    "all set",
    "no more questions",
    "no further questions",
    "nothing else",
    "nothing more",
    # farewell wishes
    "have a good day",
    "have a nice day",
    "have a great day",
    "take care",
    "talk to you later",
    "catch you later",
    "until next time",
)

# Users often say "thanks" and keep going, so weak phrases only end the
# conversation when they are the whole message.
WEAK_ENDING_PHRASES: tuple[str, ...] = (
    "thank you",
    "thanks",
    "thank you very much",
    "thanks a lot",
    "thank you so much",
)

FAREWELL_MESSAGES: tuple[str, ...] = (
    "Thank you for chatting with us! Have a great day!",
    "Goodbye! Feel free to reach out anytime you need help.",
    "Thanks for reaching out! Take care!",
    "It was a pleasure helping you. Goodbye!",
)

# Words the model uses when it claims an action happened.
ACTION_CLAIM_WORDS: tuple[str, ...] = (
    "booked",
    "reserved",
    "confirmed",
    "scheduled",
    "completed",
    "done",
    "finished",
)

# Phrases the model uses when it pretends to be running a tool.
TOOL_SIMULATION_PHRASES: tuple[str, ...] = (
    "waits",
    "waiting",
    "checking",
    "loading",
    "processing",
    "status from the system",
    "information you asked for",
    "hold for a moment",
    "may take a moment",
    "please hold",
)

USER_ACTION_REQUEST_PATTERN = re.compile(
    r"(book|reserve|schedule|check|get.*status|what.*status|order.*status)",
    re.IGNORECASE,
)

CLARIFICATION_PHRASES: dict[str, tuple[str, ...]] = {
    "en": (
        "could you clarify",
        "can you provide more",
        "need more information",
        "could you tell me more",
        "what do you mean",
        "i'm not sure what you mean",
        "could you be more specific",
        "can you explain",
    ),
    "he": (
        "לתת פרטים נוספים",
        "אפשר להבהיר",
        "צריך יותר מידע",
        "אפשר לפרט",
        "מה הכוונה",
        "לא הבנתי",
        "אפשר להסביר",
    ),
}

ESCALATION_TRIGGERS: dict[str, tuple[str, ...]] = {
    "en": (
        "talk to a human",
        "talk to human",
        "speak to a person",
        "speak to a human",
        "speak with a human",
        "speak with a person",
        "talk with a human",
        "talk with a person",
        "human agent",
        "real person",
        "customer service",
        "speak to someone",
        "talk to someone",
        "speak with someone",
        "talk with someone",
        "human support",
        "human help",
        "contact support",
        "need a human",
        "want a human",
        "get a human",
        "connect me to",
        "transfer me to",
    ),
    "he": (
        "דבר עם אדם",
        "דבר לאדם",
        "דבר עם נציג",
        "לדבר עם אדם",
        "לדבר לאדם",
        "נציג אנושי",
        "אדם אמיתי",
        "שירות לקוחות",
        "לדבר עם מישהו",
        "דבר עם מישהו",
        "לדבר למישהו",
        "צור קשר",
        "צריך אדם",
        "רוצה אדם",
        "רוצה לדבר עם",
        "צריך לדבר עם",
        "העבר אותי ל",
        "חבר אותי ל",
        "תעביר אותי",
        "אדם בבקשה",
        "עזרה מאדם",
        "תמיכה אנושית",
    ),
}


def get_escalation_triggers(language: str | None = "en") -> tuple[str, ...]:
    """Triggers for a language, falling back to English."""
    return ESCALATION_TRIGGERS.get(language or "en", ESCALATION_TRIGGERS["en"])


def get_clarification_phrases(language: str | None = "en") -> tuple[str, ...]:
    return CLARIFICATION_PHRASES.get(language or "en", CLARIFICATION_PHRASES["en"])


def get_all_escalation_triggers() -> tuple[str, ...]:
    return ESCALATION_TRIGGERS["en"] + ESCALATION_TRIGGERS["he"]


def wants_human(text: str | None, language: str | None = None) -> bool:
    """
    Whether the user explicitly asks for a human agent.

    Without a language every known trigger is checked.
    """
    if not isinstance(text, str) or not text.strip():
        return False
    lowered = text.strip().lower()
    triggers = get_escalation_triggers(language) if language else get_all_escalation_triggers()
    return any(trigger in lowered for trigger in triggers)


def looks_like_simulated_action(assistant_text: str | None, user_text: str | None) -> bool:
    """
    Heuristic for a reply that claims (or pretends to run) an action the
    user asked for without any tool having been executed.
    """
    if not assistant_text or not user_text:
        return False
    if not USER_ACTION_REQUEST_PATTERN.search(user_text):
        return False
    lowered = assistant_text.lower()
    claims = any(re.search(rf"\b{re.escape(word)}\b", lowered) for word in ACTION_CLAIM_WORDS)
    simulates = any(phrase in lowered for phrase in TOOL_SIMULATION_PHRASES)
    return claims or simulates


__all__ = [
    "ACTION_CLAIM_WORDS",
    "CLARIFICATION_PHRASES",
    "ESCALATION_TRIGGERS",
    "FAREWELL_MESSAGES",
    "STRONG_ENDING_PHRASES",
    "TOOL_SIMULATION_PHRASES",
    "USER_ACTION_REQUEST_PATTERN",
    "WEAK_ENDING_PHRASES",
    "get_all_escalation_triggers",
    "get_clarification_phrases",
    "get_escalation_triggers",
    "looks_like_simulated_action",
    "wants_human",
]
