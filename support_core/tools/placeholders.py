"""
Detection of hallucinated or template argument values.

Models fill required parameters they do not know with things like
"<customer email>", "TBD" or the parameter's own description. Such values
must never reach a webhook. `detect_placeholder` returns a short reason
when a value looks made up and None when it looks real.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from enum import Enum

from ..settings import settings

PLACEHOLDER_VALUES = frozenset(
    {
        "placeholder",
        "todo",
        "tbd",
        "tba",
        "unknown",
        "pending",
        "n/a",
        "na",
        "none",
        "null",
        "nil",
        "undefined",
        "value",
        "example",
        "sample",
        "string",
        "xxx",
        "unspecified",
        "not specified",
    }
)

PLACEHOLDER_PHRASES = (
    "not given",
    "not provided",
    "not specified",
    "not available",
    "will provide",
    "will be provided",
    "to be determined",
    "to be confirmed",
    "to be provided",
    "ask the user",
    "ask user",
    "fill in",
    "insert here",
    "enter here",
)

_TEMPLATE_RES = (
    re.compile(r"^<[^<>]*>$"),
    re.compile(r"^\[[^\[\]]*\]$"),
    re.compile(r"^\{\{.*\}\}$"),
)
_FILLER_RE = re.compile(r"^(?:x+|\.+|\?+|[-_*#]+)$")
_WORD_RE = re.compile(r"[a-z0-9']+")
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%d-%m-%Y",
    "%B %d, %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
)
RELATIVE_DATES = {"today": 0, "tomorrow": 1}


class FieldKind(str, Enum):
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    TIME = "time"
    OTHER = "other"


def _name_tokens(field_name: str) -> list[str]:
    spaced = _CAMEL_RE.sub("_", field_name or "")
    return [t for t in re.split(r"[^A-Za-z0-9]+", spaced.lower()) if t]


def field_kind(field_name: str) -> FieldKind:
    tokens = _name_tokens(field_name)
    if any(t in ("email", "mail") for t in tokens):
        return FieldKind.EMAIL
    if any(t in ("phone", "mobile", "tel", "telephone", "cell") for t in tokens):
        return FieldKind.PHONE
    if any(t in ("date", "dob", "birthdate", "birthday") for t in tokens):
        return FieldKind.DATE
    if any(t == "time" for t in tokens):
        return FieldKind.TIME
    return FieldKind.OTHER


def parse_date(value: str) -> date | None:
    text = value.strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def resolve_relative_date(value: str, today: date | None = None) -> str | None:
    """ISO date for "today"/"tomorrow", None for anything else."""
    offset = RELATIVE_DATES.get(value.strip().lower())
    if offset is None:
        return None
    return ((today or date.today()) + timedelta(days=offset)).isoformat()


def _echoes_description(normalized: str, field_name: str, description: str) -> bool:
    name_words = " ".join(_name_tokens(field_name))
    if name_words and normalized in (name_words, field_name.lower()):
        return True

    desc = description.strip().lower().rstrip(".")
    if not desc:
        return False
    if normalized == desc:
        return True

    value_words = _WORD_RE.findall(normalized)
    if len(value_words) >= 2 and normalized in desc:
        return True

    significant = {w for w in value_words if len(w) >= 3}
    if len(significant) >= 3:
        desc_words = set(_WORD_RE.findall(desc))
        shared = len(significant & desc_words)
        return shared / len(significant) >= 0.8
    return False


def _field_rule(
    kind: FieldKind, normalized: str, raw: str, today: date, window_years: int
) -> str | None:
    if kind is FieldKind.EMAIL:
        local, sep, domain = raw.strip().partition("@")
        if not sep or not local or "." not in domain.strip(".") or " " in raw.strip():
            return "invalid email address"
    elif kind is FieldKind.PHONE:
        if not any(ch.isdigit() for ch in raw):
            return "phone number must contain digits"
    elif kind is FieldKind.DATE:
        if normalized in RELATIVE_DATES:
            return None
        parsed = parse_date(raw)
        if parsed is None:
            return "unrecognized date"
        # Leap days clamp to Feb 28 in non-leap years.
        try:
            low = today.replace(year=today.year - window_years)
            high = today.replace(year=today.year + window_years)
        except ValueError:
            low = today.replace(year=today.year - window_years, day=28)
            high = today.replace(year=today.year + window_years, day=28)
        if not low <= parsed <= high:
            return "date outside the accepted range"
    elif kind is FieldKind.TIME:
        if ":" not in raw and not any(ch.isdigit() for ch in raw):
            return "time must contain a digit or a colon"
    return None


def detect_placeholder(
    value: object,
    *,
    field_name: str = "",
    description: str = "",
    today: date | None = None,
    date_window_years: int | None = None,
) -> str | None:
    """
    Reason why `value` looks like a placeholder, or None.

    Only strings are inspected; numbers, booleans and structures pass.
    """
    if not isinstance(value, str):
        return None
    normalized = " ".join(value.strip().lower().split())
    if not normalized:
        return "empty value"

    if normalized in PLACEHOLDER_VALUES or _FILLER_RE.match(normalized):
        return f"placeholder value '{value.strip()}'"
    if any(pattern.match(normalized) for pattern in _TEMPLATE_RES):
        return "template placeholder"
    for phrase in PLACEHOLDER_PHRASES:
        if phrase in normalized:
            return f"placeholder phrase '{phrase}'"
    if _echoes_description(normalized, field_name, description):
        return "value repeats the parameter description"

    window = settings.placeholder_date_window_years if date_window_years is None else date_window_years
    return _field_rule(field_kind(field_name), normalized, value, today or date.today(), window)


__all__ = [
    "FieldKind",
    "PLACEHOLDER_PHRASES",
    "PLACEHOLDER_VALUES",
    "detect_placeholder",
    "field_kind",
    "parse_date",
    "resolve_relative_date",
]
