from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from ..logging_config import logger
from ..schemas import ParamSpec, ParamType, ToolDefinition
from .placeholders import (
    FieldKind,
    detect_placeholder,
    field_kind,
    parse_date,
    resolve_relative_date,
)
from .schema import param_specs

_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(?:\d+\.\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_NUMERIC_TYPES = {ParamType.NUMBER, ParamType.INTEGER}
# Types whose string values may be reinterpreted as numbers / booleans.
_COERCIBLE_TYPES = {ParamType.NUMBER, ParamType.INTEGER, ParamType.BOOLEAN, ParamType.UNKNOWN}


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    coerced_args: dict[str, Any] = field(default_factory=dict)


def coerce_value(value: Any, param_type: ParamType) -> Any:
    """
    Reinterpret string values the model produced for typed parameters.

    String-typed parameters are left alone so identifiers like "00123"
    keep their form.
    """
    if not isinstance(value, str) or param_type not in _COERCIBLE_TYPES:
        return value
    text = value.strip()
    lowered = text.lower()
    if lowered in ("true", "false") and param_type in (ParamType.BOOLEAN, ParamType.UNKNOWN):
        return lowered == "true"
    if param_type is ParamType.BOOLEAN:
        return value
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        number = float(text)
        if param_type is ParamType.INTEGER and number.is_integer():
            return int(number)
        return number
    return value


def _type_problem(value: Any, spec: ParamSpec) -> str | None:
    if spec.type in _NUMERIC_TYPES:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return "expected a number"
        if spec.type is ParamType.INTEGER and not float(value).is_integer():
            return "expected an integer"
    elif spec.type is ParamType.BOOLEAN and not isinstance(value, bool):
        return "expected a boolean"
    return None


def _normalize_date(value: Any, spec: ParamSpec, today: date) -> Any:
    if not isinstance(value, str) or field_kind(spec.name) is not FieldKind.DATE:
        return value
    relative = resolve_relative_date(value, today)
    if relative is not None:
        return relative
    parsed = parse_date(value)
    return parsed.isoformat() if parsed is not None else value


def validate(
    tool: ToolDefinition,
    args: dict[str, Any] | None,
    *,
    today: date | None = None,
    date_window_years: int | None = None,
) -> ValidationResult:
    """
    Check tool arguments against the tool's schema.

    Required parameters that are missing or look made up are errors;
    optional parameters that look made up are silently dropped from
    `coerced_args`. Unknown parameters pass through untouched.
    """
    args = dict(args) if isinstance(args, dict) else {}
    today = today or date.today()
    specs = {spec.name: spec for spec in param_specs(tool)}

    errors: list[str] = []
    coerced: dict[str, Any] = {}

    for name, spec in specs.items():
        if spec.required and args.get(name) is None:
            errors.append(f"missing required parameter: {name}")

    for name, value in args.items():
        spec = specs.get(name)
        if spec is None:
            coerced[name] = value
            continue
        if value is None:
            continue

        reason = detect_placeholder(
            value,
            field_name=name,
            description=spec.description,
            today=today,
            date_window_years=date_window_years,
        )
        if reason is None:
            value = coerce_value(value, spec.type)
            reason = _type_problem(value, spec)

        if reason is not None:
            if spec.required:
                errors.append(f"invalid value for required parameter {name}: {reason}")
            else:
                logger.debug("dropping optional parameter %s for %s: %s", name, tool.name, reason)
            continue

        coerced[name] = _normalize_date(value, spec, today)

    return ValidationResult(valid=not errors, errors=errors, coerced_args=coerced)


__all__ = ["ValidationResult", "coerce_value", "validate"]
