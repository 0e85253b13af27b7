"""
Tool-call extraction, validation and formatting.
"""

from .formatting import format_tools_for_native, format_tools_for_prompt
from .placeholders import detect_placeholder
from .scanner import normalize_native_tool_calls, parse_tool_calls, strip_tool_directives
from .schema import param_specs, schema_problems
from .validation import ValidationResult, validate

__all__ = [
    "ValidationResult",
    "detect_placeholder",
    "format_tools_for_native",
    "format_tools_for_prompt",
    "normalize_native_tool_calls",
    "param_specs",
    "schema_problems",
    "parse_tool_calls",
    "strip_tool_directives",
    "validate",
]
