from __future__ import annotations

import json
from typing import Any, Sequence

from ..schemas import ToolDefinition
from .schema import EMPTY_PARAMETERS_SCHEMA, optional_params, required_params

ANTHROPIC_PROVIDERS = {"anthropic", "claude"}
SHORT_DESCRIPTION_CHARS = 50
PROMPT_EXAMPLE_TOOLS = 2


def _description(tool: ToolDefinition) -> str:
    return tool.description or f"Execute {tool.name} action"


def format_tools_for_native(
    tools: Sequence[ToolDefinition], provider: str | None = None
) -> list[dict[str, Any]]:
    """
    Tool declarations for backends with structured function calling.

    Anthropic-style backends take the schema as `input_schema`; everything
    else gets the OpenAI `{"type": "function", "function": {...}}` shape.
    """
    declarations: list[dict[str, Any]] = []
    for tool in tools:
        schema = tool.parameters or dict(EMPTY_PARAMETERS_SCHEMA)
        if (provider or "").lower() in ANTHROPIC_PROVIDERS:
            declarations.append(
                {"name": tool.name, "description": _description(tool), "input_schema": schema}
            )
        else:
            declarations.append(
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": _description(tool),
                        "parameters": schema,
                    },
                }
            )
    return declarations


def format_tools_for_prompt(tools: Sequence[ToolDefinition]) -> str:
    """Text block appended to the system prompt for backends without function calling."""
    if not tools:
        return ""

    lines = []
    for tool in tools:
        required = required_params(tool)
        optional = optional_params(tool)
        required_str = f" REQUIRED({','.join(required)})" if required else ""
        optional_str = f" optional({','.join(optional)})" if optional else ""
        short = (tool.description or "")[:SHORT_DESCRIPTION_CHARS].replace("\n", " ")
        lines.append(f"{tool.name}{required_str}{optional_str}: {short}")

    examples = []
    for tool in tools[:PROMPT_EXAMPLE_TOOLS]:
        names = required_params(tool) or optional_params(tool)[:2]
        if not names:
            continue
        example_args = {name: "value" for name in names}
        examples.append(f"USE_TOOL: {tool.name}\nPARAMETERS: {json.dumps(example_args)}")

    block = [
        "",
        "Tools:",
        "\n".join(lines),
        "",
        "IMPORTANT: Before calling a tool, check that all REQUIRED parameters are available. "
        "If any are missing, ask the user for them first, then call the tool.",
        "",
        "**CRITICAL FORMAT** - You MUST use this EXACT format (no variations):",
        "USE_TOOL: tool_name",
        'PARAMETERS: {"param":"value"}',
        "",
        'Do NOT use formats like "tool_name: {...}" - use the EXACT format above.',
    ]
    if examples:
        block.extend(["", "Examples:", "\n\n".join(examples)])
    return "\n".join(block)


__all__ = ["format_tools_for_native", "format_tools_for_prompt"]
