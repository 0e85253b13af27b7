from __future__ import annotations

from typing import Any

from ..schemas import ParamSpec, ParamType, ToolDefinition

EMPTY_PARAMETERS_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}, "required": []}


def _properties(schema: Any) -> dict[str, Any]:
    if not isinstance(schema, dict):
        return {}
    properties = schema.get("properties")
    return properties if isinstance(properties, dict) else {}


def _required(schema: Any) -> list[str]:
    if not isinstance(schema, dict):
        return []
    required = schema.get("required")
    if not isinstance(required, list):
        return []
    return [str(r) for r in required]


def param_specs(tool: ToolDefinition) -> list[ParamSpec]:
    """Flatten a tool's JSON-schema parameters into ParamSpecs, in schema order."""
    properties = _properties(tool.parameters)
    required = set(_required(tool.parameters))

    specs: list[ParamSpec] = []
    for name, prop in properties.items():
        prop = prop if isinstance(prop, dict) else {}
        enum = prop.get("enum")
        specs.append(
            ParamSpec(
                name=str(name),
                type=ParamType.parse(prop.get("type")),
                required=str(name) in required,
                description=str(prop.get("description") or ""),
                enum=enum if isinstance(enum, list) else None,
            )
        )

    # Required names with no property entry are still required.
    known = {s.name for s in specs}
    for name in _required(tool.parameters):
        if name not in known:
            specs.append(ParamSpec(name=name, required=True))
            known.add(name)
    return specs


def required_params(tool: ToolDefinition) -> list[str]:
    return _required(tool.parameters)


def optional_params(tool: ToolDefinition) -> list[str]:
    required = set(_required(tool.parameters))
    return [name for name in _properties(tool.parameters) if name not in required]


def schema_problems(schema: Any) -> list[str]:
    """
    Structural problems of a parameters schema; empty when usable.
    A missing schema means "no parameters" and is fine.
    """
    if schema is None:
        return []
    if not isinstance(schema, dict):
        return ["schema must be an object"]
    problems: list[str] = []
    if schema.get("type", "object") != "object":
        problems.append('schema type should be "object"')
    if "properties" in schema and not isinstance(schema["properties"], dict):
        problems.append("schema properties should be an object")
    if "required" in schema and not isinstance(schema["required"], list):
        problems.append("schema required should be an array")
    return problems


__all__ = [
    "EMPTY_PARAMETERS_SCHEMA",
    "optional_params",
    "param_specs",
    "required_params",
    "schema_problems",
]
