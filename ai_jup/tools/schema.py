"""Tool schemas offered to the model, built from function descriptions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ai_jup.tools.sanitizer import is_identifier

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ai_jup.conversation.models import FunctionInfo

_JSON_TYPES = {
    "str": "string",
    "string": "string",
    "int": "integer",
    "integer": "integer",
    "float": "number",
    "number": "number",
    "bool": "boolean",
    "boolean": "boolean",
    "list": "array",
    "array": "array",
    "tuple": "array",
    "dict": "object",
    "object": "object",
}

_MAX_DESCRIPTION = 1024


def _parameters_schema(info: FunctionInfo) -> dict[str, Any]:
    if info.parameters is None:
        return {"type": "object", "properties": {}, "additionalProperties": True}

    properties: dict[str, Any] = {}
    required: list[str] = []
    for name, param in info.parameters.items():
        prop: dict[str, Any] = {}
        json_type = _JSON_TYPES.get((param.type or "").lower())
        if json_type:
            prop["type"] = json_type
        description = param.description or (f"Python type: {param.type}" if param.type else "")
        if description:
            prop["description"] = description
        properties[name] = prop
        if param.required or (param.required is None and param.default is None):
            required.append(name)

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def build_tool_schemas(functions: Mapping[str, FunctionInfo]) -> list[dict[str, Any]]:
    """OpenAI-style function tool definitions, one per valid function name."""
    tools: list[dict[str, Any]] = []
    for name, info in functions.items():
        if not is_identifier(name):
            continue
        description = info.docstring or info.signature or f"Call {name}"
        if info.signature and info.docstring:
            description = f"{info.signature}\n\n{info.docstring}"
        tools.append(
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": description[:_MAX_DESCRIPTION],
                    "parameters": _parameters_schema(info),
                },
            }
        )
    return tools
