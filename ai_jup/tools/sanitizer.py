"""Argument sanitizer: untrusted model output to validated keyword arguments.

The model's argument payload never becomes source text. It is checked
here and handed to the execution backend as a plain JSON-typed structure;
the receiving side performs a keyword call against the named function.
"""

from __future__ import annotations

import keyword
import math
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ai_jup.exceptions import InvalidArguments

if TYPE_CHECKING:
    from collections.abc import Set

IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

DEFAULT_MAX_DEPTH = 32


def is_identifier(name: object) -> bool:
    """True when ``name`` is a plain ASCII identifier and not a keyword."""
    return (
        isinstance(name, str)
        and IDENTIFIER_PATTERN.fullmatch(name) is not None
        and not keyword.iskeyword(name)
    )


def _copy_json_value(tool: str, path: str, value: Any, depth: int, max_depth: int) -> Any:
    """Deep-copy a JSON value, rejecting anything JSON cannot represent."""
    if depth > max_depth:
        raise InvalidArguments(tool, f"'{path}' is nested deeper than {max_depth} levels")
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidArguments(tool, f"'{path}' is not a finite number")
        return value
    if isinstance(value, (list, tuple)):
        return [
            _copy_json_value(tool, f"{path}[{i}]", item, depth + 1, max_depth)
            for i, item in enumerate(value)
        ]
    if isinstance(value, Mapping):
        copied: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise InvalidArguments(tool, f"'{path}' has a non-string key")
            copied[key] = _copy_json_value(tool, f"{path}.{key}", item, depth + 1, max_depth)
        return copied
    raise InvalidArguments(tool, f"'{path}' has unsupported type {type(value).__name__}")


def sanitize_arguments(
    tool: str,
    payload: Any,
    *,
    known_parameters: Set[str] | None = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> dict[str, Any]:
    """Validate an untrusted argument payload for a keyword call.

    All rules are checked before anything is returned; a single bad key
    rejects the whole call.

    Args:
        tool: Tool name, already matched against the identifier pattern.
        payload: Decoded JSON arguments from the model.
        known_parameters: Declared parameter names, or None when unknown.
        max_depth: Maximum nesting depth of argument values.

    Returns:
        A fresh dict of keyword arguments with native JSON-typed values.

    Raises:
        InvalidArguments: Shape, key, or value violations.
    """
    if not is_identifier(tool):
        raise InvalidArguments(str(tool), "tool name is not a valid identifier")

    if not isinstance(payload, Mapping):
        raise InvalidArguments(
            tool, f"arguments must be a JSON object, got {type(payload).__name__}"
        )

    bad_keys = sorted(repr(k) for k in payload if not is_identifier(k))
    if bad_keys:
        raise InvalidArguments(tool, f"argument names are not identifiers: {', '.join(bad_keys)}")

    if known_parameters is not None:
        unknown = sorted(k for k in payload if k not in known_parameters)
        if unknown:
            raise InvalidArguments(tool, f"unexpected arguments: {', '.join(unknown)}")

    return {
        key: _copy_json_value(tool, key, value, 1, max_depth) for key, value in payload.items()
    }
