"""Parser for ``$variable`` and ``&function`` references in prompts.

- ``$name`` references an interpreter variable; its repr is substituted
  into the prompt text.
- ``&name`` exposes an interpreter function to the model as a tool; the
  reference itself is removed from the prompt text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

IDENTIFIER = r"[A-Za-z_][A-Za-z0-9_]*"

_VARIABLE_PATTERN = re.compile(rf"\$({IDENTIFIER})")
# ``&`` must not be glued to a preceding word ("a&b" is not a reference)
_FUNCTION_PATTERN = re.compile(rf"(?<!\w)&({IDENTIFIER})")
_PROMPT_PREFIX = re.compile(r"^\*\*AI Prompt:\*\*\s*", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ParsedPrompt:
    """Names referenced by a prompt, deduplicated in first-seen order."""

    variables: list[str] = field(default_factory=list)
    functions: list[str] = field(default_factory=list)


def _unique(matches: list[str]) -> list[str]:
    return list(dict.fromkeys(matches))


def parse_prompt(text: str) -> ParsedPrompt:
    """Extract variable and function references from a prompt."""
    return ParsedPrompt(
        variables=_unique(_VARIABLE_PATTERN.findall(text)),
        functions=_unique(_FUNCTION_PATTERN.findall(text)),
    )


def substitute_variables(text: str, values: Mapping[str, str]) -> str:
    """Replace ``$name`` references with their values.

    Substitution is a single pass: values are inserted verbatim and a
    ``$name`` appearing inside a value is never expanded. Unknown names
    are left untouched.
    """
    return _VARIABLE_PATTERN.sub(lambda m: values.get(m.group(1), m.group(0)), text)


def remove_function_references(text: str) -> str:
    """Drop ``&name`` references and normalize whitespace."""
    return _WHITESPACE.sub(" ", _FUNCTION_PATTERN.sub("", text)).strip()


def strip_prompt_prefix(text: str) -> str:
    """Remove the ``**AI Prompt:**`` marker inserted by the cell template."""
    return _PROMPT_PREFIX.sub("", text)


def process_prompt(text: str, values: Mapping[str, str]) -> str:
    """Substitute variables, then remove function references."""
    result = substitute_variables(text, values)
    result = remove_function_references(result)
    return result.strip()
