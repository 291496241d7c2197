"""System prompt for prompt cells."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ai_jup.conversation.models import ContextBundle

BASE_INSTRUCTIONS = """\
You are an AI assistant embedded in a Jupyter notebook. The user writes \
prompts in notebook cells and sees your answer rendered as Markdown \
directly below the prompt.

- Ground your answer in the notebook code and variable values shown below.
- When functions are available as tools, call them to inspect live \
interpreter state instead of guessing. Tool arguments must be JSON values.
- Keep code examples in Python and consistent with the notebook."""


def build_system_prompt(context: ContextBundle) -> str:
    """Assemble the system prompt from the context bundle."""
    sections = [BASE_INSTRUCTIONS]

    if context.preceding_code.strip():
        sections.append(
            "## Preceding code\n\n```python\n" + context.preceding_code.strip() + "\n```"
        )

    if context.variables:
        lines = []
        for name, var in context.variables.items():
            type_hint = f" ({var.type})" if var.type else ""
            lines.append(f"- `{name}`{type_hint}: {var.repr}")
        sections.append("## Referenced variables\n\n" + "\n".join(lines))

    if context.functions:
        lines = []
        for name, fn in context.functions.items():
            signature = fn.signature or f"{name}(...)"
            doc = f": {fn.docstring.strip().splitlines()[0]}" if fn.docstring.strip() else ""
            lines.append(f"- `{signature}`{doc}")
        sections.append("## Available tools\n\n" + "\n".join(lines))

    return "\n\n".join(sections)
