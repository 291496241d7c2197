"""Context gathering from the notebook model.

Walks the authoritative notebook document (nbformat-shaped cell mappings
indexed by position), never a rendered or virtualized view of it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ai_jup.conversation.models import ContextBundle, FunctionInfo, VariableInfo

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from ai_jup.prompt.parser import ParsedPrompt

logger = logging.getLogger(__name__)


def cell_source(cell: Mapping[str, Any]) -> str:
    """Return a cell's source; nbformat allows a string or a list of lines."""
    source = cell.get("source", "")
    if isinstance(source, list):
        return "".join(str(part) for part in source)
    return str(source)


def preceding_code_cells(cells: Sequence[Mapping[str, Any]], active_index: int) -> list[str]:
    """Sources of code cells strictly before ``active_index``."""
    if active_index < 0 or active_index > len(cells):
        raise IndexError(f"active_index {active_index} outside notebook of {len(cells)} cells")
    return [
        cell_source(cell)
        for cell in cells[:active_index]
        if cell.get("cell_type") == "code" and cell_source(cell).strip()
    ]


def gather_context(
    cells: Sequence[Mapping[str, Any]],
    active_index: int,
    parsed: ParsedPrompt,
    *,
    variable_lookup: Callable[[str], VariableInfo | None],
    function_lookup: Callable[[str], FunctionInfo | None],
    max_chars: int | None = None,
) -> ContextBundle:
    """Build the context bundle for the prompt cell at ``active_index``.

    Only referenced variables and functions are looked up; names the
    interpreter does not know are skipped. When ``max_chars`` is given the
    oldest preceding cells are dropped first until the bundle fits.

    Args:
        cells: Notebook cells in document order.
        active_index: Position of the prompt cell.
        parsed: Names referenced by the prompt.
        variable_lookup: Returns a variable snapshot, or None if undefined.
        function_lookup: Returns a function description, or None if undefined.
        max_chars: Hard cap on the bundle's total characters.

    Returns:
        The context bundle to send with the prompt request.
    """
    variables: dict[str, VariableInfo] = {}
    for name in parsed.variables:
        info = variable_lookup(name)
        if info is not None:
            variables[name] = info

    functions: dict[str, FunctionInfo] = {}
    for name in parsed.functions:
        info = function_lookup(name)
        if info is not None:
            functions[name] = info

    code_cells = preceding_code_cells(cells, active_index)
    bundle = ContextBundle(
        preceding_code="\n\n".join(code_cells), variables=variables, functions=functions
    )
    if max_chars is None:
        return bundle

    while code_cells and bundle.total_chars() > max_chars:
        code_cells.pop(0)
        bundle = bundle.model_copy(update={"preceding_code": "\n\n".join(code_cells)})
    if bundle.total_chars() > max_chars:
        logger.warning("Context still exceeds %d characters without preceding code", max_chars)
    return bundle
