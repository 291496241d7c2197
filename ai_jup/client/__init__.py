"""Notebook-side client: streams prompt answers and renders them."""

from ai_jup.client.consumer import PromptClient, PromptClientError
from ai_jup.client.render import MarkdownRenderer, StreamRenderer
from ai_jup.client.tracker import ToolCallTracker

__all__ = [
    "MarkdownRenderer",
    "PromptClient",
    "PromptClientError",
    "StreamRenderer",
    "ToolCallTracker",
]
