"""ai-jup: LLM prompts inside notebooks, with live interpreter state as tools."""

__version__ = "0.1.0"
