"""FastAPI application factory for ai-jup."""

from ai_jup.api.main import create_app, get_app

__all__ = [
    "create_app",
    "get_app",
]
