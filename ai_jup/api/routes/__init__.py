"""API routes.

``api_router`` carries the authenticated endpoints; ``public_router``
carries health checks that must answer without credentials.
"""

from fastapi import APIRouter

from ai_jup.api.routes import health, prompt, sessions

api_router = APIRouter()
api_router.include_router(prompt.router)
api_router.include_router(sessions.router)

public_router = APIRouter()
public_router.include_router(health.router)

__all__ = ["api_router", "public_router"]
