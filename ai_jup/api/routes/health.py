"""Health endpoint (no authentication)."""

from fastapi import APIRouter

from ai_jup import __version__
from ai_jup.api.deps import Services

router = APIRouter(tags=["System"])


@router.get("/health")
async def health(services: Services) -> dict[str, str]:
    return {
        "status": "healthy",
        "version": __version__,
        "execution_backend": services.backend.name,
    }
