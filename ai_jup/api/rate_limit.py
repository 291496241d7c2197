"""Rate limiting for API endpoints.

Provides a shared Limiter instance that route modules import to apply
per-endpoint limits. The global default covers every endpoint; the prompt
endpoint, which starts paid model calls, is limited by PROMPT_RATE_LIMIT.

Usage in route modules:
    from ai_jup.api.rate_limit import limiter, prompt_rate_limit

    @router.post("/prompt")
    @limiter.limit(prompt_rate_limit)
    async def prompt(request: Request, ...):
        ...
"""

from slowapi import Limiter
from starlette.requests import Request

import ai_jup.settings as _settings_mod


def _get_real_client_ip(request: Request) -> str:
    """Extract the client IP, respecting X-Forwarded-For from a proxy.

    Args:
        request: Starlette/FastAPI request object.

    Returns:
        Client IP address string.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For: client, proxy1, proxy2; the leftmost is the client
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "127.0.0.1"


def prompt_rate_limit() -> str:
    return _settings_mod.get_settings().prompt_rate_limit


limiter = Limiter(
    key_func=_get_real_client_ip,
    default_limits=["120/minute"],
)

# Maximum request body size (bytes); context bundles are capped well below it.
MAX_REQUEST_BODY_BYTES = 2_097_152  # 2 MB
