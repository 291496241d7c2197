"""Authentication for the ai-jup API.

Supports two authentication methods (checked in order):
1. JWT Bearer token (Authorization: Bearer <token>)
2. API key header (X-API-Key)

The authenticated identity is the *principal*. Execution sessions are
owned by principals, and a prompt may only name sessions its principal
owns.

If API_KEY is empty:
- Production: authentication fails closed (rejects all requests)
- Development/testing: every caller is the ``anonymous`` principal
"""

import logging
import secrets
import time
from typing import Annotated, cast

import jwt
from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

# Import module (not function) so monkeypatching in tests works correctly.
import ai_jup.settings as _settings_mod
from ai_jup.exceptions import ConfigurationError
from ai_jup.settings import Settings

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

JWT_ALGORITHM = "HS256"
ANONYMOUS_PRINCIPAL = "anonymous"
API_KEY_PRINCIPAL = "api_key"


def _get_jwt_secret(settings: Settings) -> str:
    """Get the JWT signing secret.

    Production requires an explicit JWT_SECRET. Development derives a
    stable secret from the API key.
    """
    configured = settings.jwt_secret.get_secret_value()
    if configured:
        if settings.environment == "production" and len(configured) < 32:
            logger.warning(
                "JWT_SECRET is shorter than 32 characters. Use a cryptographically "
                "random secret for production (e.g. `openssl rand -hex 32`)."
            )
        return configured

    if settings.environment == "production":
        raise ConfigurationError(
            "JWT_SECRET must be set in production. Generate one with: openssl rand -hex 32"
        )

    api_key = settings.api_key.get_secret_value()
    if api_key:
        return f"ai-jup-jwt-{api_key}-auto"
    return "ai-jup-dev-jwt-secret"


def create_jwt_token(principal: str, settings: Settings | None = None) -> str:
    """Create a JWT token for the given principal.

    Args:
        principal: Identity to encode as ``sub``
        settings: Optional settings override

    Returns:
        Encoded JWT token string
    """
    settings = settings or _settings_mod.get_settings()
    now = int(time.time())
    payload = {
        "sub": principal,
        "iat": now,
        "exp": now + settings.jwt_expiry_hours * 3600,
    }
    return jwt.encode(payload, _get_jwt_secret(settings), algorithm=JWT_ALGORITHM)


def decode_jwt_token(token: str, settings: Settings | None = None) -> dict | None:
    """Decode and validate a JWT token; None if invalid or expired."""
    settings = settings or _settings_mod.get_settings()
    try:
        return jwt.decode(token, _get_jwt_secret(settings), algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None


def _is_auth_configured(settings: Settings) -> bool:
    return bool(settings.api_key.get_secret_value() or settings.jwt_secret.get_secret_value())


def _extract_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


async def verify_api_key(
    request: Request,
    header_key: str | None = Security(api_key_header),
) -> str:
    """Authenticate the caller and return its principal.

    Raises:
        HTTPException: 401 Unauthorized if authentication fails
    """
    settings = _settings_mod.get_settings()

    if not _is_auth_configured(settings):
        if settings.environment == "production":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication is not configured. Set API_KEY.",
            )
        return ANONYMOUS_PRINCIPAL

    bearer_token = _extract_bearer_token(request)
    if bearer_token:
        payload = decode_jwt_token(bearer_token, settings)
        if payload and "sub" in payload:
            return cast("str", payload["sub"])
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
        )

    configured_key = settings.api_key.get_secret_value()
    if configured_key and header_key:
        if secrets.compare_digest(header_key, configured_key):
            return API_KEY_PRINCIPAL
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key.",
        )

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required. Provide a JWT token or API key.",
    )


# Dependency for endpoints that require authentication
RequirePrincipal = Annotated[str, Depends(verify_api_key)]
