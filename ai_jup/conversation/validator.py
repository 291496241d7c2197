"""Request validation for ``POST /prompt``.

Runs to completion before the response commits to event-stream framing,
so every failure here is reported as a plain structured error.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from ai_jup.conversation.models import PromptRequest, PromptRequestBody
from ai_jup.exceptions import InvalidRequest, Unauthorized
from ai_jup.prompt.parser import process_prompt, strip_prompt_prefix

if TYPE_CHECKING:
    from ai_jup.execution.sessions import SessionRegistry
    from ai_jup.settings import Settings

logger = logging.getLogger(__name__)


def _field_from_error(error: ValidationError) -> str:
    """Name the first offending field (top-level key) of a pydantic error."""
    for detail in error.errors():
        loc = detail.get("loc") or ()
        if loc:
            return ".".join(str(part) for part in loc)
    return "body"


def validate_prompt_request(
    payload: Any,
    *,
    principal: str,
    sessions: SessionRegistry,
    settings: Settings,
) -> PromptRequest:
    """Turn a raw JSON payload into an accepted PromptRequest.

    Args:
        payload: Decoded request body (untrusted, any JSON value).
        principal: Authenticated caller identity.
        sessions: Registry of execution-session owners.
        settings: Application settings (defaults and hard caps).

    Returns:
        The accepted, immutable request with its prompt already processed.

    Raises:
        InvalidRequest: A field is missing, mistyped, or out of range.
        Unauthorized: ``session_id`` belongs to a different principal.
    """
    if not isinstance(payload, dict):
        raise InvalidRequest("Request body must be a JSON object", field="body")

    try:
        body = PromptRequestBody.model_validate(payload)
    except ValidationError as e:
        field = _field_from_error(e)
        raise InvalidRequest(f"Invalid value for '{field}'", field=field) from e

    raw_prompt = strip_prompt_prefix(body.prompt).strip()
    if not raw_prompt:
        raise InvalidRequest("prompt must be non-empty text", field="prompt")
    if len(raw_prompt) > settings.max_prompt_chars:
        raise InvalidRequest(
            f"prompt exceeds {settings.max_prompt_chars} characters", field="prompt"
        )

    max_steps = settings.default_max_steps if body.max_steps is None else body.max_steps
    if not 0 <= max_steps <= settings.max_steps_limit:
        raise InvalidRequest(
            f"max_steps must be between 0 and {settings.max_steps_limit}",
            field="max_steps",
        )

    model = (body.model or settings.llm_model).strip()
    if not model:
        raise InvalidRequest("model must be non-empty text", field="model")

    context = body.context
    if context is not None:
        if context.total_items() > settings.max_context_items:
            raise InvalidRequest(
                f"context has more than {settings.max_context_items} variables and functions",
                field="context",
            )
        if context.total_chars() > settings.max_context_chars:
            raise InvalidRequest(
                f"context exceeds {settings.max_context_chars} characters",
                field="context",
            )

    session_id = body.session_id or None
    if session_id is not None and sessions.owner_of(session_id) != principal:
        # Unknown and foreign sessions are indistinguishable to the caller
        logger.warning("Rejected prompt for session not owned by caller")
        raise Unauthorized("Execution session does not belong to the caller")

    prompt = process_prompt(raw_prompt, context.variable_values() if context else {})
    if not prompt:
        raise InvalidRequest("prompt has no text besides function references", field="prompt")

    kwargs: dict[str, Any] = {}
    if context is not None:
        kwargs["context"] = context
    return PromptRequest(
        prompt=prompt,
        raw_prompt=raw_prompt,
        model=model,
        session_id=session_id,
        max_steps=max_steps,
        principal=principal,
        **kwargs,
    )
