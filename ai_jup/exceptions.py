"""ai-jup exception hierarchy.

Every error carries a correlation_id and an ``error_type`` name that is
reported to clients, either as a structured pre-stream error body or as an
in-band ``error`` frame.

Usage:
    from ai_jup.exceptions import InvalidArguments, UnknownTool

    try:
        arguments = sanitize_arguments(name, payload)
    except InvalidArguments as e:
        logger.info("Rejected call", extra={"correlation_id": e.correlation_id})
"""

import uuid


class AiJupError(Exception):
    """Base exception for all ai-jup application errors."""

    error_type = "InternalError"

    def __init__(self, message: str, *, correlation_id: str | None = None):
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.message = message
        super().__init__(message)


class InvalidRequest(AiJupError):
    """A prompt request field is missing, malformed or out of range."""

    error_type = "InvalidRequest"

    def __init__(self, message: str, *, field: str, **kwargs):
        self.field = field
        super().__init__(message, **kwargs)


class Unauthorized(AiJupError):
    """The caller does not own the execution session it named."""

    error_type = "Unauthorized"


class ExecutionBackendUnavailable(AiJupError):
    """The execution backend (or the named session) cannot be reached."""

    error_type = "ExecutionBackendUnavailable"


class ConfigurationError(AiJupError):
    """Errors from application configuration."""

    error_type = "ConfigurationError"


class ToolError(AiJupError):
    """Base for failures attributable to one tool call."""

    def __init__(self, message: str, *, tool: str, **kwargs):
        self.tool = tool
        super().__init__(message, **kwargs)


class UnknownTool(ToolError):
    """The tool name is not one of the session's available callables."""

    error_type = "UnknownTool"

    def __init__(self, tool: str, **kwargs):
        super().__init__(f"Unknown tool: {tool}", tool=tool, **kwargs)


class InvalidArguments(ToolError):
    """The model-supplied argument payload was rejected before execution."""

    error_type = "InvalidArguments"

    def __init__(self, tool: str, detail: str, **kwargs):
        self.detail = detail
        super().__init__(f"Invalid arguments for {tool}: {detail}", tool=tool, **kwargs)


class ExecutionFailure(ToolError):
    """The backend raised (or timed out) while running a validated call."""

    error_type = "ExecutionFailure"

    def __init__(
        self,
        message: str,
        *,
        tool: str,
        remote_type: str | None = None,
        timeout: bool = False,
        **kwargs,
    ):
        self.remote_type = remote_type
        self.timeout = timeout
        super().__init__(message, tool=tool, **kwargs)


class UpstreamTransportFailure(AiJupError):
    """The model API was unreachable, errored mid-stream, or timed out."""

    error_type = "UpstreamTransportFailure"

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        timeout: bool = False,
        **kwargs,
    ):
        self.provider = provider
        self.timeout = timeout
        super().__init__(message, **kwargs)
