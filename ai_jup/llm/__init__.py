"""Chat model factory, circuit breaker and stream adapter."""

from ai_jup.llm.adapter import LLMStreamAdapter, ToolCallAssembler, TurnResult
from ai_jup.llm.circuit_breaker import CircuitBreaker, get_circuit_breaker
from ai_jup.llm.factory import PROVIDER_BASE_URLS, get_llm, list_supported_providers

__all__ = [
    "PROVIDER_BASE_URLS",
    "CircuitBreaker",
    "LLMStreamAdapter",
    "ToolCallAssembler",
    "TurnResult",
    "get_circuit_breaker",
    "get_llm",
    "list_supported_providers",
]
