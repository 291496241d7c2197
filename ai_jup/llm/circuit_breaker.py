"""Per-provider circuit breaker for model API calls."""

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Stops calling a provider after repeated failures.

    After ``failure_threshold`` consecutive failed turns the circuit opens
    and new turns fail fast until ``cooldown_seconds`` have passed.
    """

    def __init__(
        self,
        provider: str,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60,
        time_func: Callable[[], float] | None = None,
    ):
        """Initialize circuit breaker.

        Args:
            provider: Provider name, used in log messages
            failure_threshold: Consecutive failures before opening the circuit
            cooldown_seconds: Seconds the circuit stays open
            time_func: Clock returning seconds (default: time.monotonic).
                       Inject a fake clock for deterministic testing.
        """
        self.provider = provider
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._time_func = time_func or time.monotonic
        self.failure_count = 0
        self.opened_at: float | None = None

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None

    def record_success(self) -> None:
        self.failure_count = 0
        self.opened_at = None

    def record_failure(self) -> None:
        self.failure_count += 1
        if self.failure_count >= self.failure_threshold and self.opened_at is None:
            self.opened_at = self._time_func()
            logger.warning(
                "Circuit breaker for %s opened after %d failures, cooling down %.0fs",
                self.provider,
                self.failure_count,
                self.cooldown_seconds,
            )

    def can_attempt(self) -> bool:
        """Whether a call may be attempted now."""
        if self.opened_at is None:
            return True
        if self._time_func() - self.opened_at >= self.cooldown_seconds:
            logger.info("Circuit breaker cooldown expired for %s", self.provider)
            self.record_success()
            return True
        return False


_circuit_breakers: dict[str, CircuitBreaker] = {}


def get_circuit_breaker(provider: str) -> CircuitBreaker:
    """Get or create the shared circuit breaker for a provider."""
    if provider not in _circuit_breakers:
        _circuit_breakers[provider] = CircuitBreaker(provider)
    return _circuit_breakers[provider]


def reset_circuit_breakers() -> None:
    """Forget all breaker state (tests, settings reload)."""
    _circuit_breakers.clear()
