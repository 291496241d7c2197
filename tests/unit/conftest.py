"""Unit-test conftest: process-wide state isolation.

Circuit breakers are shared per provider for the whole process; every
unit test starts from closed breakers so one test's failures cannot trip
another's model calls.
"""

from __future__ import annotations

import pytest

from ai_jup.llm.circuit_breaker import reset_circuit_breakers


@pytest.fixture(autouse=True)
def _fresh_circuit_breakers():
    reset_circuit_breakers()
    yield
    reset_circuit_breakers()
