"""Shared test fixtures for ai-jup.

Provides common fixtures used across the unit tests.
"""

import pytest
from pydantic import SecretStr

from ai_jup.settings import Settings

# =============================================================================
# SETTINGS
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Provide test settings with safe defaults."""
    return Settings(
        _env_file=None,
        environment="testing",
        debug=True,
        llm_provider="openai",
        llm_model="test-model",
        llm_api_key=SecretStr("test-api-key"),
        llm_retry_delays=[0.0],
        api_key=SecretStr(""),
        jwt_secret=SecretStr(""),
        prompt_rate_limit="1000/minute",
        disconnect_poll_seconds=0.05,
    )


@pytest.fixture
def mock_settings(test_settings: Settings, monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Mock get_settings() to return test settings."""
    from ai_jup import settings

    monkeypatch.setattr(settings, "get_settings", lambda: test_settings)
    return test_settings
