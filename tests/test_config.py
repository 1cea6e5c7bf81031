from unittest.mock import patch

import pytest

from pricecheck.config import DEFAULT_API_BASE_URL, load_settings

ENV_NAMES = [
    "PRICE_DISCOVERY_API_BASE_URL",
    "POLL_INTERVAL_SECONDS",
    "STDIO_POLL_BUDGET_SECONDS",
    "HTTP_POLL_BUDGET_SECONDS",
    "OPENAI_API_KEY",
    "HTTP_PORT",
    "WIDGET_BASE_URL",
    "LANGFUSE_PUBLIC_KEY",
    "LANGFUSE_SECRET_KEY",
    "LANGFUSE_HOST",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    with patch("pricecheck.config.load_dotenv"):
        yield monkeypatch


class TestLoadSettings:
    """Test suite for environment configuration."""

    def test_defaults(self):
        settings = load_settings()
        assert settings.api_base_url == DEFAULT_API_BASE_URL
        assert settings.poll_interval_seconds == 5.0
        assert settings.stdio_poll_budget_seconds == 55.0
        assert settings.http_poll_budget_seconds == 90.0
        assert settings.openai_api_key is None
        assert settings.http_port == 2091

    def test_overrides(self, clean_env):
        clean_env.setenv("PRICE_DISCOVERY_API_BASE_URL", "http://localhost:8000/api/")
        clean_env.setenv("POLL_INTERVAL_SECONDS", "2.5")
        clean_env.setenv("HTTP_PORT", "9000")
        clean_env.setenv("OPENAI_API_KEY", "sk-test")

        settings = load_settings()

        assert settings.api_base_url == "http://localhost:8000/api"
        assert settings.poll_interval_seconds == 2.5
        assert settings.http_port == 9000
        assert settings.openai_api_key == "sk-test"

    def test_invalid_number_uses_default(self, clean_env):
        clean_env.setenv("HTTP_POLL_BUDGET_SECONDS", "soon")
        assert load_settings().http_poll_budget_seconds == 90.0

    def test_stdio_budget_is_clamped(self, clean_env):
        clean_env.setenv("STDIO_POLL_BUDGET_SECONDS", "120")
        assert load_settings().stdio_poll_budget_seconds == 55.0

    def test_empty_api_key_is_none(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", "")
        assert load_settings().openai_api_key is None

    def test_langfuse_settings(self, clean_env):
        clean_env.setenv("LANGFUSE_PUBLIC_KEY", "pk")
        clean_env.setenv("LANGFUSE_SECRET_KEY", "sk")
        clean_env.setenv("LANGFUSE_HOST", "https://langfuse.example")

        settings = load_settings()

        assert settings.langfuse_public_key == "pk"
        assert settings.langfuse_secret_key == "sk"
        assert settings.langfuse_host == "https://langfuse.example"
