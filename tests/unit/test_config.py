"""Unit tests for configuration module."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from purchase_scanner.config import Settings, get_settings


class TestSettings:
    """Test suite for Settings class."""

    def test_default_settings(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test that default settings are properly initialized."""
        monkeypatch.chdir(tmp_path)
        settings = Settings()

        assert settings.llm_provider == "ollama"
        assert settings.ollama_host == "http://localhost:11434"
        assert settings.rate_limit_retries == 3
        assert settings.backoff_base_seconds == 2.0
        assert settings.backoff_multiplier == 2.0
        assert settings.excerpt_max_chars == 12000
        assert settings.default_days_back == 30
        assert settings.rule_tables_path is None
        assert settings.log_level == "INFO"
        assert settings.debug is False

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test loading settings from environment variables."""
        monkeypatch.setenv("PURCHASE_SCANNER_OLLAMA_HOST", "http://custom:8080")
        monkeypatch.setenv("PURCHASE_SCANNER_LLM_PROVIDER", "anthropic")
        monkeypatch.setenv("PURCHASE_SCANNER_RATE_LIMIT_RETRIES", "5")
        monkeypatch.setenv("PURCHASE_SCANNER_DEBUG", "true")

        # Clear the cache to ensure fresh settings
        get_settings.cache_clear()

        settings = get_settings()

        assert settings.ollama_host == "http://custom:8080"
        assert settings.llm_provider == "anthropic"
        assert settings.rate_limit_retries == 5
        assert settings.debug is True

        # Clean up
        get_settings.cache_clear()

    def test_unknown_provider_rejected(self) -> None:
        """Test that only supported oracle providers validate."""
        with pytest.raises(ValidationError):
            Settings(llm_provider="openai")

    def test_get_settings_returns_cached_instance(self) -> None:
        """Test that get_settings returns the same cached instance."""
        get_settings.cache_clear()

        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2

        # Clean up
        get_settings.cache_clear()
