"""Unit tests for HookRelay configuration."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from hookrelay.config import RetryDefaults, Settings


class TestRetryDefaults:
    """Tests for RetryDefaults model."""

    def test_defaults(self):
        defaults = RetryDefaults()
        assert defaults.max_attempts == 3
        assert defaults.base_delay_seconds == 60.0
        assert defaults.timeout_seconds == 30.0
        assert defaults.max_delay_seconds == 3600.0

    def test_ceiling_below_base(self):
        with pytest.raises(ValidationError):
            RetryDefaults(base_delay_seconds=120, max_delay_seconds=60)

    def test_attempt_bounds(self):
        with pytest.raises(ValidationError):
            RetryDefaults(max_attempts=0)
        with pytest.raises(ValidationError):
            RetryDefaults(max_attempts=11)


class TestSettings:
    """Tests for Settings."""

    def test_default_settings(self):
        settings = Settings()
        assert settings.qdrant_url == "http://localhost:6333"
        assert settings.collection_prefix == "hookrelay"
        assert settings.user_agent == "HookRelay-Webhook/1.0"
        assert settings.response_body_max_chars == 1000
        assert settings.claim_lease_seconds == 120.0

    def test_worker_id_unique_per_instance(self):
        assert Settings().worker_id != Settings().worker_id

    def test_env_prefix(self):
        with patch.dict(os.environ, {"HOOKRELAY_LOG_LEVEL": "DEBUG"}):
            assert Settings().log_level == "DEBUG"

    def test_env_location(self):
        with patch.dict(os.environ, {"HOOKRELAY_QDRANT_LOCATION": ":memory:"}):
            assert Settings().qdrant_location == ":memory:"

    def test_env_nested_retry_defaults(self):
        with patch.dict(os.environ, {"HOOKRELAY_RETRY_DEFAULTS__MAX_ATTEMPTS": "5"}):
            assert Settings().retry_defaults.max_attempts == 5

    def test_log_formats(self):
        assert Settings(log_format="text").log_format == "text"
        with pytest.raises(ValidationError):
            Settings(log_format="xml")

    def test_poll_interval_positive(self):
        with pytest.raises(ValidationError):
            Settings(retry_poll_interval_seconds=0)


class TestSecuritySettings:
    """Admin API key requirements."""

    def test_key_optional_in_development(self):
        assert Settings(env="development").admin_api_key is None

    def test_production_requires_key(self):
        with pytest.raises(ValidationError, match="HOOKRELAY_ADMIN_API_KEY"):
            Settings(env="production", admin_api_key=None)

    def test_production_with_key(self):
        settings = Settings(env="production", admin_api_key="k" * 32)
        assert settings.admin_api_key == "k" * 32
