"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from hookrelay.config import RetryDefaults, Settings
from hookrelay.models import WebhookSubscription
from hookrelay.storage import WebhookStorage

# Add tests directory to path so helpers can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from helpers import make_subscription  # noqa: E402


@pytest.fixture
def test_settings() -> Settings:
    """Settings for an in-process deployment."""
    return Settings(
        env="test",
        qdrant_location=":memory:",
        collection_prefix="test",
        worker_id="worker-a",
        admin_api_key=None,
        retry_defaults=RetryDefaults(
            max_attempts=3,
            base_delay_seconds=60,
            timeout_seconds=5,
            max_delay_seconds=3600,
        ),
        log_format="text",
    )


@pytest.fixture
async def storage():
    """Create an in-memory storage instance for testing.

    Uses qdrant-client's local mode with in-memory storage.
    No external Qdrant server is required.
    """
    store = WebhookStorage(prefix="test", location=":memory:")
    await store.initialize()

    yield store

    await store.close()


@pytest.fixture
def subscription() -> WebhookSubscription:
    return make_subscription()
