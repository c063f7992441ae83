"""Shared test fixtures for pytest."""

from unittest.mock import Mock

import pytest
import pytest_asyncio

from backend.client import BackendClient
from backend.ratelimit import reset_rate_limiting
from config.settings import Settings
from streams.memory_cache import clear_all_caches
from tests.fakes import FakeBackend, FakeDecoder, FakeSubscriptionFactory


@pytest.fixture
def test_settings():
    """Settings with no real credentials, fast polling and a small snippet format."""
    return Settings(
        api_base_url="https://api.test",
        poll_interval_seconds=0.01,
        target_sample_rate=8000,
        target_channels=2,
        sentry_dsn=None,
        posthog_api_key=None,
        enable_telemetry=False,
        acrcloud_host=None,
        acrcloud_access_key=None,
        acrcloud_access_secret=None,
    )


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest_asyncio.fixture
async def backend_client(fake_backend, test_settings):
    """BackendClient wired to the fake backend with a valid token."""
    client = BackendClient.from_settings(
        test_settings, token="tok-123", transport=fake_backend.transport()
    )
    yield client
    await client.close()


@pytest.fixture
def fake_decoder():
    return FakeDecoder()


@pytest.fixture
def subscriptions():
    return FakeSubscriptionFactory()


@pytest.fixture
def mock_posthog_client():
    """Mock PostHog client."""
    client = Mock()
    client.capture = Mock()
    client.flush = Mock()
    client.shutdown = Mock()
    return client


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Clear in-memory caches, rate limiting state and request stats between tests."""
    from core.telemetry import _request_stats_var

    stats_token = _request_stats_var.set(None)
    yield
    clear_all_caches()
    reset_rate_limiting()
    _request_stats_var.reset(stats_token)
