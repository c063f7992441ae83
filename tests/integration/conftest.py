"""Integration test fixtures.

Provides a fully wired SoundTraceClient against the scriptable fake backend,
and the recognition API with a real AcrCloudService whose HTTP traffic goes
to an in-process fake of the identify endpoint.
"""

import httpx
import pytest
import pytest_asyncio

from recognition.acrcloud import AcrCloudService
from sync.app import SoundTraceClient
from tests.factories import ACRCLOUD_SUCCESS


class FakeAcrCloud:
    """Answers /v1/identify with a queued body; the last one repeats."""

    def __init__(self):
        self.bodies: list[dict] = [ACRCLOUD_SUCCESS]
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = self.bodies.pop(0) if len(self.bodies) > 1 else self.bodies[0]
        return httpx.Response(200, json=body)


@pytest_asyncio.fixture
async def soundtrace(test_settings, fake_backend, fake_decoder, subscriptions):
    """Mounted-ready client core talking to the fake backend."""
    client = SoundTraceClient(
        test_settings,
        token="tok-123",
        transport=fake_backend.transport(),
        decoder=fake_decoder,
        subscription_factory=subscriptions,
    )
    yield client
    await client.unmount()


@pytest.fixture
def fake_acrcloud():
    return FakeAcrCloud()


@pytest_asyncio.fixture
async def app_client(test_settings, fake_acrcloud):
    """httpx AsyncClient for the API with a real AcrCloudService and no PostHog."""
    from httpx import ASGITransport, AsyncClient
    from main import app
    from core.dependencies import get_acrcloud_service, get_posthog_client
    from config.settings import get_settings

    service = AcrCloudService(
        "identify-eu-west-1.acrcloud.com",
        "key-1",
        "secret-1",
        transport=httpx.MockTransport(fake_acrcloud.handler),
    )
    app.dependency_overrides[get_acrcloud_service] = lambda: service
    app.dependency_overrides[get_posthog_client] = lambda: None
    app.dependency_overrides[get_settings] = lambda: test_settings

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()
    await service.close()
