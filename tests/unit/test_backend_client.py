"""Unit tests for backend/client.py."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from backend.client import BackendClient, classify_response, error_message, is_auth_message
from core.exceptions import AuthError, TransportError, UpstreamError, UpstreamErrorCode


def _client(handler, token="tok-123", max_retries=2):
    return BackendClient(
        "https://api.test", token=token, max_retries=max_retries, transport=httpx.MockTransport(handler)
    )


class TestIsAuthMessage:
    @pytest.mark.parametrize(
        "message",
        ["Token is not valid", "User not authenticated.", "Authorization denied: expired"],
    )
    def test_auth_patterns(self, message):
        assert is_auth_message(message)

    @pytest.mark.parametrize("message", [None, "", "Job not found", "Quota exceeded"])
    def test_other_messages(self, message):
        assert not is_auth_message(message)


class TestClassifyResponse:
    def test_success_passes(self):
        classify_response(httpx.Response(200, json={}))

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_status_codes(self, status):
        with pytest.raises(AuthError) as exc_info:
            classify_response(httpx.Response(status, json={"message": "nope"}))
        assert exc_info.value.status_code == status

    def test_auth_message_on_other_status(self):
        with pytest.raises(AuthError):
            classify_response(httpx.Response(400, json={"message": "Token is not valid"}))

    @pytest.mark.parametrize(
        "status,code",
        [
            (429, UpstreamErrorCode.RATE_LIMITED),
            (402, UpstreamErrorCode.CREDITS_EXHAUSTED),
            (404, UpstreamErrorCode.UPSTREAM_ERROR),
            (500, UpstreamErrorCode.UPSTREAM_ERROR),
        ],
    )
    def test_upstream_codes(self, status, code):
        with pytest.raises(UpstreamError) as exc_info:
            classify_response(httpx.Response(status, json={"message": "failed"}))
        assert exc_info.value.code == code
        assert exc_info.value.status_code == status

    def test_error_message_prefers_body(self):
        assert error_message(httpx.Response(500, json={"error": "db down"})) == "db down"

    def test_error_message_falls_back_to_status_line(self):
        message = error_message(httpx.Response(502, text="<html>bad gateway</html>"))
        assert message == "Request failed with status 502: Bad Gateway"


class TestRequest:
    @pytest.mark.asyncio
    async def test_sends_bearer_token(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        client = _client(handler)
        assert await client.get_json("/api/jobs") == {"ok": True}
        assert seen[0].headers["Authorization"] == "Bearer tok-123"
        await client.close()

    @pytest.mark.asyncio
    async def test_no_token_fails_without_request(self):
        handler = AsyncMock()
        client = _client(handler, token=None)
        with pytest.raises(AuthError):
            await client.get_json("/api/jobs")
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_body_is_none(self):
        client = _client(lambda request: httpx.Response(204))
        assert await client.get_json("/api/jobs/active") is None

    @pytest.mark.asyncio
    async def test_invalid_json_is_upstream_error(self):
        client = _client(lambda request: httpx.Response(200, text="not json"))
        with pytest.raises(UpstreamError, match="Invalid JSON"):
            await client.get_json("/api/jobs")

    @pytest.mark.asyncio
    async def test_timeout_is_transport_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransportError) as exc_info:
            await _client(handler).get_json("/api/jobs/J1")
        assert exc_info.value.timeout is True

    @pytest.mark.asyncio
    async def test_connection_failure_is_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransportError) as exc_info:
            await _client(handler).get_json("/api/jobs/J1")
        assert exc_info.value.timeout is False

    @pytest.mark.asyncio
    @patch("backend.client.asyncio.sleep", new_callable=AsyncMock)
    async def test_retries_429_then_succeeds(self, mock_sleep):
        responses = [httpx.Response(429), httpx.Response(429), httpx.Response(200, json=[])]
        client = _client(lambda request: responses.pop(0))
        assert await client.get_json("/api/scanlogs") == []
        assert [c.args[0] for c in mock_sleep.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    @patch("backend.client.asyncio.sleep", new_callable=AsyncMock)
    async def test_429_after_retries_is_rate_limited(self, mock_sleep):
        client = _client(lambda request: httpx.Response(429, json={"message": "slow down"}))
        with pytest.raises(UpstreamError) as exc_info:
            await client.get_json("/api/scanlogs")
        assert exc_info.value.code == UpstreamErrorCode.RATE_LIMITED
        assert mock_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_401_is_auth_error(self):
        client = _client(lambda request: httpx.Response(401, json={"message": "expired"}))
        with pytest.raises(AuthError):
            await client.post_json("/api/jobs/J1/pause")

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        client = _client(lambda request: httpx.Response(200, json={}))
        await client.get_json("/x")
        await client.close()
        await client.close()
        assert client._client is None


class TestStream:
    @pytest.mark.asyncio
    async def test_streams_lines(self):
        def handler(request):
            assert request.headers["Accept"] == "text/event-stream"
            return httpx.Response(200, content=b'data: {"type": "job_update"}\n\n')

        client = _client(handler)
        async with client.stream("/api/job-updates/subscribe") as response:
            lines = [line async for line in response.aiter_lines()]
        assert lines[0] == 'data: {"type": "job_update"}'

    @pytest.mark.asyncio
    async def test_stream_auth_failure(self):
        client = _client(lambda request: httpx.Response(401, json={"message": "expired"}))
        with pytest.raises(AuthError):
            async with client.stream("/api/job-updates/subscribe"):
                pass

    @pytest.mark.asyncio
    async def test_stream_without_token(self):
        client = _client(lambda request: httpx.Response(200), token=None)
        with pytest.raises(AuthError):
            async with client.stream("/api/job-updates/subscribe"):
                pass


class TestFromSettings:
    def test_uses_settings(self, test_settings):
        client = BackendClient.from_settings(test_settings, token="t")
        assert client.base_url == "https://api.test"
        assert client.timeout == test_settings.request_timeout
        assert client.max_retries == test_settings.backend_max_retries
