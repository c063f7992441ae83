"""Authenticated HTTP transport for the SoundTrace backend.

This is the one place where HTTP status codes and server error messages are
inspected. Every failure leaves here as an AuthError, UpstreamError or
TransportError.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from backend.ratelimit import get_rate_limiter, get_semaphore
from config.settings import Settings
from core.exceptions import AuthError, TransportError, UpstreamError, UpstreamErrorCode
from core.sentry import add_breadcrumb
from core.telemetry import record_api_call, record_api_time

logger = logging.getLogger(__name__)

USER_AGENT = "SoundTraceCore/0.1"

AUTH_STATUS_CODES = frozenset({401, 403})
AUTH_MESSAGE_PATTERNS = ("token is not valid", "not authenticated", "authorization denied")


def is_auth_message(message: str | None) -> bool:
    """Whether a server message indicates an invalid or expired session."""
    if not message:
        return False
    lowered = message.lower()
    return any(pattern in lowered for pattern in AUTH_MESSAGE_PATTERNS)


def error_message(response: httpx.Response) -> str:
    """Extract the server's error message, falling back to the status line."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    reason = response.reason_phrase or "Unknown error"
    return f"Request failed with status {response.status_code}: {reason}"


def classify_response(response: httpx.Response) -> None:
    """Raise the typed error for a failed response; return for success.

    Raises:
        AuthError: 401/403, or a message indicating an invalid session
        UpstreamError: Any other 4xx/5xx
    """
    if response.status_code < 400:
        return

    message = error_message(response)
    if response.status_code in AUTH_STATUS_CODES or is_auth_message(message):
        raise AuthError(message, status_code=response.status_code)

    if response.status_code == 429:
        code = UpstreamErrorCode.RATE_LIMITED
    elif response.status_code == 402:
        code = UpstreamErrorCode.CREDITS_EXHAUSTED
    else:
        code = UpstreamErrorCode.UPSTREAM_ERROR
    raise UpstreamError(message, code=code, status_code=response.status_code)


class BackendClient:
    """Bearer-token client for the SoundTrace REST backend.

    Requests share one httpx.AsyncClient, are throttled per event loop and
    carry a client-side timeout. 429 responses are retried with exponential
    backoff before being reported as rate_limited.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 25.0,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "BackendClient":
        return cls(
            settings.api_base_url,
            token=token,
            timeout=settings.request_timeout,
            max_retries=settings.backend_max_retries,
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        files: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Send a request and return the successful response.

        Args:
            method: HTTP method
            path: Path relative to the base URL (e.g., "/api/jobs/J1")
            params: Optional query parameters
            json: Optional JSON body
            files: Optional multipart files
            timeout: Per-call override of the client-side timeout

        Returns:
            httpx.Response with a status below 400

        Raises:
            AuthError: If the session is not valid
            UpstreamError: If the backend reports a failure
            TransportError: If the backend could not be reached in time
        """
        if not self.token:
            raise AuthError("Not authenticated", status_code=401)

        client = await self._get_client()
        semaphore = get_semaphore()
        rate_limiter = get_rate_limiter()
        operation = f"{method} {path}"

        async with semaphore:
            for attempt in range(self.max_retries + 1):
                await rate_limiter.acquire()
                add_breadcrumb("backend", operation, {"attempt": attempt + 1})
                record_api_call()
                start = time.perf_counter()

                try:
                    response = await client.request(
                        method,
                        path,
                        params=params,
                        json=json,
                        files=files,
                        headers=self._headers(),
                        timeout=timeout if timeout is not None else self.timeout,
                    )
                except httpx.TimeoutException as e:
                    logger.error(f"Backend request timed out: {operation}")
                    add_breadcrumb("backend", operation, {"error": "timeout"}, level="error")
                    raise TransportError(
                        f"Request to {path} timed out", timeout=True, details={"path": path}
                    ) from e
                except httpx.RequestError as e:
                    logger.error(f"Backend request failed: {operation}: {e}")
                    add_breadcrumb("backend", operation, {"error": str(e)}, level="error")
                    raise TransportError(
                        f"Could not reach backend: {e}", details={"path": path}
                    ) from e
                finally:
                    record_api_time((time.perf_counter() - start) * 1000)

                if response.status_code == 429 and attempt < self.max_retries:
                    # Exponential backoff: 1s, 2s, 4s...
                    delay = 2**attempt
                    logger.warning(
                        f"Backend rate limit hit, retrying in {delay}s "
                        f"(attempt {attempt + 1}/{self.max_retries + 1})"
                    )
                    await asyncio.sleep(delay)
                    continue

                logger.debug(f"{operation} -> {response.status_code}")
                if response.status_code >= 400:
                    add_breadcrumb(
                        "backend",
                        operation,
                        {"status_code": response.status_code},
                        level="warning",
                    )
                    if response.status_code == 429:
                        logger.error("Backend rate limit hit, max retries exhausted")
                classify_response(response)
                return response

        # Unreachable: the loop always returns or raises
        raise UpstreamError(f"{operation} failed", code=UpstreamErrorCode.UPSTREAM_ERROR)

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``path`` and decode its JSON body (None for an empty body)."""
        response = await self.request("GET", path, params=params)
        return json_or_none(response)

    async def post_json(self, path: str, json: Any = None) -> Any:
        """POST ``json`` to ``path`` and decode the JSON reply (None for an empty body)."""
        response = await self.request("POST", path, json=json)
        return json_or_none(response)

    async def delete(self, path: str) -> None:
        await self.request("DELETE", path)

    @asynccontextmanager
    async def stream(self, path: str) -> AsyncIterator[httpx.Response]:
        """Open a long-lived streaming GET, e.g. the push channel.

        The read timeout is disabled; only connecting is bounded by the
        client-side timeout. Failures are classified like any other request.
        """
        if not self.token:
            raise AuthError("Not authenticated", status_code=401)

        client = await self._get_client()
        headers = self._headers()
        headers["Accept"] = "text/event-stream"
        add_breadcrumb("push", f"GET {path}")

        try:
            async with client.stream(
                "GET",
                path,
                headers=headers,
                timeout=httpx.Timeout(self.timeout, read=None),
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    classify_response(response)
                yield response
        except httpx.TimeoutException as e:
            raise TransportError(f"Push channel {path} timed out", timeout=True) from e
        except httpx.RequestError as e:
            raise TransportError(f"Push channel {path} failed: {e}") from e


def json_or_none(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    try:
        return response.json()
    except ValueError as e:
        raise UpstreamError(
            f"Invalid JSON from backend: {e}", status_code=response.status_code
        ) from e
