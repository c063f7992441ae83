"""Push channel: a server-sent events subscription that signals job and log changes.

LiveUpdateChannel keeps at most one subscription open. Any message that
announces a change triggers a background refresh. On a transport error the
subscription is closed and not reopened; the owner decides when to open a
new one (next login or manual refresh).
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

from pydantic import ValidationError as ModelValidationError

from backend.client import BackendClient
from backend.models import PushMessage
from core.exceptions import AuthError, SoundTraceError, TransportError

logger = logging.getLogger(__name__)

MessageHandler = Callable[[PushMessage], Awaitable[None]]
ErrorHandler = Callable[[SoundTraceError], Awaitable[None]]


class PushSubscription(Protocol):
    """One open push stream. Callbacks are set before start()."""

    on_message: MessageHandler | None
    on_error: ErrorHandler | None

    @property
    def closed(self) -> bool: ...

    async def start(self) -> None: ...

    async def close(self) -> None: ...


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the data payload of each event in a text/event-stream.

    Multi-line ``data:`` fields are joined with newlines; comments and the
    other SSE fields are ignored.
    """
    data_lines: list[str] = []
    async for line in lines:
        if line == "":
            if data_lines:
                yield "\n".join(data_lines)
                data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data_lines.append(value[1:] if value.startswith(" ") else value)
    if data_lines:
        yield "\n".join(data_lines)


def parse_push_message(data: str) -> PushMessage | None:
    """Decode one event payload; unknown or malformed payloads yield None."""
    try:
        payload = json.loads(data)
    except ValueError:
        logger.error(f"Malformed push message: {data[:200]}")
        return None
    if not isinstance(payload, dict):
        return None
    try:
        return PushMessage.model_validate(payload)
    except ModelValidationError:
        logger.debug(f"Ignoring push message of type {payload.get('type')!r}")
        return None


class SseSubscription:
    """Reads the backend's event stream in a background task."""

    def __init__(self, client: BackendClient, path: str = "/api/job-updates/subscribe"):
        self.client = client
        self.path = path
        self.on_message: MessageHandler | None = None
        self.on_error: ErrorHandler | None = None
        self._task: asyncio.Task | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        if self._closed:
            raise TransportError("Subscription already closed")
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="push-subscription")

    async def _dispatch(self, message: PushMessage) -> None:
        if self.on_message is None:
            return
        try:
            await self.on_message(message)
        except Exception:
            logger.exception(f"Push message handler failed for {message.type.value}")

    async def _run(self) -> None:
        try:
            async with self.client.stream(self.path) as response:
                logger.info(f"Push channel opened: {self.path}")
                async for data in iter_sse_data(response.aiter_lines()):
                    if self._closed:
                        return
                    message = parse_push_message(data)
                    if message is not None:
                        logger.debug(f"Push message: {message.type.value}")
                        await self._dispatch(message)
            if not self._closed:
                raise TransportError("Push channel closed by server")
        except SoundTraceError as e:
            if self._closed:
                return
            logger.error(f"Push channel error: {e.message}")
            if self.on_error is not None:
                await self.on_error(e)

    async def close(self) -> None:
        self._closed = True
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task() or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Push channel closed")


class LiveUpdateChannel:
    """Owns the session's single push subscription."""

    def __init__(
        self,
        subscription_factory: Callable[[], PushSubscription],
        on_update: MessageHandler,
        on_auth_error: Callable[[AuthError], Awaitable[None]] | None = None,
    ):
        self.subscription_factory = subscription_factory
        self.on_update = on_update
        self.on_auth_error = on_auth_error
        self._subscription: PushSubscription | None = None

    @property
    def is_open(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    async def open(self) -> None:
        """Open the subscription unless one is already open."""
        if self.is_open:
            logger.debug("Push channel already open")
            return
        subscription = self.subscription_factory()
        subscription.on_message = self._handle_message
        subscription.on_error = self._handle_error
        self._subscription = subscription
        await subscription.start()

    async def _handle_message(self, message: PushMessage) -> None:
        await self.on_update(message)

    async def _handle_error(self, error: SoundTraceError) -> None:
        logger.warning(f"Closing push channel after error: {error.message}")
        await self.close()
        if isinstance(error, AuthError) and self.on_auth_error is not None:
            await self.on_auth_error(error)

    async def close(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None and not subscription.closed:
            await subscription.close()
