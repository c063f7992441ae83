"""Composition root for the client core."""

import logging
from collections.abc import Awaitable, Callable

import httpx

from audio.decoder import AudioDecoder, FfmpegAudioDecoder
from audio.intake import UploadIntakeController
from backend.auth import AuthClient
from backend.client import BackendClient
from backend.jobs import JobService
from backend.models import PushMessage
from backend.recognition import RecognitionClient
from backend.scan_logs import ScanLogService
from config.settings import Settings, get_settings
from core.exceptions import AuthError
from jobs.state_machine import ScanJobStateMachine
from live.channel import LiveUpdateChannel, PushSubscription, SseSubscription
from streams.service import StreamCountService
from sync.orchestrator import RefreshMode, RefreshOrchestrator
from sync.session import Session
from sync.submission import ScanSubmitter

logger = logging.getLogger(__name__)


class SoundTraceClient:
    """Wires the collaborators, state machine, push channel and intake together.

    mount() loads data, restores any in-flight job and opens the push
    channel; unmount() releases everything. A forced logout runs the same
    teardown.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        decoder: AudioDecoder | None = None,
        subscription_factory: Callable[[], PushSubscription] | None = None,
        on_logout: Callable[[], Awaitable[None]] | None = None,
    ):
        self.settings = settings or get_settings()
        self.client = BackendClient.from_settings(self.settings, token=token, transport=transport)

        self.session = Session(self.client, AuthClient(self.client), on_logout=on_logout)
        self.logs = ScanLogService(self.client)
        self.jobs = JobService(self.client)
        self.recognition = RecognitionClient(self.client)
        self.streams = StreamCountService(self.client)

        self.state_machine = ScanJobStateMachine(
            self.jobs,
            poll_interval=self.settings.poll_interval_seconds,
            on_auth_error=self._on_auth_error,
        )
        self.orchestrator = RefreshOrchestrator(
            self.logs, self.jobs, session=self.session, state_machine=self.state_machine
        )
        self.state_machine.on_terminal = self.orchestrator.background_refresh

        self.channel = LiveUpdateChannel(
            subscription_factory or self._sse_subscription,
            on_update=self._on_push_message,
            on_auth_error=self._on_auth_error,
        )
        self.intake = UploadIntakeController.from_settings(
            self.settings, decoder or FfmpegAudioDecoder.from_settings(self.settings)
        )
        self.submitter = ScanSubmitter(
            self.recognition,
            self.jobs,
            self.state_machine,
            self.orchestrator,
            session=self.session,
        )
        self.session.add_teardown(self._teardown)
        self.mounted = False

    def _sse_subscription(self) -> PushSubscription:
        return SseSubscription(self.client, self.settings.push_channel_path)

    async def _on_auth_error(self, error: AuthError) -> None:
        await self.session.handle_error(error)

    async def _on_push_message(self, message: PushMessage) -> None:
        await self.orchestrator.refresh(RefreshMode.BACKGROUND)

    async def mount(self) -> None:
        """Load data, resume an in-flight job and open the push channel."""
        if not self.session.authenticated:
            logger.info("Not authenticated; skipping mount")
            return
        self.mounted = True
        await self.orchestrator.refresh(RefreshMode.INITIAL)
        if not self.session.authenticated:
            return
        await self.state_machine.resume_on_mount()
        if not self.session.authenticated:
            return
        await self.channel.open()
        logger.info("Client mounted")

    async def refresh(self) -> bool:
        """Manual refresh; also reopens a push channel that closed after an error."""
        refreshed = await self.orchestrator.refresh(RefreshMode.MANUAL)
        if refreshed and self.mounted and self.session.authenticated and not self.channel.is_open:
            await self.channel.open()
        return refreshed

    async def _teardown(self) -> None:
        self.mounted = False
        await self.channel.close()
        self.state_machine.stop()
        self.orchestrator.reset()

    async def unmount(self) -> None:
        """Release the push channel, poll loop, decoder and HTTP client."""
        await self._teardown()
        await self.intake.close()
        await self.client.close()
        logger.info("Client unmounted")

    async def __aenter__(self) -> "SoundTraceClient":
        await self.mount()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.unmount()
