"""Refresh orchestration: keeps the local log and job mirrors in sync with the backend."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from backend.jobs import JobService
from backend.models import ScanJob, ScanLogEntry
from backend.scan_logs import ScanLogService
from core.exceptions import AuthError, SoundTraceError
from jobs.state_machine import ScanJobStateMachine
from sync.session import Session

logger = logging.getLogger(__name__)

DEFAULT_LOAD_ERROR = "Could not load app data."


class RefreshMode(str, Enum):
    INITIAL = "initial"
    BACKGROUND = "background"
    MANUAL = "manual"

    @property
    def foreground(self) -> bool:
        return self is not RefreshMode.BACKGROUND


@dataclass
class AppDataState:
    """What the UI renders: logs, jobs, the loading indicator and the error banner."""

    logs: list[ScanLogEntry] = field(default_factory=list)
    jobs: list[ScanJob] = field(default_factory=list)
    loading: bool = False
    error: str | None = None
    last_refreshed: datetime | None = None
    refresh_count: int = 0


def _timestamp(value: datetime | None) -> float:
    return value.timestamp() if value is not None else float("-inf")


def sort_logs(logs: list[ScanLogEntry]) -> list[ScanLogEntry]:
    """Newest scan first."""
    return sorted(logs, key=lambda entry: _timestamp(entry.scan_date), reverse=True)


def sort_jobs(jobs: list[ScanJob]) -> list[ScanJob]:
    """Newest job first."""
    return sorted(jobs, key=lambda job: _timestamp(job.created_at), reverse=True)


class RefreshOrchestrator:
    """Fetches logs and jobs together and replaces the local mirrors.

    Safe to call from several triggers at once. Foreground refreshes share a
    reference-counted loading flag; background refreshes that arrive while
    one is in flight join it instead of starting another fetch. Mirrors are
    replaced wholesale, so the last fetch to complete wins.
    """

    def __init__(
        self,
        logs: ScanLogService,
        jobs: JobService,
        session: Session | None = None,
        state_machine: ScanJobStateMachine | None = None,
        state: AppDataState | None = None,
    ):
        self.logs = logs
        self.jobs = jobs
        self.session = session
        self.state_machine = state_machine
        self.state = state or AppDataState()
        self._foreground_in_flight = 0
        self._background: asyncio.Task | None = None

    async def refresh(self, mode: RefreshMode = RefreshMode.BACKGROUND) -> bool:
        """Refresh logs and jobs.

        Args:
            mode: initial/manual show the loading indicator and replace the
                error; background does neither and only logs failures

        Returns:
            True if the mirrors were replaced
        """
        if mode.foreground:
            return await self._run(mode)

        if self._background is None or self._background.done():
            self._background = asyncio.create_task(self._run(mode), name="background-refresh")
        else:
            logger.debug("Joining in-flight background refresh")
        return await asyncio.shield(self._background)

    async def _fetch(self) -> tuple[list[ScanLogEntry], list[ScanJob]]:
        results = await asyncio.gather(self.logs.list(), self.jobs.list_jobs(), return_exceptions=True)
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            # An auth failure outranks whatever else went wrong
            raise next((e for e in errors if isinstance(e, AuthError)), errors[0])
        logs, jobs = results
        return logs, jobs

    def _session_generation(self) -> int | None:
        return self.session.generation if self.session is not None else None

    async def _run(self, mode: RefreshMode) -> bool:
        generation = self._session_generation()
        if mode.foreground:
            self._foreground_in_flight += 1
            self.state.loading = True
            self.state.error = None

        try:
            logs, jobs = await self._fetch()
        except AuthError as e:
            if self.session is not None:
                await self.session.handle_error(e, f"{mode.value} refresh")
            else:
                logger.warning(f"Auth error during {mode.value} refresh: {e.message}")
            return False
        except SoundTraceError as e:
            if self._session_generation() != generation:
                logger.debug(f"Ignoring {mode.value} refresh failure from an ended session: {e.message}")
            elif mode.foreground:
                logger.error(f"{mode.value} refresh failed: {e.message}")
                self.state.error = e.message or DEFAULT_LOAD_ERROR
            else:
                logger.warning(f"Background refresh failed: {e.message}")
            return False
        finally:
            if mode.foreground:
                self._foreground_in_flight -= 1
                self.state.loading = self._foreground_in_flight > 0

        if self._session_generation() != generation:
            logger.info(f"Discarding {mode.value} refresh: the session ended while it was in flight")
            return False

        self.state.logs = sort_logs(logs)
        self.state.jobs = sort_jobs(jobs)
        self.state.last_refreshed = datetime.now(timezone.utc)
        self.state.refresh_count += 1
        logger.debug(f"{mode.value} refresh: {len(logs)} log(s), {len(jobs)} job(s)")

        if self.state_machine is not None:
            self.state_machine.reconcile(self.state.jobs)
        return True

    async def background_refresh(self) -> None:
        """Callback form for job terminal transitions and push messages."""
        await self.refresh(RefreshMode.BACKGROUND)

    def reset(self) -> None:
        """Drop all mirrored data, e.g. after logout."""
        background = self._background
        if (
            background is not None
            and not background.done()
            and background is not asyncio.current_task()
        ):
            background.cancel()
        self._background = None
        self.state.logs = []
        self.state.jobs = []
        self.state.error = None
        self.state.loading = False
