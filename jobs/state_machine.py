"""Client-side state machine for one batch scan job.

The machine owns the active-job pointer and the poll handle; nothing else
mutates them. Both are cleared together, synchronously, whenever the job
becomes terminal or the session ends.

Polling is sequential: wait the interval, fetch, apply, repeat. The loop only
continues while the job is fetching or processing items. Collaborator
failures never escape an operation: auth failures go to ``on_auth_error``
and everything else becomes a dismissible ``error`` message.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from backend.jobs import JobService
from backend.models import JobInput, JobStatus, RecognitionResult, ScanJob, ScanLogEntry
from core.exceptions import AuthError, JobStateError, SoundTraceError
from jobs.progress import format_job_progress
from jobs.status import (
    BANNER_STATUSES,
    can_abort,
    can_pause,
    can_resume,
    is_polling,
    is_terminal,
    status_label,
)

logger = logging.getLogger(__name__)

AuthErrorHandler = Callable[[AuthError], Awaitable[None]]
TerminalHandler = Callable[[], Awaitable[None]]

CREDITS_EXHAUSTED_MESSAGE = (
    "Recognition credits are exhausted. Refill the recognition quota, then resume this job."
)
PAUSED_MESSAGE = "This job is paused. Resume it to continue processing."


class BannerKind(str, Enum):
    CREDITS_EXHAUSTED = "credits_exhausted"
    PAUSED = "paused"


@dataclass(frozen=True)
class Banner:
    """A persistent notice that stays until the job is resumed or finished."""

    job_id: str
    kind: BannerKind
    message: str


@dataclass
class PollHandle:
    """The single scheduled poll loop, tied to one job."""

    job_id: str
    task: asyncio.Task

    @property
    def active(self) -> bool:
        return not self.task.done()

    def cancel(self) -> None:
        # The loop may stop itself from inside its own task
        if self.task is not asyncio.current_task() and not self.task.done():
            self.task.cancel()


class ScanJobStateMachine:
    """Tracks one logical batch scan from creation to a terminal status."""

    def __init__(
        self,
        jobs: JobService,
        poll_interval: float = 5.0,
        on_terminal: TerminalHandler | None = None,
        on_auth_error: AuthErrorHandler | None = None,
    ):
        self.jobs = jobs
        self.poll_interval = poll_interval
        self.on_terminal = on_terminal
        self.on_auth_error = on_auth_error
        self.job: ScanJob | None = None
        self.last_finished: ScanJob | None = None
        self.banner: Banner | None = None
        self.error: str | None = None
        self._poll: PollHandle | None = None
        self._finished_ids: set[str] = set()
        self._controls_in_flight = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def active_job(self) -> ScanJob | None:
        return self.job

    @property
    def is_polling(self) -> bool:
        return self._poll is not None and self._poll.active

    @property
    def poll_handle(self) -> PollHandle | None:
        return self._poll

    @property
    def progress_text(self) -> str | None:
        return format_job_progress(self.job) if self.job else None

    @property
    def status_text(self) -> str | None:
        return status_label(self.job.status) if self.job else None

    # ------------------------------------------------------------------
    # Internal state transitions
    # ------------------------------------------------------------------

    def _start_polling(self, job_id: str) -> None:
        if self._poll is not None and self._poll.job_id == job_id and self._poll.active:
            return
        self._stop_polling()
        task = asyncio.create_task(self._poll_loop(job_id), name=f"poll-job-{job_id}")
        self._poll = PollHandle(job_id=job_id, task=task)
        logger.info(f"Polling job {job_id} every {self.poll_interval}s")

    def _stop_polling(self) -> None:
        if self._poll is not None:
            self._poll.cancel()
            logger.info(f"Stopped polling job {self._poll.job_id}")
            self._poll = None

    def _release_handle(self) -> None:
        """Drop the handle of the loop that is about to end on its own."""
        if self._poll is not None and self._poll.task is asyncio.current_task():
            self._poll = None

    def _finish(self, job: ScanJob) -> None:
        """Clear the active-job pointer and poll handle together."""
        self._stop_polling()
        self._finished_ids.add(job.id)
        self.last_finished = job
        self.job = None
        self.banner = None
        logger.info(f"Job {job.id} finished: {job.status.value}")

    def _apply(self, job: ScanJob, start_polling: bool = True) -> bool:
        """Overwrite the local mirror with ``job``.

        Returns:
            True if this made the tracked job terminal
        """
        if self.job is not None and self.job.id != job.id:
            logger.debug(f"Ignoring update for untracked job {job.id}")
            return False

        if is_terminal(job.status):
            if self.job is None:
                return False
            self._finish(job)
            return True

        if (
            self.job is not None
            and job.items_processed < self.job.items_processed
            and self.job.status != JobStatus.PAUSED
        ):
            logger.warning(
                f"Job {job.id} reported fewer processed items "
                f"({job.items_processed} < {self.job.items_processed})"
            )

        self.job = job
        if job.status in BANNER_STATUSES:
            self._stop_polling()
            if job.status == JobStatus.FAILED_CREDITS_EXHAUSTED:
                self.banner = Banner(job.id, BannerKind.CREDITS_EXHAUSTED, CREDITS_EXHAUSTED_MESSAGE)
                logger.warning(f"Job {job.id} is out of recognition credits")
            else:
                self.banner = Banner(job.id, BannerKind.PAUSED, PAUSED_MESSAGE)
        else:
            self.banner = None
            if start_polling and is_polling(job.status):
                self._start_polling(job.id)
        return False

    async def _handle_auth_error(self, error: AuthError) -> None:
        logger.warning(f"Authentication failed during job operation: {error.message}")
        self._stop_polling()
        self.job = None
        self.banner = None
        if self.on_auth_error is not None:
            await self.on_auth_error(error)

    async def _notify_terminal(self) -> None:
        if self.on_terminal is not None:
            await self.on_terminal()

    async def _poll_loop(self, job_id: str) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                job = await self.jobs.get_status(job_id)
            except AuthError as e:
                await self._handle_auth_error(e)
                return
            except SoundTraceError as e:
                logger.error(f"Status poll for job {job_id} failed: {e.message}")
                self.error = f"Could not fetch job status: {e.message}"
                self._release_handle()
                return

            if self._poll is None or self._poll.task is not asyncio.current_task():
                return

            logger.debug(f"Job {job_id}: {job.status.value} {format_job_progress(job)}")
            if self._apply(job, start_polling=False):
                await self._notify_terminal()
                return
            if not is_polling(job.status):
                self._release_handle()
                return

    def _require_job(self) -> ScanJob:
        if self.job is None:
            raise JobStateError("No active job")
        return self.job

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def submit(self, job_input: JobInput) -> ScanJob | RecognitionResult | ScanLogEntry | None:
        """Create a job and start tracking it.

        Non-batch inputs come back as a completed result; the log list is
        refreshed and nothing is tracked.

        Returns:
            The created job or completed result, or None if creation failed
        """
        self.error = None
        try:
            created = await self.jobs.create_job(job_input)
        except AuthError as e:
            await self._handle_auth_error(e)
            return None
        except SoundTraceError as e:
            logger.error(f"Job creation failed: {e.message}")
            self.error = e.message
            return None

        if isinstance(created, ScanJob):
            await self.track(created)
        else:
            await self._notify_terminal()
        return created

    async def track(self, job: ScanJob) -> None:
        """Make ``job`` the active job and follow it."""
        if self.job is not None and self.job.id != job.id:
            logger.info(f"Replacing tracked job {self.job.id} with {job.id}")
            self._stop_polling()
            self.job = None
            self.banner = None
        self._finished_ids.discard(job.id)
        if is_terminal(job.status):
            self.job = job
            self._finish(job)
            await self._notify_terminal()
            return
        self._apply(job)
        if self.job is not None and self.banner is None and not self.is_polling:
            # A newly tracked job always gets a first status fetch
            self._start_polling(job.id)

    async def resume_on_mount(self) -> ScanJob | None:
        """Restore polling or the banner for a job left running before a reload."""
        try:
            job = await self.jobs.get_active_job()
        except AuthError as e:
            await self._handle_auth_error(e)
            return None
        except SoundTraceError as e:
            logger.error(f"Could not load active job: {e.message}")
            self.error = f"Could not load active job: {e.message}"
            return None

        if job is None or is_terminal(job.status):
            logger.debug("No active job to resume")
            return None
        logger.info(f"Resuming job {job.id} ({job.status.value})")
        self._apply(job)
        return job

    async def pause(self) -> ScanJob | None:
        """Optimistically pause the active job.

        The tentative paused state stays until the next authoritative fetch
        overwrites it.
        """
        job = self._require_job()
        if not can_pause(job.status):
            raise JobStateError(f"Cannot pause a job that is {job.status.value}")

        previous = job
        self._stop_polling()
        self.job = job.model_copy(update={"status": JobStatus.PAUSED})
        self.banner = Banner(job.id, BannerKind.PAUSED, PAUSED_MESSAGE)
        self.error = None

        self._controls_in_flight += 1
        try:
            await self.jobs.pause(job.id)
        except AuthError as e:
            await self._handle_auth_error(e)
            return None
        except SoundTraceError as e:
            logger.error(f"Pause failed for job {job.id}: {e.message}")
            self.job = None
            self.banner = None
            self._apply(previous)
            self.error = f"Could not pause job: {e.message}"
            return None
        finally:
            self._controls_in_flight -= 1
        return self.job

    async def resume(self) -> ScanJob | None:
        """Resume a paused or credit-exhausted job and restart polling."""
        job = self._require_job()
        if not can_resume(job.status):
            raise JobStateError(f"Cannot resume a job that is {job.status.value}")

        previous = job
        self.error = None
        self.banner = None
        self.job = job.model_copy(update={"status": JobStatus.PROCESSING_ITEMS})

        self._controls_in_flight += 1
        try:
            await self.jobs.resume(job.id)
        except AuthError as e:
            await self._handle_auth_error(e)
            return None
        except SoundTraceError as e:
            logger.error(f"Resume failed for job {job.id}: {e.message}")
            self.job = None
            self._apply(previous)
            self.error = f"Could not resume job: {e.message}"
            return None
        finally:
            self._controls_in_flight -= 1

        if self.job is not None and self.job.id == job.id:
            self._start_polling(job.id)
        return self.job

    async def abort(self) -> ScanJob | None:
        """Abort the active job; the server stops it, the client treats it as terminal now."""
        job = self._require_job()
        if not can_abort(job.status):
            raise JobStateError(f"Cannot abort a job that is {job.status.value}")

        self._stop_polling()
        try:
            await self.jobs.abort(job.id)
        except AuthError as e:
            await self._handle_auth_error(e)
            return None
        except SoundTraceError as e:
            logger.warning(f"Abort request for job {job.id} failed: {e.message}")

        aborted = job.model_copy(update={"status": JobStatus.ABORTED})
        self._finish(aborted)
        await self._notify_terminal()
        return aborted

    def reconcile(self, jobs: list[ScanJob]) -> None:
        """Sync with a freshly fetched job list.

        Never triggers another refresh; a job that turned terminal is simply
        cleared, and jobs already finished locally are left alone.
        """
        if self._controls_in_flight:
            return

        if self.job is not None:
            fresh = next((j for j in jobs if j.id == self.job.id), None)
            if fresh is not None:
                self._apply(fresh)
            return

        for candidate in jobs:
            if candidate.id in self._finished_ids or is_terminal(candidate.status):
                continue
            logger.info(f"Picked up active job {candidate.id} ({candidate.status.value})")
            self._apply(candidate)
            return

    def dismiss_error(self) -> None:
        self.error = None

    def stop(self) -> None:
        """Forget the active job and stop polling, e.g. on logout or teardown."""
        self._stop_polling()
        self.job = None
        self.banner = None
        self.error = None
