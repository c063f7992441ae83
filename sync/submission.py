"""Submitting snippets and links for scanning."""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from audio.models import SnippetFile
from backend.jobs import JobService
from backend.models import (
    JobFileDescriptor,
    JobInput,
    JobType,
    RecognitionResult,
    ScanJob,
    ScanLogEntry,
)
from backend.recognition import RecognitionClient
from core.exceptions import AuthError, SoundTraceError, UpstreamError, UpstreamErrorCode
from jobs.progress import UploadProgressEstimator
from jobs.state_machine import ScanJobStateMachine
from sync.orchestrator import RefreshMode, RefreshOrchestrator
from sync.session import Session
from sync.sources import detect_source

logger = logging.getLogger(__name__)

MAX_LISTED_DUPLICATES = 3

ProgressCallback = Callable[[str], None]


def partition_duplicates(
    snippets: Iterable[SnippetFile], history: Iterable[ScanLogEntry]
) -> tuple[list[SnippetFile], list[SnippetFile]]:
    """Split snippets into (fresh, duplicates) by file name and size.

    This is a best-effort heuristic against the visible history; the
    backend remains the authority on true duplicates.
    """
    seen = {entry.source_key for entry in history if entry.source_key is not None}
    fresh: list[SnippetFile] = []
    duplicates: list[SnippetFile] = []
    for snippet in snippets:
        (duplicates if snippet.key in seen else fresh).append(snippet)
    return fresh, duplicates


def duplicate_message(names: list[str]) -> str | None:
    if not names:
        return None
    listed = ", ".join(names[:MAX_LISTED_DUPLICATES])
    more = "..." if len(names) > MAX_LISTED_DUPLICATES else ""
    return f"{len(names)} snippet(s) were duplicates and were not re-scanned: {listed}{more}."


@dataclass
class SnippetScanReport:
    """Outcome of scanning a batch of snippets one by one."""

    results: list[RecognitionResult] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    no_match: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)

    @property
    def duplicate_message(self) -> str | None:
        return duplicate_message(self.duplicates)

    @property
    def first_error(self) -> str | None:
        if not self.errors:
            return None
        name, message = next(iter(self.errors.items()))
        return f'Error scanning "{name}": {message}'

    @property
    def completion_message(self) -> str:
        if not self.results and not self.errors and not self.no_match:
            if self.duplicates:
                return "No new snippets to scan. All were duplicates."
            return "No snippets available for scanning."
        matched = sum(1 for r in self.results if r.matches)
        if matched:
            return f"{matched} new scan result(s) with matches."
        return "Scans completed. No new matches found in the processed snippets."


@dataclass
class UploadJobReport:
    """Outcome of creating a file-upload job and uploading its snippets."""

    job: ScanJob | None = None
    duplicates: list[str] = field(default_factory=list)
    upload_errors: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    @property
    def duplicate_message(self) -> str | None:
        return duplicate_message(self.duplicates)

    @property
    def completion_message(self) -> str:
        if self.error:
            return self.error
        if self.job is None:
            if self.duplicates:
                return "No new snippets to upload. All were duplicates."
            return "No snippets available for upload."
        if self.upload_errors:
            return (
                f"{len(self.upload_errors)} snippet(s) failed to upload. "
                "Re-upload them to resume the job."
            )
        return "Upload complete. The job is now being processed."


class ScanSubmitter:
    """Sends user input to the backend and hands batch jobs to the state machine."""

    def __init__(
        self,
        recognition: RecognitionClient,
        jobs: JobService,
        state_machine: ScanJobStateMachine,
        orchestrator: RefreshOrchestrator,
        session: Session | None = None,
    ):
        self.recognition = recognition
        self.jobs = jobs
        self.state_machine = state_machine
        self.orchestrator = orchestrator
        self.session = session

    async def _auth_failure(self, error: AuthError, operation: str) -> None:
        if self.session is not None:
            await self.session.handle_error(error, operation)

    async def scan_snippets(
        self,
        snippets: list[SnippetFile],
        on_progress: ProgressCallback | None = None,
    ) -> SnippetScanReport | None:
        """Recognize snippets one at a time, skipping ones already in the history.

        Per-snippet failures are collected and the batch continues. An auth
        failure stops the batch and ends the session.

        Returns:
            The report, or None if the session ended
        """
        fresh, duplicates = partition_duplicates(snippets, self.orchestrator.state.logs)
        report = SnippetScanReport(duplicates=[s.name for s in duplicates])
        if report.duplicates:
            logger.info(report.duplicate_message)
        if not fresh:
            return report

        estimator = UploadProgressEstimator(len(fresh))
        for index, snippet in enumerate(fresh, start=1):
            if on_progress is not None:
                on_progress(
                    f'Scanning {index}/{len(fresh)}: "{snippet.name}"... ({estimator.describe()})'
                )
            try:
                result = await self.recognition.submit(snippet)
            except AuthError as e:
                await self._auth_failure(e, "snippet scan")
                return None
            except UpstreamError as e:
                if e.code == UpstreamErrorCode.NO_RESULT:
                    report.no_match.append(snippet.name)
                else:
                    logger.error(f"Scan failed for {snippet.name}: {e.message}")
                    report.errors[snippet.name] = e.message
            except SoundTraceError as e:
                logger.error(f"Scan failed for {snippet.name}: {e.message}")
                report.errors[snippet.name] = e.message
            else:
                report.results.append(result)
            estimator.advance()

        logger.info(
            f"Scanned {len(fresh)} snippet(s): {len(report.results)} result(s), "
            f"{len(report.errors)} error(s)"
        )
        await self.orchestrator.refresh(RefreshMode.BACKGROUND)
        return report

    async def submit_upload_job(
        self,
        snippets: list[SnippetFile],
        job_name: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> UploadJobReport | None:
        """Create a file-upload batch job, upload its snippets and track it.

        Snippets already in the history are left out; the report names them.

        Returns:
            The report, or None if the session ended
        """
        fresh, duplicates = partition_duplicates(snippets, self.orchestrator.state.logs)
        report = UploadJobReport(duplicates=[s.name for s in duplicates])
        if report.duplicates:
            logger.info(report.duplicate_message)
        if not fresh:
            return report

        job_input = JobInput(
            job_type=JobType.FILE_UPLOAD_BATCH,
            job_name=job_name,
            files=[
                JobFileDescriptor(original_file_name=s.name, original_file_size=s.size)
                for s in fresh
            ],
        )
        try:
            created = await self.jobs.create_job(job_input)
        except AuthError as e:
            await self._auth_failure(e, "create upload job")
            return None
        except SoundTraceError as e:
            logger.error(f"Could not create upload job: {e.message}")
            report.error = self.state_machine.error = e.message
            return report
        if not isinstance(created, ScanJob):
            logger.error("File upload batch did not return a job")
            report.error = self.state_machine.error = "The backend did not create an upload job."
            return report

        estimator = UploadProgressEstimator(len(fresh))
        latest = created
        for snippet in fresh:
            try:
                update = await self.jobs.upload_file(created.id, snippet)
            except AuthError as e:
                await self._auth_failure(e, "upload snippet")
                return None
            except SoundTraceError as e:
                # The job reports failed_incomplete_upload; re-uploading resumes it
                logger.error(f"Upload of {snippet.name} to job {created.id} failed: {e.message}")
                report.upload_errors[snippet.name] = e.message
            else:
                if update is not None:
                    latest = update
            estimator.advance()
            if on_progress is not None:
                on_progress(f"Uploading snippets: {estimator.describe()}")

        await self.state_machine.track(latest)
        report.job = latest
        return report

    async def submit_url(self, url: str) -> ScanJob | RecognitionResult | ScanLogEntry | None:
        """Start a scan for a YouTube or Spotify link.

        Raises:
            ValidationError: If the link is not a supported YouTube/Spotify URL
        """
        source = detect_source(url)
        logger.info(f"Submitting {source.kind.value}: {url}")
        return await self.state_machine.submit(JobInput(job_type=source.job_type, url=source.url))
