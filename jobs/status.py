"""Job status groups and the operations each status offers."""

from backend.models import JobStatus, ScanJob

# Statuses that keep the poll loop going
POLLING_STATUSES = frozenset({JobStatus.FETCHING_ITEMS, JobStatus.PROCESSING_ITEMS})

PAUSABLE_STATUSES = POLLING_STATUSES

RESUMABLE_STATUSES = frozenset({JobStatus.PAUSED, JobStatus.FAILED_CREDITS_EXHAUSTED})

TERMINAL_STATUSES = frozenset(
    {
        JobStatus.COMPLETED,
        JobStatus.COMPLETED_WITH_ERRORS,
        JobStatus.FAILED_UPSTREAM_API,
        JobStatus.FAILED_SETUP,
        JobStatus.FAILED_INCOMPLETE_UPLOAD,
        JobStatus.FAILED_OTHER,
        JobStatus.ABORTED,
    }
)

# Statuses that stop polling and keep the job around behind a banner
BANNER_STATUSES = RESUMABLE_STATUSES

STATUS_LABELS: dict[JobStatus, str] = {
    JobStatus.PENDING_SETUP: "Pending Setup",
    JobStatus.PENDING_UPLOAD: "Waiting for File Uploads",
    JobStatus.UPLOADING_FILES: "Uploading Files...",
    JobStatus.QUEUED_FOR_PROCESSING: "Queued for Processing",
    JobStatus.FETCHING_ITEMS: "Fetching Items...",
    JobStatus.PROCESSING_ITEMS: "Processing Items...",
    JobStatus.PAUSED: "Paused",
    JobStatus.COMPLETED: "Completed",
    JobStatus.COMPLETED_WITH_ERRORS: "Completed with Errors",
    JobStatus.FAILED_CREDITS_EXHAUSTED: "Paused: Recognition Credits Needed",
    JobStatus.FAILED_UPSTREAM_API: "Failed: Upstream API Error",
    JobStatus.FAILED_SETUP: "Failed: Setup Error",
    JobStatus.FAILED_INCOMPLETE_UPLOAD: "Incomplete: Re-upload Files",
    JobStatus.FAILED_OTHER: "Failed: Unknown Error",
    JobStatus.ABORTED: "Aborted by User",
}


def is_terminal(status: JobStatus) -> bool:
    """Whether no further automatic transition will happen.

    failed_credits_exhausted is resumable, so it is not terminal.
    """
    return status in TERMINAL_STATUSES


def is_polling(status: JobStatus) -> bool:
    return status in POLLING_STATUSES


def is_active(status: JobStatus) -> bool:
    return not is_terminal(status)


def can_pause(status: JobStatus) -> bool:
    return status in PAUSABLE_STATUSES


def can_resume(status: JobStatus) -> bool:
    return status in RESUMABLE_STATUSES


def can_abort(status: JobStatus) -> bool:
    return not is_terminal(status)


def status_label(status: JobStatus) -> str:
    return STATUS_LABELS.get(status, status.value)


def job_summary(job: ScanJob) -> str:
    """One-line outcome summary, reporting partial failures separately."""
    label = status_label(job.status)
    if job.status == JobStatus.COMPLETED_WITH_ERRORS:
        return (
            f"{label}: {job.items_processed} processed, {job.items_with_matches} with matches, "
            f"{job.items_failed} failed"
        )
    if job.status == JobStatus.COMPLETED:
        return f"{label}: {job.items_processed} processed, {job.items_with_matches} with matches"
    if job.last_error and not is_polling(job.status):
        return f"{label}: {job.last_error}"
    return label
