"""Derived progress signals for jobs and file uploads."""

import time
from collections.abc import Callable

from backend.models import ScanJob

LAST_ITEM_MAX_CHARS = 30


def truncate_name(name: str, limit: int = LAST_ITEM_MAX_CHARS) -> str:
    return name if len(name) <= limit else f"{name[:limit]}..."


def format_job_progress(job: ScanJob) -> str:
    """Progress line such as ``12/40 items. Last: Some Track``.

    The total shows as ``?`` while it is still unknown (e.g. during
    fetching_items).
    """
    total = str(job.total_items) if job.total_items > 0 else "?"
    text = f"{job.items_processed}/{total} items"
    item = job.last_processed_item
    if item is not None and item.name:
        text += f". Last: {truncate_name(item.name)}"
    return text


def progress_percent(job: ScanJob) -> float:
    if job.total_items <= 0:
        return 0.0
    return job.items_processed / job.total_items * 100


def format_duration(seconds: float) -> str:
    seconds = max(0, int(round(seconds)))
    minutes, secs = divmod(seconds, 60)
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class UploadProgressEstimator:
    """Remaining-time estimate for the file-upload path.

    remaining = elapsed / processed * (total - processed); the estimate is
    unknown (None) while either count is zero.
    """

    def __init__(self, total: int, clock: Callable[[], float] = time.monotonic):
        self.total = total
        self.processed = 0
        self._clock = clock
        self._started = clock()

    def advance(self, count: int = 1) -> None:
        self.processed = min(self.total, self.processed + count)

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    def remaining_seconds(self) -> float | None:
        if self.processed == 0 or self.total == 0:
            return None
        return self.elapsed / self.processed * (self.total - self.processed)

    def describe(self) -> str:
        remaining = self.remaining_seconds()
        estimate = "unknown" if remaining is None else format_duration(remaining)
        return f"{self.processed}/{self.total} processed, estimated time remaining: {estimate}"
