"""Pydantic models for the SoundTrace backend wire format.

The backend speaks camelCase JSON; models accept either camelCase or
snake_case on input and serialize back to camelCase with ``by_alias=True``.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for models exchanged with the backend."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class LogOrigin(str, Enum):
    FILE_UPLOAD = "file_upload"
    YOUTUBE_VIDEO = "youtube_video"
    YOUTUBE_BATCH_ITEM = "youtube_batch_item"
    SPOTIFY_TRACK = "spotify_track"
    SPOTIFY_PLAYLIST_ITEM = "spotify_playlist_item"

    @classmethod
    def _missing_(cls, value: object) -> "LogOrigin | None":
        return _LEGACY_LOG_ORIGINS.get(str(value))


_LEGACY_LOG_ORIGINS = {
    "file_upload_batch_item": LogOrigin.FILE_UPLOAD,
    "youtube_channel_instrumental_batch_item": LogOrigin.YOUTUBE_BATCH_ITEM,
    "youtube_playlist_instrumental_batch_item": LogOrigin.YOUTUBE_BATCH_ITEM,
    "youtube_video_instrumental_single_item": LogOrigin.YOUTUBE_VIDEO,
    "spotify_playlist_import_item": LogOrigin.SPOTIFY_PLAYLIST_ITEM,
}


class LogStatus(str, Enum):
    MATCHES_FOUND = "matches_found"
    NO_MATCHES_FOUND = "no_matches_found"
    ERROR_PROCESSING = "error_processing"
    MANUALLY_ADDED = "manually_added"
    ABORTED = "aborted"
    PENDING_PROCESSING = "pending_processing"
    PROCESSING = "processing"

    @classmethod
    def _missing_(cls, value: object) -> "LogStatus | None":
        return _LEGACY_LOG_STATUSES.get(str(value))


_LEGACY_LOG_STATUSES = {
    "pending_scan": LogStatus.PENDING_PROCESSING,
    "processing_acr_scan": LogStatus.PROCESSING,
    "processing_scan": LogStatus.PROCESSING,
    "completed_match_found": LogStatus.MATCHES_FOUND,
    "scanned_match_found": LogStatus.MATCHES_FOUND,
    "imported_spotify_track": LogStatus.MATCHES_FOUND,
    "completed_no_match": LogStatus.NO_MATCHES_FOUND,
    "scanned_no_match": LogStatus.NO_MATCHES_FOUND,
    "skipped_previously_scanned": LogStatus.NO_MATCHES_FOUND,
    "error_acr_scan": LogStatus.ERROR_PROCESSING,
    "error_acr_credits_item": LogStatus.ERROR_PROCESSING,
    "error_youtube_dl": LogStatus.ERROR_PROCESSING,
    "error_ffmpeg": LogStatus.ERROR_PROCESSING,
    "error_processing_item": LogStatus.ERROR_PROCESSING,
    "aborted_item": LogStatus.ABORTED,
}


MATCH_LOG_STATUSES = frozenset({LogStatus.MATCHES_FOUND, LogStatus.MANUALLY_ADDED})


class JobType(str, Enum):
    FILE_UPLOAD_BATCH = "file_upload_batch"
    YOUTUBE_CHANNEL_BATCH = "youtube_channel_batch"
    YOUTUBE_PLAYLIST_BATCH = "youtube_playlist_batch"
    YOUTUBE_VIDEO_SINGLE = "youtube_video_single"
    SPOTIFY_PLAYLIST_IMPORT = "spotify_playlist_import"

    @classmethod
    def _missing_(cls, value: object) -> "JobType | None":
        # Older backends tag the YouTube kinds with "_instrumental"
        if isinstance(value, str) and "_instrumental" in value:
            return cls(value.replace("_instrumental", ""))
        return None


class JobStatus(str, Enum):
    PENDING_SETUP = "pending_setup"
    PENDING_UPLOAD = "pending_upload"
    UPLOADING_FILES = "uploading_files"
    QUEUED_FOR_PROCESSING = "queued_for_processing"
    FETCHING_ITEMS = "fetching_items"
    PROCESSING_ITEMS = "processing_items"
    PAUSED = "paused"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED_CREDITS_EXHAUSTED = "failed_credits_exhausted"
    FAILED_UPSTREAM_API = "failed_upstream_api"
    FAILED_SETUP = "failed_setup"
    FAILED_INCOMPLETE_UPLOAD = "failed_incomplete_upload"
    FAILED_OTHER = "failed_other"
    ABORTED = "aborted"

    @classmethod
    def _missing_(cls, value: object) -> "JobStatus | None":
        return _LEGACY_JOB_STATUSES.get(str(value))


_LEGACY_JOB_STATUSES = {
    "queued": JobStatus.QUEUED_FOR_PROCESSING,
    "in_progress_fetching": JobStatus.FETCHING_ITEMS,
    "in_progress_processing": JobStatus.PROCESSING_ITEMS,
    "failed_acr_credits": JobStatus.FAILED_CREDITS_EXHAUSTED,
    "failed_youtube_api": JobStatus.FAILED_UPSTREAM_API,
    "failed_upload_incomplete": JobStatus.FAILED_INCOMPLETE_UPLOAD,
}


class PushMessageType(str, Enum):
    JOB_UPDATE = "job_update"
    REFRESH_REQUESTED = "refresh_requested"

    @classmethod
    def _missing_(cls, value: object) -> "PushMessageType | None":
        return _LEGACY_PUSH_TYPES.get(str(value))


_LEGACY_PUSH_TYPES = {
    "JOB_UPDATE": PushMessageType.JOB_UPDATE,
    "JOBS_REFRESH_REQUESTED": PushMessageType.REFRESH_REQUESTED,
    "REFRESH_REQUESTED": PushMessageType.REFRESH_REQUESTED,
}


# ---------------------------------------------------------------------------
# Matches and scan logs
# ---------------------------------------------------------------------------


class StreamCounts(WireModel):
    spotify: int | None = None
    youtube: int | None = None


class PlatformLinks(WireModel):
    spotify: str | None = None
    youtube: str | None = None
    apple_music: str | None = None


class Match(WireModel):
    """One candidate recognition result."""

    id: str
    title: str
    artist: str
    album: str = ""
    release_date: str = ""
    confidence: float = Field(
        ge=0,
        le=100,
        validation_alias=AliasChoices("matchConfidence", "confidence"),
        serialization_alias="matchConfidence",
    )
    spotify_track_id: str | None = None
    spotify_artist_id: str | None = None
    youtube_video_id: str | None = None
    youtube_video_title: str | None = None
    platform_links: PlatformLinks | None = None
    stream_counts: StreamCounts | None = None

    @model_validator(mode="after")
    def _derive_links(self) -> "Match":
        if self.platform_links is None and (self.spotify_track_id or self.youtube_video_id):
            self.platform_links = PlatformLinks(
                spotify=(
                    f"https://open.spotify.com/track/{self.spotify_track_id}"
                    if self.spotify_track_id
                    else None
                ),
                youtube=(
                    f"https://www.youtube.com/watch?v={self.youtube_video_id}"
                    if self.youtube_video_id
                    else None
                ),
            )
        return self


def _check_source_descriptor(
    origin: LogOrigin,
    original_file_name: str | None,
    source_url: str | None,
    youtube_video_id: str | None,
    spotify_track_id: str | None,
) -> None:
    """Require the descriptor that matches ``origin`` and reject foreign ones."""
    has_file = original_file_name is not None
    has_youtube = youtube_video_id is not None or (
        source_url is not None and origin in (LogOrigin.YOUTUBE_VIDEO, LogOrigin.YOUTUBE_BATCH_ITEM)
    )
    has_spotify = spotify_track_id is not None

    if origin == LogOrigin.FILE_UPLOAD:
        expected, others = has_file, has_youtube or has_spotify or source_url is not None
    elif origin in (LogOrigin.YOUTUBE_VIDEO, LogOrigin.YOUTUBE_BATCH_ITEM):
        expected, others = has_youtube, has_file or has_spotify
    else:
        expected, others = has_spotify, has_file or youtube_video_id is not None

    if not expected:
        raise ValueError(f"{origin.value} entries require their source descriptor")
    if others:
        raise ValueError(f"{origin.value} entries must not carry another origin's descriptor")


def _check_matches(status: LogStatus, matches: list[Match]) -> None:
    if status in MATCH_LOG_STATUSES and not matches:
        raise ValueError(f"status {status.value} requires at least one match")
    if status not in MATCH_LOG_STATUSES and matches:
        raise ValueError(f"status {status.value} must not carry matches")


class ScanLogEntry(WireModel):
    """One durable record of an input and the matches it produced."""

    log_id: str = Field(validation_alias=AliasChoices("logId", "log_id", "id"))
    origin: LogOrigin = Field(
        validation_alias=AliasChoices("origin", "platformSource", "platform_source")
    )
    status: LogStatus
    matches: list[Match] = []
    original_file_name: str | None = None
    original_file_size: int | None = None
    source_url: str | None = None
    youtube_video_id: str | None = None
    youtube_video_title: str | None = None
    spotify_track_id: str | None = None
    scan_date: datetime
    scan_job_id: str | None = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "ScanLogEntry":
        _check_matches(self.status, self.matches)
        _check_source_descriptor(
            self.origin,
            self.original_file_name,
            self.source_url,
            self.youtube_video_id,
            self.spotify_track_id,
        )
        return self

    @property
    def source_key(self) -> tuple[str, int] | None:
        """(file name, size) for file uploads, used by the duplicate heuristic."""
        if self.original_file_name is None or self.original_file_size is None:
            return None
        return self.original_file_name, self.original_file_size


class ManualLogEntry(WireModel):
    """A log entry created by hand rather than by a scan."""

    origin: LogOrigin
    status: LogStatus = LogStatus.MANUALLY_ADDED
    matches: list[Match]
    original_file_name: str | None = None
    original_file_size: int | None = None
    source_url: str | None = None
    youtube_video_id: str | None = None
    spotify_track_id: str | None = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "ManualLogEntry":
        _check_matches(self.status, self.matches)
        _check_source_descriptor(
            self.origin,
            self.original_file_name,
            self.source_url,
            self.youtube_video_id,
            self.spotify_track_id,
        )
        return self


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class LastProcessedItem(WireModel):
    id: str | None = None
    name: str | None = Field(None, validation_alias=AliasChoices("name", "itemName", "item_name"))
    status: str | None = None


class ScanJob(WireModel):
    """Client mirror of one server-side batch job."""

    id: str = Field(validation_alias=AliasChoices("id", "jobId", "job_id"))
    status: JobStatus
    job_type: JobType | None = None
    job_name: str | None = None
    original_input_url: str | None = None
    total_items: int = Field(0, ge=0)
    items_processed: int = Field(0, ge=0)
    items_with_matches: int = Field(0, ge=0)
    items_failed: int = Field(0, ge=0)
    pending_item_count: int | None = None
    last_error: str | None = Field(
        None, validation_alias=AliasChoices("lastError", "lastErrorMessage", "last_error")
    )
    last_processed_item: LastProcessedItem | None = Field(
        None,
        validation_alias=AliasChoices(
            "lastProcessedItem", "lastProcessedItemInfo", "last_processed_item"
        ),
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _check_counts(self) -> "ScanJob":
        if self.total_items > 0 and self.items_processed > self.total_items:
            raise ValueError(
                f"itemsProcessed ({self.items_processed}) exceeds totalItems ({self.total_items})"
            )
        return self

    @property
    def items_remaining(self) -> int:
        return max(0, self.total_items - self.items_processed)


class JobFileDescriptor(WireModel):
    original_file_name: str
    original_file_size: int


class JobInput(WireModel):
    """Request body for creating a job."""

    job_type: JobType
    url: str | None = None
    job_name: str | None = None
    files: list[JobFileDescriptor] = []

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Single-item results and push messages
# ---------------------------------------------------------------------------


class RecognitionResult(WireModel):
    """Result of recognizing one snippet."""

    scan_id: str
    instrumental_name: str
    instrumental_size: int
    scan_date: datetime
    matches: list[Match] = []
    error_message: str | None = None


class PushMessage(WireModel):
    type: PushMessageType
    job_id: str | None = None


def parse_job_creation(payload: dict[str, Any]) -> ScanJob | RecognitionResult | ScanLogEntry:
    """Branch on the shape of a job creation response.

    Batch-capable inputs answer with a job descriptor (carrying ``jobId`` or
    ``id`` plus ``status``); non-batch inputs answer with a completed result,
    either a recognition result or the resulting log entry.
    """
    if "scanId" in payload or "scan_id" in payload:
        return RecognitionResult.model_validate(payload)
    if "logId" in payload or "scanDate" in payload:
        return ScanLogEntry.model_validate(payload)
    return ScanJob.model_validate(payload)
