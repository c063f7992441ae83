"""Job control API."""

import logging
from typing import Any

from pydantic import ValidationError as ModelValidationError

from audio.models import SnippetFile
from backend.client import BackendClient, json_or_none
from backend.models import JobInput, RecognitionResult, ScanJob, ScanLogEntry, parse_job_creation
from core.exceptions import UpstreamError

logger = logging.getLogger(__name__)

JOBS_PATH = "/api/jobs"


class JobService:
    """Create, observe and control server-side scan jobs."""

    def __init__(self, client: BackendClient):
        self.client = client

    def _parse_job(self, payload: Any, job_id: str | None = None) -> ScanJob:
        if isinstance(payload, dict) and isinstance(payload.get("job"), dict):
            payload = payload["job"]
        if not isinstance(payload, dict):
            raise UpstreamError(f"Unexpected job payload: {type(payload).__name__}")
        if job_id is not None and "id" not in payload and "jobId" not in payload:
            payload = {**payload, "id": job_id}
        return _validate_job(payload)

    async def create_job(self, job_input: JobInput) -> ScanJob | RecognitionResult | ScanLogEntry:
        """Create a job; non-batch inputs come back as a completed result."""
        payload = await self.client.post_json(JOBS_PATH, json=job_input.to_payload())
        if not isinstance(payload, dict):
            raise UpstreamError("Job creation returned no body")
        try:
            created = parse_job_creation(payload)
        except ModelValidationError as e:
            raise UpstreamError(f"Invalid job creation response: {e}") from e
        if isinstance(created, ScanJob):
            logger.info(f"Created job {created.id} ({job_input.job_type.value}): {created.status.value}")
        else:
            logger.info(f"{job_input.job_type.value} completed immediately")
        return created

    async def get_status(self, job_id: str) -> ScanJob:
        return self._parse_job(await self.client.get_json(f"{JOBS_PATH}/{job_id}"), job_id)

    async def _control(self, job_id: str, action: str) -> ScanJob | None:
        payload = await self.client.post_json(f"{JOBS_PATH}/{job_id}/{action}")
        logger.info(f"Requested {action} for job {job_id}")
        if payload is None:
            return None
        return self._parse_job(payload, job_id)

    async def pause(self, job_id: str) -> ScanJob | None:
        return await self._control(job_id, "pause")

    async def resume(self, job_id: str) -> ScanJob | None:
        return await self._control(job_id, "resume")

    async def abort(self, job_id: str) -> ScanJob | None:
        return await self._control(job_id, "abort")

    async def get_active_job(self) -> ScanJob | None:
        """The user's in-flight job, if any."""
        payload = await self.client.get_json(f"{JOBS_PATH}/active")
        if payload is None or (isinstance(payload, dict) and payload.get("job", {}) is None):
            return None
        return self._parse_job(payload)

    async def list_jobs(self) -> list[ScanJob]:
        payload = await self.client.get_json(JOBS_PATH)
        if payload is None:
            return []
        if isinstance(payload, dict):
            payload = payload.get("jobs", [])
        if not isinstance(payload, list):
            raise UpstreamError(f"Unexpected job list payload: {type(payload).__name__}")
        return [_validate_job(item) for item in payload]

    async def upload_file(self, job_id: str, snippet: SnippetFile) -> ScanJob | None:
        """Upload one snippet to a file-upload batch job.

        Returns:
            The job update carried in the response, if any
        """
        response = await self.client.request(
            "POST",
            f"{JOBS_PATH}/{job_id}/files",
            files={"audioFile": (snippet.name, snippet.data, snippet.mime_type)},
        )
        logger.debug(f"Uploaded {snippet.name} to job {job_id}")
        body = json_or_none(response)
        update = body.get("jobUpdate") if isinstance(body, dict) else None
        return self._parse_job(update, job_id) if update else None


def _validate_job(payload: Any) -> ScanJob:
    try:
        return ScanJob.model_validate(payload)
    except ModelValidationError as e:
        raise UpstreamError(f"Invalid job payload: {e}") from e
