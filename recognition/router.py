"""Recognition proxy API router."""

import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from posthog import Posthog

from backend.models import RecognitionResult
from core.dependencies import get_acrcloud_service, get_posthog_client
from core.exceptions import TransportError, UpstreamError, UpstreamErrorCode
from core.telemetry import RequestTelemetry, get_request_stats, init_request_stats
from recognition.acrcloud import AcrCloudService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recognition"])

_UPSTREAM_STATUS = {
    UpstreamErrorCode.RATE_LIMITED: 429,
    UpstreamErrorCode.CREDITS_EXHAUSTED: 402,
}


def _require_service(service: AcrCloudService | None) -> AcrCloudService:
    """Raise 500 if recognition credentials are missing."""
    if service is None:
        raise HTTPException(
            status_code=500,
            detail="ACRCloud is not configured. Set ACRCLOUD_HOST, ACRCLOUD_ACCESS_KEY "
            "and ACRCLOUD_ACCESS_SECRET.",
        )
    return service


@router.post(
    "/scan-track",
    response_model=RecognitionResult,
    summary="Identify one audio snippet",
    responses={
        200: {"description": "Scan completed (matches may be empty)"},
        400: {"description": "No audio file uploaded"},
        402: {"description": "Recognition credits exhausted"},
        429: {"description": "Recognition rate limit reached"},
        500: {"description": "Recognition service not configured"},
        502: {"description": "Recognition service failed or unreachable"},
    },
)
async def scan_track(
    audio_file: UploadFile | None = File(None, alias="audioFile"),
    service: AcrCloudService | None = Depends(get_acrcloud_service),
    posthog_client: Posthog | None = Depends(get_posthog_client),
) -> RecognitionResult:
    """Identify an uploaded snippet and return its matches."""
    if audio_file is None:
        raise HTTPException(status_code=400, detail="No audio file uploaded.")
    svc = _require_service(service)

    init_request_stats()
    telemetry = RequestTelemetry()
    file_name = audio_file.filename or "snippet.wav"

    try:
        with telemetry.track_step("read_upload"):
            sample = await audio_file.read()
        if not sample:
            raise HTTPException(status_code=400, detail="Uploaded audio file is empty.")

        telemetry.record_api_call("acrcloud")
        with telemetry.track_step("identify"):
            result = await svc.scan(
                sample, file_name, audio_file.content_type or "application/octet-stream"
            )
    except UpstreamError as e:
        status_code = _UPSTREAM_STATUS.get(e.code, 502)
        logger.error(f"Scan of {file_name} failed ({e.code.value}): {e.message}")
        raise HTTPException(status_code=status_code, detail=e.message) from e
    except TransportError as e:
        logger.error(f"Scan of {file_name} failed: {e.message}")
        raise HTTPException(status_code=502, detail=e.message) from e
    finally:
        if posthog_client:
            telemetry.send_to_posthog(
                posthog_client,
                extra_properties={"file_bytes": audio_file.size or 0},
            )

    stats = get_request_stats() or {}
    logger.info(
        f"Scanned {file_name}: {len(result.matches)} match(es) "
        f"in {telemetry.get_total_duration_ms():.0f}ms ({stats.get('api_calls', 0)} API call(s))"
    )
    return result
