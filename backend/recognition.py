"""Single-snippet recognition submission."""

import logging

from audio.models import SnippetFile
from backend.client import BackendClient
from backend.models import RecognitionResult
from core.exceptions import UpstreamError, UpstreamErrorCode

logger = logging.getLogger(__name__)

SCAN_TRACK_PATH = "/api/scan-track"


class RecognitionClient:
    """Submits one snippet at a time to the recognition endpoint."""

    def __init__(self, client: BackendClient, path: str = SCAN_TRACK_PATH):
        self.client = client
        self.path = path

    async def submit(self, snippet: SnippetFile) -> RecognitionResult:
        """Upload ``snippet`` and return its matches.

        Raises:
            UpstreamError: rate_limited, no_result or upstream_error
        """
        response = await self.client.request(
            "POST",
            self.path,
            files={"audioFile": (snippet.name, snippet.data, snippet.mime_type)},
        )
        try:
            result = RecognitionResult.model_validate(response.json())
        except ValueError as e:
            raise UpstreamError(
                f"Invalid recognition response for {snippet.name}: {e}",
                code=UpstreamErrorCode.UPSTREAM_ERROR,
                status_code=response.status_code,
            ) from e

        if result.error_message and not result.matches:
            raise UpstreamError(result.error_message, code=UpstreamErrorCode.UPSTREAM_ERROR)

        logger.info(f"Recognized {snippet.name}: {len(result.matches)} match(es)")
        return result
