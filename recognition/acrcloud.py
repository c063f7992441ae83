"""ACRCloud identification client."""

import base64
import hashlib
import hmac
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import ValidationError as ModelValidationError

from backend.models import Match, RecognitionResult
from config.settings import Settings
from core.exceptions import ConfigurationError, TransportError, UpstreamError, UpstreamErrorCode
from core.sentry import add_breadcrumb
from core.telemetry import record_api_call, record_api_time

logger = logging.getLogger(__name__)

IDENTIFY_PATH = "/v1/identify"
DATA_TYPE = "audio"
SIGNATURE_VERSION = "1"

# ACRCloud status codes
STATUS_SUCCESS = 0
STATUS_NO_RESULT = 1001
STATUS_CREDITS_EXHAUSTED = 3003
STATUS_RATE_LIMITED = 3015

_STATUS_CODES = {
    STATUS_NO_RESULT: UpstreamErrorCode.NO_RESULT,
    STATUS_CREDITS_EXHAUSTED: UpstreamErrorCode.CREDITS_EXHAUSTED,
    STATUS_RATE_LIMITED: UpstreamErrorCode.RATE_LIMITED,
}


def sign_request(access_key: str, access_secret: str, timestamp: str) -> str:
    """HMAC-SHA1 signature of the identify request, base64 encoded."""
    string_to_sign = "\n".join(
        ["POST", IDENTIFY_PATH, access_key, DATA_TYPE, SIGNATURE_VERSION, timestamp]
    )
    digest = hmac.new(
        access_secret.encode("ascii"), string_to_sign.encode("ascii"), hashlib.sha1
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def map_music(track: dict[str, Any]) -> Match:
    """Convert one ``metadata.music[]`` item into a Match."""
    external = track.get("external_metadata") or {}
    spotify = external.get("spotify") or {}
    youtube = external.get("youtube") or {}
    spotify_artists = spotify.get("artists") or []

    artists = ", ".join(a["name"] for a in track.get("artists") or [] if a.get("name"))
    score = float(track.get("score") or 0)

    return Match(
        id=track.get("acrid") or uuid.uuid4().hex,
        title=track.get("title") or "Unknown Title",
        artist=artists or "Unknown Artist",
        album=(track.get("album") or {}).get("name") or "Unknown Album",
        release_date=track.get("release_date") or "N/A",
        confidence=min(100.0, max(0.0, score)),
        spotify_track_id=(spotify.get("track") or {}).get("id"),
        spotify_artist_id=spotify_artists[0].get("id") if spotify_artists else None,
        youtube_video_id=youtube.get("vid"),
    )


class AcrCloudService:
    """Signs and sends identify requests to ACRCloud."""

    def __init__(
        self,
        host: str,
        access_key: str,
        access_secret: str,
        timeout: float = 25.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.host = host
        self.access_key = access_key
        self.access_secret = access_secret
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "AcrCloudService":
        if not settings.acrcloud_configured:
            raise ConfigurationError("ACRCloud credentials are not configured")
        return cls(
            settings.acrcloud_host or "",
            settings.acrcloud_access_key or "",
            settings.acrcloud_access_secret or "",
            timeout=settings.request_timeout,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"https://{self.host}",
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def identify(
        self, sample: bytes, file_name: str, mime_type: str = "audio/wav"
    ) -> list[Match]:
        """Identify one audio sample.

        Returns:
            Matches in ACRCloud's ranking order

        Raises:
            UpstreamError: no_result, credits_exhausted, rate_limited or upstream_error
            TransportError: If ACRCloud could not be reached
        """
        timestamp = str(int(time.time()))
        data = {
            "access_key": self.access_key,
            "sample_bytes": str(len(sample)),
            "timestamp": timestamp,
            "signature": sign_request(self.access_key, self.access_secret, timestamp),
            "data_type": DATA_TYPE,
            "signature_version": SIGNATURE_VERSION,
        }
        files = {"sample": (file_name, sample, mime_type)}

        client = await self._get_client()
        add_breadcrumb("acrcloud", "identify", {"file_name": file_name, "bytes": len(sample)})
        record_api_call()
        start = time.perf_counter()
        try:
            response = await client.post(IDENTIFY_PATH, data=data, files=files)
        except httpx.TimeoutException as e:
            raise TransportError("ACRCloud request timed out", timeout=True) from e
        except httpx.RequestError as e:
            raise TransportError(f"ACRCloud request failed: {e}") from e
        finally:
            record_api_time((time.perf_counter() - start) * 1000)

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        status = body.get("status") or {}
        message = status.get("msg") or f"ACRCloud API Error: {response.status_code}"

        if response.status_code >= 400:
            logger.error(f"ACRCloud API error ({response.status_code}): {message}")
            code = (
                UpstreamErrorCode.RATE_LIMITED
                if response.status_code == 429
                else UpstreamErrorCode.UPSTREAM_ERROR
            )
            raise UpstreamError(f"ACRCloud: {message}", code=code, status_code=response.status_code)

        status_code = status.get("code")
        if status_code == STATUS_SUCCESS:
            music = (body.get("metadata") or {}).get("music") or []
            try:
                matches = [map_music(track) for track in music]
            except ModelValidationError as e:
                raise UpstreamError(f"Unexpected ACRCloud metadata: {e}") from e
            logger.info(f"ACRCloud identified {file_name}: {len(matches)} match(es)")
            return matches

        code = _STATUS_CODES.get(status_code, UpstreamErrorCode.UPSTREAM_ERROR)
        if code == UpstreamErrorCode.NO_RESULT:
            logger.info(f"ACRCloud found no match for {file_name}")
        else:
            logger.error(f"ACRCloud recognition error {status_code}: {message}")
        add_breadcrumb("acrcloud", "identify", {"status": status_code}, level="warning")
        raise UpstreamError(
            f"ACRCloud error: {message}", code=code, details={"acr_code": status_code}
        )

    async def scan(
        self, sample: bytes, file_name: str, mime_type: str = "audio/wav"
    ) -> RecognitionResult:
        """Identify a sample and wrap the outcome as a RecognitionResult.

        A no_result answer is a successful scan with no matches.
        """
        try:
            matches = await self.identify(sample, file_name, mime_type)
        except UpstreamError as e:
            if e.code != UpstreamErrorCode.NO_RESULT:
                raise
            matches = []
        return RecognitionResult(
            scan_id=f"acrscan-{uuid.uuid4().hex[:16]}",
            instrumental_name=file_name,
            instrumental_size=len(sample),
            scan_date=datetime.now(timezone.utc),
            matches=matches,
        )
