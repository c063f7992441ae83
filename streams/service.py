"""Lazy Spotify stream count lookups."""

import asyncio
import logging
from urllib.parse import quote

from pydantic import ValidationError as ModelValidationError

from backend.client import BackendClient
from backend.models import Match, StreamCounts
from core.exceptions import AuthError, SoundTraceError, UpstreamError
from streams.memory_cache import async_cached, get_stream_count_cache
from streams.models import TrackStreamCount

logger = logging.getLogger(__name__)

STREAMS_PATH = "/api/spotify-streams/track"


def _is_available(result: TrackStreamCount) -> bool:
    return result.available


class StreamCountService:
    """Fetches stream counts per Spotify track, cached in memory.

    Only available counts are cached; token or data errors are retried on
    the next lookup.
    """

    def __init__(self, client: BackendClient):
        self.client = client

    @async_cached(get_stream_count_cache, should_cache=_is_available)
    async def get_track_streams(self, track_id: str) -> TrackStreamCount:
        """Get the stream count for a Spotify track id or URL.

        Raises:
            AuthError: If the session is no longer valid
            UpstreamError: If the backend answered with an error or bad payload
            TransportError: If the backend could not be reached
        """
        payload = await self.client.get_json(f"{STREAMS_PATH}/{quote(track_id, safe='')}")
        try:
            result = TrackStreamCount.model_validate(payload or {})
        except ModelValidationError as e:
            raise UpstreamError(f"Invalid stream count payload: {e}") from e
        if not result.available:
            logger.info(
                f"Stream count unavailable for {track_id}: "
                f"{result.stream_count_status.value} {result.message or ''}".rstrip()
            )
        return result

    async def _counts_for(self, match: Match) -> Match:
        if match.stream_counts is not None or not match.spotify_track_id:
            return match
        try:
            result = await self.get_track_streams(match.spotify_track_id)
        except AuthError:
            raise
        except SoundTraceError as e:
            logger.warning(f"Stream count lookup failed for {match.spotify_track_id}: {e.message}")
            return match
        if not result.available:
            return match
        return match.model_copy(update={"stream_counts": StreamCounts(spotify=result.stream_count)})

    async def enrich_matches(self, matches: list[Match]) -> list[Match]:
        """Fill in Spotify stream counts where missing.

        Best effort: a failed lookup leaves the match unchanged. Auth
        failures still propagate so the session can end.
        """
        results = await asyncio.gather(
            *(self._counts_for(m) for m in matches), return_exceptions=True
        )
        auth_error = next((r for r in results if isinstance(r, AuthError)), None)
        if auth_error is not None:
            raise auth_error
        enriched: list[Match] = []
        for match, result in zip(matches, results):
            if isinstance(result, BaseException):
                raise result
            enriched.append(result)
        return enriched
