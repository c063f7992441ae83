"""Stream count wire models."""

from enum import Enum

from backend.models import WireModel


class StreamCountStatus(str, Enum):
    AVAILABLE = "available"
    TOKEN_ERROR = "unavailable_token_error"
    DATA_MISSING = "unavailable_data_missing"
    API_ERROR = "unavailable_api_error"


class TrackStreamCount(WireModel):
    """Stream count for one Spotify track, as reported by the backend."""

    track_name: str = ""
    artist_name: str = ""
    album_name: str | None = None
    cover_art_url: str | None = None
    stream_count: int | None = None
    stream_count_status: StreamCountStatus = StreamCountStatus.AVAILABLE
    message: str | None = None
    cached: bool = False

    @property
    def available(self) -> bool:
        return (
            self.stream_count_status == StreamCountStatus.AVAILABLE
            and self.stream_count is not None
        )
