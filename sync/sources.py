"""Classify YouTube and Spotify links into the job kind that scans them."""

from dataclasses import dataclass
from enum import Enum
from urllib.parse import parse_qs, urlparse

from backend.models import JobType
from core.exceptions import ValidationError


class SourceKind(str, Enum):
    YOUTUBE_VIDEO = "youtube_video"
    YOUTUBE_PLAYLIST = "youtube_playlist"
    YOUTUBE_CHANNEL = "youtube_channel"
    SPOTIFY_TRACK = "spotify_track"
    SPOTIFY_PLAYLIST = "spotify_playlist"


# Spotify tracks go through the import job; the backend answers with a
# completed single-item result instead of a job descriptor.
JOB_TYPES = {
    SourceKind.YOUTUBE_VIDEO: JobType.YOUTUBE_VIDEO_SINGLE,
    SourceKind.YOUTUBE_PLAYLIST: JobType.YOUTUBE_PLAYLIST_BATCH,
    SourceKind.YOUTUBE_CHANNEL: JobType.YOUTUBE_CHANNEL_BATCH,
    SourceKind.SPOTIFY_TRACK: JobType.SPOTIFY_PLAYLIST_IMPORT,
    SourceKind.SPOTIFY_PLAYLIST: JobType.SPOTIFY_PLAYLIST_IMPORT,
}

YOUTUBE_HOSTS = ("youtube.com", "youtu.be")
SPOTIFY_HOST = "open.spotify.com"


@dataclass(frozen=True)
class DetectedSource:
    kind: SourceKind
    url: str

    @property
    def job_type(self) -> JobType:
        return JOB_TYPES[self.kind]

    @property
    def is_batch(self) -> bool:
        return self.kind not in (SourceKind.YOUTUBE_VIDEO, SourceKind.SPOTIFY_TRACK)


def _classify_youtube(path: str, host: str, query: dict[str, list[str]]) -> SourceKind | None:
    if "/playlist" in path or "list" in query:
        return SourceKind.YOUTUBE_PLAYLIST
    if path.startswith(("/@", "/channel/", "/user/")):
        return SourceKind.YOUTUBE_CHANNEL
    if "/watch" in path or "youtu.be" in host or "v" in query:
        return SourceKind.YOUTUBE_VIDEO
    return None


def _classify_spotify(path: str) -> SourceKind | None:
    if "/track/" in path:
        return SourceKind.SPOTIFY_TRACK
    if "/playlist/" in path:
        return SourceKind.SPOTIFY_PLAYLIST
    return None


def detect_source(url: str) -> DetectedSource:
    """Work out what kind of YouTube or Spotify link ``url`` is.

    A playlist parameter wins over a video id, so a video opened from a
    playlist scans the whole playlist.

    Raises:
        ValidationError: If the URL is malformed or not a supported link
    """
    url = url.strip()
    if not url:
        raise ValidationError("Please enter a URL")

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValidationError(f"Invalid URL: {url}")

    host = parsed.hostname.lower()
    query = parse_qs(parsed.query)

    if any(host == h or host.endswith(f".{h}") for h in YOUTUBE_HOSTS):
        kind = _classify_youtube(parsed.path, host, query)
        if kind is None:
            raise ValidationError(f"Unsupported YouTube URL: {url}")
        return DetectedSource(kind, url)

    if host == SPOTIFY_HOST:
        kind = _classify_spotify(parsed.path)
        if kind is None:
            raise ValidationError(f"Unsupported Spotify URL: {url}")
        return DetectedSource(kind, url)

    raise ValidationError(f"Not a YouTube or Spotify URL: {url}")
