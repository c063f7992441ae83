"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Backend collaborators
    api_base_url: str = Field(
        default="https://api.soundtrace.uk", description="Base URL for the SoundTrace backend"
    )
    push_channel_path: str = Field(
        default="/api/job-updates/subscribe", description="Server-sent events endpoint path"
    )
    request_timeout: float = Field(
        default=25.0, description="Client-side timeout in seconds for status/list calls"
    )
    poll_interval_seconds: float = Field(
        default=5.0, description="Delay between job status polls"
    )

    # Backend Rate Limiting Configuration
    backend_rate_limit: int = Field(
        default=120, description="Max backend API requests per minute"
    )
    backend_max_concurrent: int = Field(
        default=5, description="Max concurrent backend API requests"
    )
    backend_max_retries: int = Field(
        default=2, description="Max retry attempts on 429 rate limit errors"
    )

    # Snippet extraction
    snippet_duration_seconds: float = Field(
        default=21.0, description="Target duration of each extracted snippet"
    )
    min_snippet_seconds: float = Field(
        default=1.0, description="Shortest snippet worth submitting"
    )
    target_sample_rate: int = Field(default=44100, description="Snippet sample rate")
    target_channels: int = Field(default=2, description="Snippet channel count")
    max_snippets_per_file: int = Field(default=3, description="Upper bound on segments per file")
    snippet_offset_attempts: int = Field(
        default=10, description="Random offset attempts per additional segment"
    )
    max_upload_bytes: int = Field(
        default=50 * 1024 * 1024, description="Pre-processing size ceiling for uploads"
    )

    # Audio decoding
    ffmpeg_path: str = Field(default="ffmpeg", description="ffmpeg executable")
    ffprobe_path: str = Field(default="ffprobe", description="ffprobe executable")
    max_concurrent_decodes: int = Field(
        default=4, description="Max decoder subprocesses running at once"
    )

    # ACRCloud Configuration - Optional
    acrcloud_host: str | None = Field(None, description="ACRCloud identification host")
    acrcloud_access_key: str | None = Field(None, description="ACRCloud access key")
    acrcloud_access_secret: str | None = Field(None, description="ACRCloud access secret")

    # Stream Count Cache Configuration
    stream_count_cache_ttl: int = Field(
        default=3600, description="TTL in seconds for stream count cache (default: 1 hour)"
    )
    stream_count_cache_maxsize: int = Field(
        default=1000, description="Maximum entries in the stream count cache"
    )

    # Application Configuration
    host: str = Field(default="0.0.0.0", description="Host to bind the server to")
    port: int = Field(default=8000, description="Port to run the server on")
    log_level: str = Field(default="INFO", description="Logging level")
    log_level_overrides: dict[str, str] = Field(
        default_factory=dict,
        description='Per-logger levels as JSON, e.g. {"jobs.state_machine": "DEBUG"}',
    )

    # Feature Flags
    enable_telemetry: bool = Field(default=True, description="Enable PostHog telemetry")

    # PostHog Configuration
    posthog_api_key: str | None = Field(None, description="PostHog API key for telemetry")
    posthog_host: str = Field(default="https://us.i.posthog.com", description="PostHog host URL")

    # Sentry Configuration
    sentry_dsn: str | None = Field(None, description="Sentry DSN for error tracking")

    # Application Metadata
    app_name: str = Field(default="SoundTrace-Core", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def push_channel_url(self) -> str:
        """Absolute URL of the push channel endpoint."""
        return f"{self.api_base_url.rstrip('/')}/{self.push_channel_path.lstrip('/')}"

    @property
    def acrcloud_configured(self) -> bool:
        """Whether all ACRCloud credentials are present."""
        return bool(
            self.acrcloud_host and self.acrcloud_access_key and self.acrcloud_access_secret
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
