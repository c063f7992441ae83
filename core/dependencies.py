"""FastAPI dependency injection providers."""

import logging

from fastapi import Depends
from posthog import Posthog

from config.settings import Settings, get_settings
from core.exceptions import ServiceInitializationError
from recognition.acrcloud import AcrCloudService

logger = logging.getLogger(__name__)

# Module-level instances for lifecycle management
_acrcloud_service: AcrCloudService | None = None
_posthog_client: Posthog | None = None


async def get_acrcloud_service(
    settings: Settings = Depends(get_settings),
) -> AcrCloudService | None:
    """Get the ACRCloud service instance.

    Args:
        settings: Application settings

    Returns:
        Optional[AcrCloudService]: ACRCloud service if configured, None otherwise

    Raises:
        ServiceInitializationError: If the service cannot be created
    """
    global _acrcloud_service

    if not settings.acrcloud_configured:
        logger.debug("ACRCloud credentials not set - recognition disabled")
        return None

    if _acrcloud_service is None:
        try:
            _acrcloud_service = AcrCloudService.from_settings(settings)
        except Exception as e:
            logger.error(f"Failed to initialize ACRCloud service: {e}")
            raise ServiceInitializationError(f"ACRCloud initialization failed: {e}") from e
        logger.info(f"ACRCloud service initialized (host: {settings.acrcloud_host})")

    return _acrcloud_service


async def close_acrcloud_service() -> None:
    """Close the ACRCloud service and its HTTP client."""
    global _acrcloud_service
    if _acrcloud_service:
        await _acrcloud_service.close()
        _acrcloud_service = None


def get_posthog_client(settings: Settings = Depends(get_settings)) -> Posthog | None:
    """Get PostHog client instance.

    Args:
        settings: Application settings

    Returns:
        Optional[Posthog]: PostHog client if configured and enabled, None otherwise
    """
    global _posthog_client

    if not settings.enable_telemetry:
        logger.debug("Telemetry disabled")
        return None

    if not settings.posthog_api_key:
        logger.debug("POSTHOG_API_KEY not set - telemetry disabled")
        return None

    if _posthog_client is None:
        _posthog_client = Posthog(
            project_api_key=settings.posthog_api_key,
            host=settings.posthog_host,
        )
        logger.info(f"PostHog client initialized (host: {settings.posthog_host})")

    return _posthog_client


def flush_posthog() -> None:
    """Flush any buffered PostHog events."""
    if _posthog_client:
        _posthog_client.flush()


def shutdown_posthog() -> None:
    """Shutdown PostHog client gracefully."""
    global _posthog_client
    if _posthog_client:
        _posthog_client.shutdown()
        _posthog_client = None
        logger.info("PostHog client shutdown")
