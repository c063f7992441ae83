"""Health check router."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    summary="Health check",
    responses={
        200: {"description": "Service is healthy or degraded"},
    },
)
async def health_check(settings: Settings = Depends(get_settings)):
    """Report version and which collaborators are configured.

    Recognition without credentials is degraded, not down: the client core
    still talks to the backend's own scan endpoint.
    """
    services = {
        "acrcloud": "configured" if settings.acrcloud_configured else "unavailable",
        "telemetry": (
            "configured"
            if settings.enable_telemetry and settings.posthog_api_key
            else "unavailable"
        ),
        "sentry": "configured" if settings.sentry_dsn else "unavailable",
    }
    status = "healthy" if settings.acrcloud_configured else "degraded"
    if status != "healthy":
        logger.debug("Health check: recognition not configured")

    body = {
        "status": status,
        "version": settings.app_version,
        "services": services,
    }
    return JSONResponse(content=body, status_code=200)
