"""Scan log storage API."""

import logging

from pydantic import ValidationError as ModelValidationError

from backend.client import BackendClient
from backend.models import ManualLogEntry, ScanLogEntry
from core.exceptions import UpstreamError

logger = logging.getLogger(__name__)

SCAN_LOGS_PATH = "/api/scanlogs"


class ScanLogService:
    """List, create and delete the user's scan log entries."""

    def __init__(self, client: BackendClient):
        self.client = client

    async def list(self) -> list[ScanLogEntry]:
        payload = await self.client.get_json(SCAN_LOGS_PATH)
        if payload is None:
            return []
        if isinstance(payload, dict):
            payload = payload.get("logs", [])
        if not isinstance(payload, list):
            raise UpstreamError(f"Unexpected scan log payload: {type(payload).__name__}")
        logs = []
        for item in payload:
            try:
                logs.append(ScanLogEntry.model_validate(item))
            except ModelValidationError as e:
                log_id = item.get("logId") if isinstance(item, dict) else None
                logger.warning(f"Skipping invalid scan log {log_id or '<unknown>'}: {e}")
        skipped = len(payload) - len(logs)
        logger.debug(f"Fetched {len(logs)} scan log(s), skipped {skipped}")
        return logs

    async def create(self, entry: ManualLogEntry) -> ScanLogEntry:
        """Store a manually added entry and return the server's copy."""
        payload = await self.client.post_json(
            SCAN_LOGS_PATH, json=entry.model_dump(mode="json", by_alias=True, exclude_none=True)
        )
        try:
            created = ScanLogEntry.model_validate(payload)
        except ModelValidationError as e:
            raise UpstreamError(f"Invalid scan log payload: {e}") from e
        logger.info(f"Created scan log {created.log_id}")
        return created

    async def delete(self, log_id: str) -> None:
        await self.client.delete(f"{SCAN_LOGS_PATH}/{log_id}")
        logger.info(f"Deleted scan log {log_id}")

    async def delete_all(self) -> None:
        await self.client.delete(SCAN_LOGS_PATH)
        logger.info("Deleted all scan logs")
