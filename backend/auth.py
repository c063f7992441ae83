"""Session endpoints."""

import logging

from backend.client import BackendClient

logger = logging.getLogger(__name__)

LOGOUT_PATH = "/api/auth/logout"


class AuthClient:
    def __init__(self, client: BackendClient):
        self.client = client

    async def logout(self) -> None:
        """End the server-side session and forget the local token."""
        if not self.client.token:
            return
        try:
            await self.client.request("POST", LOGOUT_PATH)
            logger.info("Server session ended")
        finally:
            self.client.token = None
