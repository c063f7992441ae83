"""Authenticated session ownership and forced logout."""

import logging
from collections.abc import Awaitable, Callable

from backend.auth import AuthClient
from backend.client import BackendClient
from core.exceptions import AuthError, SoundTraceError

logger = logging.getLogger(__name__)

Teardown = Callable[[], Awaitable[None]]


class Session:
    """Top-level owner of the authenticated session.

    Every component routes AuthError here. force_logout runs its side
    effects once per session no matter how many callers report the failure.
    """

    def __init__(
        self,
        client: BackendClient,
        auth: AuthClient | None = None,
        on_logout: Callable[[], Awaitable[None]] | None = None,
    ):
        self.client = client
        self.auth = auth or AuthClient(client)
        self.on_logout = on_logout
        self._teardowns: list[Teardown] = []
        self._logged_out = False
        self.logout_count = 0
        # Bumped whenever a session starts or ends
        self.generation = 0

    @property
    def authenticated(self) -> bool:
        return bool(self.client.token) and not self._logged_out

    def begin(self, token: str) -> None:
        """Start a session with ``token``."""
        self.client.token = token
        self._logged_out = False
        self.generation += 1
        logger.info("Session started")

    def add_teardown(self, callback: Teardown) -> None:
        """Register cleanup to run when the session ends."""
        self._teardowns.append(callback)

    async def handle_error(self, error: Exception, operation: str | None = None) -> bool:
        """Force logout for auth failures.

        Returns:
            True if the error was an auth failure and has been handled
        """
        if not isinstance(error, AuthError):
            return False
        logger.warning(
            f"Auth error during {operation or 'unknown operation'}, logging out: {error.message}"
        )
        await self.force_logout(reason=error.message)
        return True

    async def force_logout(self, reason: str | None = None) -> None:
        if self._logged_out:
            return
        # Set before any await so concurrent callers see it
        self._logged_out = True
        self.generation += 1
        self.logout_count += 1
        logger.info(f"Logging out{f' ({reason})' if reason else ''}")

        for teardown in reversed(self._teardowns):
            try:
                await teardown()
            except Exception:
                logger.exception("Session teardown step failed")

        try:
            await self.auth.logout()
        except SoundTraceError as e:
            logger.debug(f"Server-side logout failed: {e.message}")
        finally:
            self.client.token = None

        if self.on_logout is not None:
            await self.on_logout()

    async def logout(self) -> None:
        """User-initiated logout."""
        await self.force_logout(reason="user request")
