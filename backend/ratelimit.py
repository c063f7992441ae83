"""Client-side throttling for backend requests.

Each event loop gets its own AsyncLimiter (requests per minute) and
concurrency semaphore, created on first use.
"""

import asyncio
import logging

from aiolimiter import AsyncLimiter

from config.settings import get_settings

logger = logging.getLogger(__name__)

_rate_limiters: dict[asyncio.AbstractEventLoop, AsyncLimiter] = {}
_semaphores: dict[asyncio.AbstractEventLoop, asyncio.Semaphore] = {}


def get_rate_limiter() -> AsyncLimiter:
    """Get or create the backend rate limiter for the current event loop."""
    rate = get_settings().backend_rate_limit
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return AsyncLimiter(rate, 60)

    if loop not in _rate_limiters:
        _rate_limiters[loop] = AsyncLimiter(rate, 60)
        logger.debug(f"Created backend rate limiter: {rate} req/min")
    return _rate_limiters[loop]


def get_semaphore() -> asyncio.Semaphore:
    """Get or create the backend concurrency semaphore for the current event loop."""
    limit = get_settings().backend_max_concurrent
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.Semaphore(limit)

    if loop not in _semaphores:
        _semaphores[loop] = asyncio.Semaphore(limit)
        logger.debug(f"Created backend semaphore: {limit} concurrent")
    return _semaphores[loop]


def reset_rate_limiting() -> None:
    """Reset rate limiting state for testing."""
    _rate_limiters.clear()
    _semaphores.clear()
    logger.debug("Reset rate limiting state")
