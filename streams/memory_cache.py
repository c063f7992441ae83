"""TTL-based LRU caching for stream count lookups."""

import hashlib
import json
import logging
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]
from pydantic import BaseModel

from core.telemetry import record_memory_cache_hit

logger = logging.getLogger(__name__)

# Registry of all caches for bulk operations
_cache_registry: list[TTLCache] = []

_stream_count_cache: TTLCache | None = None

T = TypeVar("T")


def make_cache_key(func_name: str, *args, **kwargs) -> str:
    """Generate a deterministic cache key from function name and arguments.

    Args:
        func_name: Name of the function being cached
        *args: Positional arguments to the function
        **kwargs: Keyword arguments to the function

    Returns:
        MD5 hash of the serialized arguments
    """
    key_data = {
        "fn": func_name,
        "args": list(args),
        "kwargs": dict(sorted(kwargs.items())),
    }
    key_string = json.dumps(key_data, sort_keys=True, default=str)
    return hashlib.md5(key_string.encode()).hexdigest()


def create_ttl_cache(maxsize: int, ttl: int) -> TTLCache:
    """Create a TTL cache and register it for bulk operations."""
    cache = TTLCache(maxsize=maxsize, ttl=ttl)
    _cache_registry.append(cache)
    return cache


def clear_all_caches() -> None:
    """Clear all registered caches and reset the lazy stream count cache."""
    global _stream_count_cache
    for cache in _cache_registry:
        cache.clear()
    _stream_count_cache = None


def _set_cached_flag(result: Any, cached: bool) -> Any:
    """Set the cached flag on a result if it has one."""
    if isinstance(result, BaseModel) and "cached" in type(result).model_fields:
        return result.model_copy(update={"cached": cached})
    return result


def async_cached(
    cache: TTLCache | Callable[[], TTLCache],
    should_cache: Callable[[Any], bool] | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for caching async function results.

    Results are keyed on the call arguments (``self`` excluded for methods).
    None results, and results rejected by ``should_cache``, are not stored.

    Args:
        cache: TTLCache instance, or a zero-argument getter resolved per call
        should_cache: Optional predicate deciding whether a result is stored

    Returns:
        Decorator function
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            store = cache() if callable(cache) else cache

            cache_args = args
            if args and hasattr(args[0], func.__name__):
                cache_args = args[1:]

            key = make_cache_key(func.__name__, *cache_args, **kwargs)

            if key in store:
                logger.debug(f"Cache hit for {func.__name__}")
                record_memory_cache_hit()
                return _set_cached_flag(store[key], cached=True)  # type: ignore[no-any-return]

            logger.debug(f"Cache miss for {func.__name__}")
            result = await func(*args, **kwargs)  # type: ignore[misc]

            if result is not None and (should_cache is None or should_cache(result)):
                store[key] = result

            return result  # type: ignore[no-any-return]

        return wrapper  # type: ignore[return-value]

    return decorator


def get_stream_count_cache() -> TTLCache:
    """Get or create the stream count cache using settings."""
    global _stream_count_cache
    if _stream_count_cache is None:
        from config.settings import get_settings

        settings = get_settings()
        _stream_count_cache = create_ttl_cache(
            maxsize=settings.stream_count_cache_maxsize,
            ttl=settings.stream_count_cache_ttl,
        )
    return _stream_count_cache
