"""TTL cache for async provider lookups."""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Coroutine

from cachetools import TTLCache

logger = logging.getLogger(__name__)

_cache: TTLCache = TTLCache(maxsize=256, ttl=300)


def configure_cache(ttl: int) -> None:
    global _cache
    _cache = TTLCache(maxsize=256, ttl=ttl)


def cached(prefix: str, key: Callable[..., str]) -> Callable:
    """Cache an async method's result under ``prefix:key(*args, **kwargs)``.

    ``key`` receives the call arguments without ``self``.
    """
    def decorator(func: Callable[..., Coroutine[Any, Any, Any]]) -> Callable:
        @functools.wraps(func)
        async def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            cache_key = f"{prefix}:{key(*args, **kwargs)}"
            if cache_key in _cache:
                logger.debug("Cache hit: %s", cache_key)
                return _cache[cache_key]
            result = await func(self, *args, **kwargs)
            _cache[cache_key] = result
            logger.debug("Cache set: %s", cache_key)
            return result
        return wrapper
    return decorator


def invalidate_all() -> None:
    _cache.clear()
