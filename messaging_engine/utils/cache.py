"""Bounded key/value caches for process-lifetime lookups."""

from typing import MutableMapping, Optional

from cachetools import LRUCache, TTLCache

from messaging_engine.core import config


def make_process_cache(
    maxsize: Optional[int] = None,
    ttl_seconds: Optional[int] = None,
) -> MutableMapping:
    """LRU cache by default; a TTL cache when a positive ttl is given."""
    size = maxsize or config.PROMPT_CACHE_MAXSIZE
    ttl = config.PROMPT_CACHE_TTL_SEC if ttl_seconds is None else ttl_seconds
    if ttl and ttl > 0:
        return TTLCache(maxsize=size, ttl=ttl)
    return LRUCache(maxsize=size)
