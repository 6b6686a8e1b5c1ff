"""
In-memory response cache

Keys are namespaced per division ("aebf:{DIVISION}:..."), so every write to
a division's budget can drop that division's entries with a single
invalidate_cache("aebf:{DIVISION}") call.
"""

import logging
import time
from threading import Lock
from typing import Any, Optional

from utils.config import CACHE_TTL

logger = logging.getLogger(__name__)

# { key: value } and { key: stored_at (epoch seconds) }
_cache: dict = {}
_cache_time: dict = {}
_lock = Lock()


def division_cache_prefix(division_code: str) -> str:
    return f"aebf:{division_code.upper()}"


def cache_get(key: str) -> Optional[Any]:
    """Return cached value if still within TTL, else None."""
    with _lock:
        if key in _cache and (time.time() - _cache_time.get(key, 0)) < CACHE_TTL:
            return _cache[key]
        return None


def cache_set(key: str, value: Any) -> None:
    with _lock:
        _cache[key] = value
        _cache_time[key] = time.time()


def invalidate_cache(prefix: Optional[str] = None) -> int:
    """Clear all cached entries, or only those whose key starts with *prefix*."""
    with _lock:
        if prefix is None:
            removed = len(_cache)
            _cache.clear()
            _cache_time.clear()
        else:
            keys = [k for k in _cache if k.startswith(prefix)]
            for k in keys:
                _cache.pop(k, None)
                _cache_time.pop(k, None)
            removed = len(keys)
    if removed:
        logger.info(f"Invalidated {removed} cache entries (prefix={prefix})")
    return removed


def invalidate_division_cache(division_code: str) -> None:
    """Drop a division's cached entries after a committed write; failures are only logged."""
    try:
        invalidate_cache(division_cache_prefix(division_code))
    except Exception as e:
        logger.warning(f"Cache invalidation failed for {division_code}: {str(e)}")
