"""
Thread-safe rate-limited logging utilities.

Polling loops repeat the same observation every tick (time remaining on a
message, an intent awaiting confirmations). This module keeps those lines
visible without flooding the log.
"""
import logging
import threading
from typing import Dict, Optional

from cachetools import TTLCache

# Configure logger
logger = logging.getLogger(__name__)

# One TTL cache per interval, each holding at most 1000 keys
_log_caches: Dict[int, TTLCache] = {}
_log_cache_lock = threading.RLock()


def _cache_for(interval: int) -> TTLCache:
    cache = _log_caches.get(interval)
    if cache is None:
        cache = TTLCache(maxsize=1000, ttl=interval)
        _log_caches[interval] = cache
    return cache


def rate_limited_log(
    message: str,
    level: str = "warning",
    interval: int = 60,
    logger_instance: Optional[logging.Logger] = None,
    key: Optional[str] = None,
) -> bool:
    """
    Log a message with rate limiting, in a thread-safe manner.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        interval: Minimum interval between logs with the same key, in seconds
        logger_instance: Logger to use (defaults to module logger)
        key: Deduplication key; defaults to the message itself. Pass a stable
            key when the message text varies between ticks.

    Returns:
        True if the message was emitted, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    cache_key = f"{level}:{key if key is not None else message}"

    with _log_cache_lock:
        cache = _cache_for(interval)
        if cache_key in cache:
            return False
        log_method(message)
        cache[cache_key] = True  # Value doesn't matter, TTL handles expiry
    return True


def reset_rate_limits() -> None:
    """Forget every suppressed key"""
    with _log_cache_lock:
        _log_caches.clear()
