"""Fixed-window request counters per endpoint and actor."""
from __future__ import annotations

import hashlib
import logging
from typing import Dict

from .errors import RateLimitExceeded
from .store import KeyValueStore

LOGGER = logging.getLogger(__name__)

KEY_PREFIX = "fieldsync_rate_limit_"


def counter_key(endpoint: str, actor_key: str) -> str:
    digest = hashlib.md5(f"{endpoint}_{actor_key}".encode("utf-8")).hexdigest()
    return KEY_PREFIX + digest


class RateLimiter:
    """Bound the number of requests per ``(endpoint, actor)`` pair.

    The counter is read and written with two separate store calls, so two
    overlapping invocations can both observe ``count < max_requests`` and
    admit one request more than the limit. Stores offering an atomic
    increment-with-expiry primitive are needed for a hard bound.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def allow(self, endpoint: str, actor_key: str, max_requests: int, window_seconds: int) -> bool:
        key = counter_key(endpoint, actor_key)
        current = self.store.get(key)
        if current is None:
            self.store.set(key, 1, ttl=window_seconds)
            return True

        count = int(current)
        if count >= max_requests:
            LOGGER.warning(
                "Rate limit reached for %s (actor %s, requests %s)", endpoint, actor_key, count
            )
            return False

        # Each write restarts the window.
        self.store.set(key, count + 1, ttl=window_seconds)
        return True

    def require(self, endpoint: str, actor_key: str, max_requests: int, window_seconds: int) -> None:
        if not self.allow(endpoint, actor_key, max_requests, window_seconds):
            raise RateLimitExceeded(endpoint, actor_key, max_requests)

    def status(self, endpoint: str, actor_key: str, max_requests: int) -> Dict[str, int]:
        count = int(self.store.get(counter_key(endpoint, actor_key)) or 0)
        return {
            "count": count,
            "limit": max_requests,
            "remaining": max(0, max_requests - count),
        }
