"""Fixed-window admission control per (action, client)."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from codemapper import config
from codemapper.errors import ValidationError
from codemapper.storage.cache_store import CacheStore, RateBucket

logger = logging.getLogger(__name__)

MIN_RETRY_AFTER_MS = 1000


@dataclass
class RateDecision:
    allowed: bool
    retry_after_ms: int | None = None


class RateLimiter:
    """Counts requests per `action:client` bucket inside a fixed window.

    Buckets are created lazily and overwritten on reset; they are never deleted.
    """

    def __init__(
        self,
        store: CacheStore,
        policies: dict[str, tuple[int, int]] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._store = store
        self._policies = policies or config.RATE_LIMITS
        self._clock = clock or store.now

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def consume(self, client_id: str, action: str, limit: int, window_ms: int) -> RateDecision:
        key = f"{action}:{client_id}"
        now = self._now_ms()
        bucket = self._store.get_bucket(key)

        if bucket is None or now - bucket.started_at_ms > window_ms:
            self._store.put_bucket(key, RateBucket(started_at_ms=now, count=1))
            return RateDecision(allowed=True)

        if bucket.count >= limit:
            elapsed = now - bucket.started_at_ms
            retry_after = max(MIN_RETRY_AFTER_MS, window_ms - elapsed)
            logger.info("Rate limit hit for %s (%d/%d), retry in %dms", key, bucket.count, limit, retry_after)
            return RateDecision(allowed=False, retry_after_ms=retry_after)

        self._store.put_bucket(key, RateBucket(started_at_ms=bucket.started_at_ms, count=bucket.count + 1))
        return RateDecision(allowed=True)

    def enforce(self, client_id: str | None, action: str) -> RateDecision:
        """Apply the configured policy for `action`. A missing client id is always allowed."""
        policy = self._policies.get(action)
        if policy is None:
            raise ValidationError(f"Unknown rate-limited action {action!r}")
        if not client_id:
            return RateDecision(allowed=True)
        limit, window_ms = policy
        return self.consume(client_id, action, limit, window_ms)
