"""
Sliding window rate limiter.

Each identifier owns a bucket: the JSON list of request timestamps seen
inside the current window, stored with a TTL equal to the window so idle
buckets disappear on their own. Every read purges timestamps that fell out
of the window before answering.

``is_allowed`` followed by ``record_request`` is the two-step flow; two
concurrent requests can both pass the check before either records. ``hit``
folds check and record into one mutation under the bucket lock and is what
the message pipeline uses unless ``rate_limit_atomic`` is switched off.
"""

import hashlib
import json
import math
import time
from typing import List, Optional

import structlog

from .exceptions import StorageError
from .metrics import RATE_LIMIT_VIOLATIONS, record_rate_limit_decision
from .models import RateLimitDecision, RateLimitStatistics
from .security import RATE_LIMIT_VIOLATION, AuditSink
from .utils.store import Clock, KeyValueStore

logger = structlog.get_logger(__name__)

CACHE_PREFIX = "rate_limit:"


class RateLimiter:
    """Per-identifier request budgets over a rolling time window"""

    def __init__(
        self,
        store: KeyValueStore,
        audit: Optional[AuditSink] = None,
        clock: Clock = time.time,
    ):
        self.store = store
        self.audit = audit
        self.clock = clock

    async def is_allowed(self, identifier: str, max_requests: int = 10, window_seconds: int = 60) -> bool:
        """Check the budget without recording a request"""
        now = self.clock()
        requests = self._purge(await self._load(identifier), now, window_seconds)

        allowed = len(requests) < max_requests
        record_rate_limit_decision(allowed)
        if not allowed:
            await self._report_violation(identifier, len(requests), max_requests, window_seconds, now)
        return allowed

    async def record_request(self, identifier: str, window_seconds: int = 60):
        """Append the current instant to the identifier's bucket"""
        key = self._key(identifier)
        async with self.store.lock(key):
            now = self.clock()
            requests = self._purge(await self._load(identifier), now, window_seconds)
            requests.append(now)
            await self._save(key, requests, window_seconds)

    async def hit(self, identifier: str, max_requests: int = 10, window_seconds: int = 60) -> RateLimitDecision:
        """Check and record in one locked step"""
        key = self._key(identifier)
        async with self.store.lock(key):
            now = self.clock()
            requests = self._purge(await self._load(identifier), now, window_seconds)
            allowed = len(requests) < max_requests
            if allowed:
                requests.append(now)
                await self._save(key, requests, window_seconds)

        record_rate_limit_decision(allowed)
        if not allowed:
            await self._report_violation(identifier, len(requests), max_requests, window_seconds, now)

        return RateLimitDecision(
            allowed=allowed,
            limit=max_requests,
            used=len(requests),
            remaining=max(0, max_requests - len(requests)),
            reset_time=self._reset_time(requests, now, window_seconds),
            window=window_seconds,
        )

    async def get_remaining_requests(self, identifier: str, max_requests: int = 10, window_seconds: int = 60) -> int:
        requests = self._purge(await self._load(identifier), self.clock(), window_seconds)
        return max(0, max_requests - len(requests))

    async def get_reset_time(self, identifier: str, window_seconds: int = 60) -> int:
        """Seconds until the oldest request leaves the window (0 for an empty bucket)"""
        now = self.clock()
        requests = self._purge(await self._load(identifier), now, window_seconds)
        return self._reset_time(requests, now, window_seconds)

    async def get_statistics(self, identifier: str, max_requests: int = 10, window_seconds: int = 60) -> RateLimitStatistics:
        now = self.clock()
        requests = self._purge(await self._load(identifier), now, window_seconds)

        used = len(requests)
        remaining = max(0, max_requests - used)
        percentage = round(used / max_requests * 100, 2) if max_requests > 0 else 0.0

        return RateLimitStatistics(
            max_requests=max_requests,
            used_requests=used,
            remaining_requests=remaining,
            time_window=window_seconds,
            reset_time=self._reset_time(requests, now, window_seconds),
            is_limited=remaining <= 0,
            percentage_used=percentage,
        )

    async def clear_rate_limit(self, identifier: str):
        await self.store.delete(self._key(identifier))
        logger.info("Rate limit cleared", identifier=identifier)

    async def _load(self, identifier: str) -> List[float]:
        key = self._key(identifier)
        raw = await self.store.get(key)
        if raw is None:
            return []
        try:
            requests = json.loads(raw)
        except ValueError as e:
            raise StorageError("decode", key, str(e)) from e
        if not isinstance(requests, list):
            raise StorageError("decode", key, "bucket is not a list")
        return [float(t) for t in requests]

    async def _save(self, key: str, requests: List[float], window_seconds: int):
        if window_seconds <= 0:
            # Nothing can survive a zero-length window
            await self.store.delete(key)
            return
        await self.store.set(key, json.dumps(requests), ttl=window_seconds)

    async def _report_violation(self, identifier: str, count: int, limit: int, window: int, now: float):
        RATE_LIMIT_VIOLATIONS.inc()
        logger.warning("Rate limit exceeded",
                       identifier=identifier,
                       requests=count,
                       limit=limit,
                       window=window)
        if self.audit:
            await self.audit.record(
                RATE_LIMIT_VIOLATION,
                identifier,
                {"current_count": count, "limit": limit, "window": window},
                now,
            )

    @staticmethod
    def _purge(requests: List[float], now: float, window_seconds: int) -> List[float]:
        return [t for t in requests if now - t < window_seconds]

    @staticmethod
    def _reset_time(requests: List[float], now: float, window_seconds: int) -> int:
        if not requests:
            return 0
        return max(0, math.ceil(min(requests) + window_seconds - now))

    @staticmethod
    def _key(identifier: str) -> str:
        return CACHE_PREFIX + hashlib.md5(identifier.encode("utf-8")).hexdigest()
