"""
Security audit trail and violation-driven blocking.

The rate limiter and the audio mode controller report events to an
``AuditSink``. ``SecurityMonitor`` sits in front of the logging sink and
watches ``rate_limit_violation`` events: an identifier collecting
``violation_threshold`` violations within ``violation_window`` seconds is
blocked for ``block_duration`` seconds.
"""

import hashlib
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import structlog

from .metrics import IDENTIFIERS_BLOCKED
from .utils.store import Clock, KeyValueStore

logger = structlog.get_logger(__name__)

RATE_LIMIT_VIOLATION = "rate_limit_violation"
AUDIT_LOG_KEY = "audit:events"
VIOLATION_LOG_KEY = "security:violations"
MAX_LOG_ENTRIES = 100


class AuditSink(ABC):
    """Consumer of auditable events"""

    @abstractmethod
    async def record(
        self,
        event_type: str,
        identifier: str,
        metadata: Optional[Dict[str, Any]] = None,
        timestamp: Optional[float] = None,
    ) -> None:
        ...


async def _append_capped(store: KeyValueStore, key: str, entry: Dict[str, Any]) -> List[Dict[str, Any]]:
    async with store.lock(key):
        raw = await store.get(key)
        entries = json.loads(raw) if raw else []
        entries.append(entry)
        entries = entries[-MAX_LOG_ENTRIES:]
        await store.set(key, json.dumps(entries))
    return entries


class LoggingAuditSink(AuditSink):
    """Writes events to the structured log and keeps the latest ones in the store"""

    def __init__(self, store: KeyValueStore, clock: Clock = time.time):
        self.store = store
        self.clock = clock

    async def record(self, event_type, identifier, metadata=None, timestamp=None):
        entry = {
            "event_type": event_type,
            "identifier": identifier,
            "metadata": metadata or {},
            "timestamp": timestamp if timestamp is not None else self.clock(),
        }
        logger.info("Audit event", **entry)
        await _append_capped(self.store, AUDIT_LOG_KEY, entry)

    async def recent_events(self) -> List[Dict[str, Any]]:
        raw = await self.store.get(AUDIT_LOG_KEY)
        return json.loads(raw) if raw else []


class SecurityMonitor(AuditSink):
    """Blocks identifiers that keep hitting the rate limit"""

    def __init__(
        self,
        store: KeyValueStore,
        sink: Optional[AuditSink] = None,
        violation_threshold: int = 5,
        violation_window: int = 3600,
        block_duration: int = 3600,
        clock: Clock = time.time,
    ):
        self.store = store
        self.sink = sink
        self.violation_threshold = violation_threshold
        self.violation_window = violation_window
        self.block_duration = block_duration
        self.clock = clock

    async def record(self, event_type, identifier, metadata=None, timestamp=None):
        timestamp = timestamp if timestamp is not None else self.clock()
        if self.sink:
            await self.sink.record(event_type, identifier, metadata, timestamp)
        if event_type == RATE_LIMIT_VIOLATION:
            await self.record_violation(identifier, metadata or {}, timestamp)

    async def record_violation(self, identifier: str, metadata: Dict[str, Any], timestamp: float) -> bool:
        """Log a violation; returns True when it caused a block"""
        entry = {"identifier": identifier, "timestamp": timestamp, **metadata}
        violations = await _append_capped(self.store, VIOLATION_LOG_KEY, entry)

        cutoff = timestamp - self.violation_window
        recent = [
            v for v in violations
            if v["identifier"] == identifier and v["timestamp"] > cutoff
        ]
        logger.warning("Rate limit violation",
                       identifier=identifier,
                       recent_violations=len(recent),
                       threshold=self.violation_threshold)

        if len(recent) >= self.violation_threshold and not await self.is_blocked(identifier):
            await self.block(identifier)
            return True
        return False

    async def violations(self, identifier: Optional[str] = None) -> List[Dict[str, Any]]:
        raw = await self.store.get(VIOLATION_LOG_KEY)
        entries = json.loads(raw) if raw else []
        if identifier is not None:
            entries = [v for v in entries if v["identifier"] == identifier]
        return entries

    async def is_blocked(self, identifier: str) -> bool:
        return await self.store.get(self._block_key(identifier)) is not None

    async def block(self, identifier: str, duration: Optional[int] = None):
        duration = self.block_duration if duration is None else duration
        record = {"blocked_at": self.clock(), "duration": duration, "reason": "Rate limit violation"}
        await self.store.set(self._block_key(identifier), json.dumps(record), ttl=duration)
        IDENTIFIERS_BLOCKED.inc()
        logger.warning("Identifier blocked", identifier=identifier, duration=duration)

    async def unblock(self, identifier: str):
        await self.store.delete(self._block_key(identifier))
        logger.info("Identifier unblocked", identifier=identifier)

    @staticmethod
    def _block_key(identifier: str) -> str:
        return "security:block:" + hashlib.md5(identifier.encode("utf-8")).hexdigest()
