"""
Key-value storage with TTL support.

Buckets, audio sessions and statistics counters all live behind the
``KeyValueStore`` interface. ``RedisStore`` is the production backend;
``MemoryStore`` keeps everything in-process and is what the tests use.

Values are strings (JSON encoded by the callers). ``lock(key)`` grants
exclusive access to one key for a read-modify-write cycle; both backends
scope the lock to the key so unrelated sessions never wait on each other.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

import redis.asyncio as redis
import structlog

from ..exceptions import StorageError

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]


class KeyValueStore(ABC):
    """Interface of the persistent key-value store"""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        """Store ``value``; a positive ``ttl`` expires the key after that many seconds"""

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def lock(self, key: str):
        """Async context manager holding an exclusive lock on ``key``"""

    @abstractmethod
    async def ping(self) -> bool:
        ...


class MemoryStore(KeyValueStore):
    """In-process store with lazy TTL expiry"""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl and ttl > 0 else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # Drop the lock once nobody holds or waits for it
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._data)


class RedisStore(KeyValueStore):
    """Redis backed store; every Redis failure surfaces as StorageError"""

    def __init__(self, client: redis.Redis, key_prefix: str = "", lock_timeout: float = 5.0):
        self._client = client
        self._prefix = key_prefix
        self._lock_timeout = lock_timeout

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(self._key(key))
        except redis.RedisError as e:
            logger.error("Redis get failed", key=key, error=str(e))
            raise StorageError("get", key, str(e)) from e

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        try:
            if ttl and ttl > 0:
                await self._client.set(self._key(key), value, ex=ttl)
            else:
                await self._client.set(self._key(key), value)
        except redis.RedisError as e:
            logger.error("Redis set failed", key=key, error=str(e))
            raise StorageError("set", key, str(e)) from e

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except redis.RedisError as e:
            logger.error("Redis delete failed", key=key, error=str(e))
            raise StorageError("delete", key, str(e)) from e

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        redis_lock = self._client.lock(
            self._key(f"lock:{key}"),
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_timeout,
        )
        try:
            acquired = await redis_lock.acquire()
        except redis.RedisError as e:
            logger.error("Redis lock failed", key=key, error=str(e))
            raise StorageError("lock", key, str(e)) from e
        if not acquired:
            raise StorageError("lock", key, "timed out waiting for lock")
        try:
            yield
        finally:
            try:
                await redis_lock.release()
            except redis.RedisError as e:
                # Lock expired under us; the write already happened
                logger.warning("Redis lock release failed", key=key, error=str(e))

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except redis.RedisError as e:
            logger.error("Redis health check failed", error=str(e))
            return False
