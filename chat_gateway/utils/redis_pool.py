"""
Redis connection pool manager backing the gateway key-value store
"""

from typing import Optional

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)


class RedisPool:
    """Redis connection pool manager"""

    def __init__(self):
        self._pool: Optional[redis.ConnectionPool] = None
        self._client: Optional[redis.Redis] = None

    async def initialize(self, redis_url: str, max_connections: int = 50):
        """Initialize Redis connection pool"""
        try:
            self._pool = redis.ConnectionPool.from_url(
                redis_url,
                max_connections=max_connections,
                retry_on_timeout=True,
                health_check_interval=30,
                encoding="utf-8",
                decode_responses=True,
            )
            self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()

            logger.info("Redis connection pool initialized",
                        max_connections=max_connections,
                        health_check_interval=30)

        except Exception as e:
            logger.error("Failed to initialize Redis pool", error=str(e))
            raise

    def get_client(self) -> redis.Redis:
        """Get Redis client from pool"""
        if not self._client:
            raise RuntimeError("Redis pool not initialized")
        return self._client

    async def close(self):
        """Close Redis connection pool"""
        if self._client:
            await self._client.aclose()
            self._client = None

        if self._pool:
            await self._pool.disconnect()
            self._pool = None

        logger.info("Redis connection pool closed")


# Global Redis pool instance
redis_pool = RedisPool()
