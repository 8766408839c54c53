"""
Shared HTTP client with connection pooling
"""

from typing import Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


class HTTPClientPool:
    """Lazily created httpx client shared by upstream calls"""

    def __init__(self):
        self._client: Optional[httpx.AsyncClient] = None

    async def initialize(self, timeout: float = 30.0):
        """Initialize the HTTP client with pooled connections"""
        if self._client is None:
            limits = httpx.Limits(
                max_keepalive_connections=100,
                max_connections=200,
                keepalive_expiry=30.0
            )

            self._client = httpx.AsyncClient(
                limits=limits,
                timeout=httpx.Timeout(timeout, connect=5.0),
                http2=True,
                follow_redirects=True
            )

            logger.info("HTTP client pool initialized",
                        max_connections=200,
                        max_keepalive=100)

    async def get_client(self) -> httpx.AsyncClient:
        """Get the shared HTTP client"""
        if self._client is None:
            await self.initialize()
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("HTTP client pool closed")


# Global instance
http_pool = HTTPClientPool()
