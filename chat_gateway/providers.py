"""AI provider gateway"""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
import structlog

from .exceptions import ProviderError
from .models import ChatMessage, ProviderReply
from .utils.http_client import HTTPClientPool

logger = structlog.get_logger(__name__)


class AIProvider(ABC):
    """Sends a user message with its history to an AI model"""

    @abstractmethod
    async def send(self, message: str, history: List[ChatMessage]) -> ProviderReply:
        ...


class HTTPProvider(AIProvider):
    """Calls the LLM service chat endpoint"""

    def __init__(self, pool: HTTPClientPool, base_url: str, timeout: Optional[float] = None):
        self.pool = pool
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def send(self, message: str, history: List[ChatMessage]) -> ProviderReply:
        messages = [m.model_dump() for m in history]
        messages.append({"role": "user", "content": message})

        client = await self.pool.get_client()
        start_time = time.time()
        try:
            response = await client.post(
                f"{self.base_url}/chat",
                json={"messages": messages},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload: Dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("AI provider request failed", url=self.base_url, error=str(e))
            raise ProviderError(f"AI provider request failed: {e}") from e

        text = payload.get("response") or payload.get("text") or payload.get("content")
        if not text:
            raise ProviderError("AI provider returned an empty response")

        logger.info("AI provider replied",
                    provider=payload.get("provider", "llm"),
                    duration_ms=round((time.time() - start_time) * 1000, 1))

        return ProviderReply(
            response_text=text,
            tokens_used=payload.get("tokens_used", 0),
            provider_name=payload.get("provider", "llm"),
            confidence=payload.get("confidence"),
            sources=payload.get("sources", []),
        )
