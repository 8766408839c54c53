"""Shared fixtures: an in-memory store driven by a hand-cranked clock"""

import asyncio
from typing import List, Optional

import httpx
import jwt
import pytest

from chat_gateway.audio.commands import VoiceCommandMatcher, register_default_commands
from chat_gateway.audio.controller import AudioModeController
from chat_gateway.audio.enhancer import ResponseAudioEnhancer
from chat_gateway.audio.session_store import AudioSessionStore
from chat_gateway.audio.speech import SpeechPlanner
from chat_gateway.config import Settings
from chat_gateway.entitlements import FeatureGate
from chat_gateway.exceptions import ProviderError
from chat_gateway.main import create_app
from chat_gateway.models import ChatMessage, ProviderReply, SessionSettings
from chat_gateway.providers import AIProvider
from chat_gateway.rate_limiter import RateLimiter
from chat_gateway.security import LoggingAuditSink, SecurityMonitor
from chat_gateway.utils.store import MemoryStore

JWT_SECRET = "test-secret-with-at-least-32-bytes-of-key"


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class StubProvider(AIProvider):
    """Replies with canned text and remembers what it was sent"""

    def __init__(self, reply: str = "Happy to help with that."):
        self.reply = reply
        self.fail = False
        self.calls: List[str] = []

    async def send(self, message: str, history: List[ChatMessage]) -> ProviderReply:
        self.calls.append(message)
        if self.fail:
            raise ProviderError("upstream down")
        return ProviderReply(response_text=self.reply, tokens_used=7, provider_name="stub")


class YieldingStore(MemoryStore):
    """Memory store that hands control back to the event loop on every read"""

    async def get(self, key: str) -> Optional[str]:
        await asyncio.sleep(0)
        return await super().get(key)


def make_token(sub: str = "42", roles=()) -> str:
    return jwt.encode({"sub": sub, "roles": list(roles)}, JWT_SECRET, algorithm="HS256")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def yielding_store(clock):
    return YieldingStore(clock=clock)


@pytest.fixture
def audit(store, clock):
    return LoggingAuditSink(store, clock=clock)


@pytest.fixture
def monitor(store, audit, clock):
    return SecurityMonitor(store, sink=audit, clock=clock)


@pytest.fixture
def limiter(store, monitor, clock):
    return RateLimiter(store, audit=monitor, clock=clock)


@pytest.fixture
def features(store):
    return FeatureGate(store, enabled_features=["audio_features", "audio_mode", "voice_commands"])


@pytest.fixture
def sessions(store, clock):
    return AudioSessionStore(store, SessionSettings(), clock=clock)


@pytest.fixture
def controller(sessions, features, store, monitor, clock):
    return AudioModeController(sessions, features, store, audit=monitor, clock=clock)


@pytest.fixture
def planner():
    return SpeechPlanner()


@pytest.fixture
def enhancer(sessions, planner, clock):
    return ResponseAudioEnhancer(sessions, planner, clock=clock)


@pytest.fixture
def matcher(store, clock):
    return register_default_commands(
        VoiceCommandMatcher(store, clock=clock),
        contact_email="support@example.com",
    )


@pytest.fixture
def provider():
    return StubProvider()


@pytest.fixture
def app_settings():
    return Settings(
        storage_backend="memory",
        jwt_secret=JWT_SECRET,
        rate_limit_requests=3,
        rate_limit_window=60,
    )


@pytest.fixture
async def app(app_settings, store, provider, clock):
    application = create_app(app_settings, store=store, provider=provider, clock=clock)
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
