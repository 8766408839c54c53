"""
Chat message pipeline.

    rate-limit gate -> validation -> voice command detection (audio mode only)
    -> AI provider -> audio enhancement -> audio state update

Refusals (blocked client, quota exceeded, invalid message) come back as a
``ChatOutcome`` with a status; storage and provider failures propagate.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Sequence

import structlog

from .audio.commands import CommandContext, VoiceCommandMatcher
from .audio.controller import AudioModeController
from .audio.enhancer import ResponseAudioEnhancer
from .exceptions import ProviderError
from .models import AudioState, ChatMessage, ChatResponse
from .moderation import BLOCKED_CONTENT, MessageFilter
from .providers import AIProvider
from .rate_limiter import RateLimiter
from .security import SecurityMonitor

logger = structlog.get_logger(__name__)

OK = "ok"
BLOCKED = "blocked"
RATE_LIMITED = "rate_limited"
INVALID = "invalid"


@dataclass
class ChatOutcome:
    """Result of pushing one message through the pipeline"""
    status: str
    message: str = ""
    response: Optional[ChatResponse] = None
    reset_time: int = 0
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == OK


@dataclass
class RateLimitPolicy:
    enabled: bool = True
    max_requests: int = 10
    window_seconds: int = 60
    atomic: bool = True


class ChatPipeline:
    """Runs a chat message from the gate to the enriched reply"""

    def __init__(
        self,
        limiter: RateLimiter,
        monitor: SecurityMonitor,
        controller: AudioModeController,
        enhancer: ResponseAudioEnhancer,
        commands: VoiceCommandMatcher,
        provider: AIProvider,
        policy: RateLimitPolicy,
        max_message_length: int = 1000,
        commands_enabled: bool = True,
        message_filter: Optional[MessageFilter] = None,
    ):
        self.limiter = limiter
        self.monitor = monitor
        self.controller = controller
        self.enhancer = enhancer
        self.commands = commands
        self.provider = provider
        self.policy = policy
        self.max_message_length = max_message_length
        self.commands_enabled = commands_enabled
        self.message_filter = message_filter or MessageFilter()

    async def handle(
        self,
        message: str,
        session_key: Optional[str],
        identifier: str,
        user_id: Optional[str] = None,
        history: Sequence[ChatMessage] = (),
    ) -> ChatOutcome:
        if await self.monitor.is_blocked(identifier):
            logger.warning("Blocked client rejected", identifier=identifier)
            return ChatOutcome(status=BLOCKED, message="Access temporarily blocked due to repeated rate limit violations.")

        gate = await self._check_rate_limit(identifier)
        if gate is not None:
            return gate

        text = self.message_filter.sanitize(message)
        if not text:
            return ChatOutcome(status=INVALID, message="Please enter a message.")
        if len(text) > self.max_message_length:
            return ChatOutcome(
                status=INVALID,
                message=f"Message too long. Maximum {self.max_message_length} characters allowed.",
            )
        reason = self.message_filter.check(text)
        if reason:
            logger.info("Message rejected by content filter", identifier=identifier, reason=reason)
            if reason == BLOCKED_CONTENT:
                return ChatOutcome(status=INVALID, message="Message contains inappropriate content.", reason=reason)
            return ChatOutcome(status=INVALID, message="Message appears to be spam.", reason=reason)

        session_key = session_key or f"session_{uuid.uuid4().hex}"
        audio_session = await self.controller.active_session(session_key)

        if audio_session is not None and self.commands_enabled:
            match = self.commands.detect(text)
            if match is not None:
                context = CommandContext(session_key=session_key, user_id=user_id, controller=self.controller)
                result = await self.commands.execute(match.command_id, match.parameters, context)
                await self._record_request(identifier)
                return ChatOutcome(
                    status=OK,
                    response=ChatResponse(
                        success=result.success,
                        response=result.message,
                        session_id=session_key,
                        command_result=result,
                    ),
                )

        if audio_session is not None:
            await self.controller.begin_processing(session_key)

        try:
            reply = await self.provider.send(text, list(history))
        except ProviderError:
            if audio_session is not None:
                # Hand the microphone back instead of leaving the session stuck
                await self.controller.transition(session_key, AudioState.LISTENING)
            raise

        audio = await self.enhancer.enhance(reply.response_text, session_key, text)
        if audio is not None:
            state = await self.controller.finish_response(session_key, audio.should_speak)
            if state is not None:
                audio.session_state = state

        await self._record_request(identifier)

        return ChatOutcome(
            status=OK,
            response=ChatResponse(
                success=True,
                response=reply.response_text,
                session_id=session_key,
                provider=reply.provider_name,
                tokens_used=reply.tokens_used,
                audio=audio,
            ),
        )

    async def _check_rate_limit(self, identifier: str) -> Optional[ChatOutcome]:
        policy = self.policy
        if not policy.enabled:
            return None

        if policy.atomic:
            decision = await self.limiter.hit(identifier, policy.max_requests, policy.window_seconds)
            if decision.allowed:
                return None
            reset_time = decision.reset_time
        else:
            if await self.limiter.is_allowed(identifier, policy.max_requests, policy.window_seconds):
                return None
            reset_time = await self.limiter.get_reset_time(identifier, policy.window_seconds)

        return ChatOutcome(
            status=RATE_LIMITED,
            message=f"Too many requests. Please wait {reset_time} seconds before sending another message.",
            reset_time=reset_time,
        )

    async def _record_request(self, identifier: str):
        # The atomic gate already recorded this request
        if self.policy.enabled and not self.policy.atomic:
            await self.limiter.record_request(identifier, self.policy.window_seconds)
