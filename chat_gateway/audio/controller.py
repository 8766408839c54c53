"""
Audio mode lifecycle.

    INACTIVE -> ACTIVATING -> LISTENING <-> PROCESSING -> SPEAKING -> WAITING/LISTENING

Any active state may be paused (resumable to LISTENING), fail into ERROR
(needs a fresh activation) or be deactivated. Lifecycle operations return a
``TransitionResult``; refusing an operation is a normal outcome, not an
exception. Every operation that changes state is logged as an event and
counted in the process-wide statistics map at ``audio_mode:stats``.
"""

import json
import time
from typing import Dict, Optional, Set

import structlog

from ..entitlements import FeatureGate
from ..metrics import AUDIO_SESSIONS_ACTIVE, AUDIO_STATE_TRANSITIONS, record_audio_event
from ..models import ActivationInstructions, AudioSession, AudioState, AudioStatus, TransitionResult
from ..security import AuditSink
from ..utils.store import Clock, KeyValueStore
from .session_store import AudioSessionStore

logger = structlog.get_logger(__name__)

STATS_KEY = "audio_mode:stats"

AUDIO_MODE_FEATURE = "audio_mode"
AUDIO_ENTITLEMENT = "audio_features"

# Client and pipeline driven transitions; pause/resume/deactivate have their own rules
TRANSITIONS: Dict[AudioState, Set[AudioState]] = {
    AudioState.INACTIVE: set(),
    AudioState.ACTIVATING: {
        AudioState.LISTENING, AudioState.PROCESSING, AudioState.PAUSED,
        AudioState.ERROR, AudioState.INACTIVE,
    },
    AudioState.LISTENING: {
        AudioState.PROCESSING, AudioState.WAITING, AudioState.PAUSED,
        AudioState.ERROR, AudioState.INACTIVE,
    },
    AudioState.PROCESSING: {
        AudioState.LISTENING, AudioState.SPEAKING, AudioState.WAITING,
        AudioState.PAUSED, AudioState.ERROR, AudioState.INACTIVE,
    },
    AudioState.SPEAKING: {
        AudioState.WAITING, AudioState.LISTENING, AudioState.PAUSED,
        AudioState.ERROR, AudioState.INACTIVE,
    },
    AudioState.WAITING: {
        AudioState.LISTENING, AudioState.PROCESSING, AudioState.PAUSED,
        AudioState.ERROR, AudioState.INACTIVE,
    },
    AudioState.PAUSED: {AudioState.LISTENING, AudioState.ERROR, AudioState.INACTIVE},
    AudioState.ERROR: {AudioState.INACTIVE},
}

INSTRUCTIONS = ActivationInstructions(
    welcome_message="Audio mode is now active. You can speak naturally to chat with me.",
    commands=[
        'Say "stop listening" to exit audio mode',
        'Say "pause" to temporarily pause audio mode',
        'Say "help" to learn about voice commands',
    ],
    tips=[
        "Speak clearly and wait for the listening indicator",
        "You can interrupt me at any time by speaking",
        "Background noise may affect recognition quality",
    ],
)


def can_transition(current: AudioState, target: AudioState) -> bool:
    return target in TRANSITIONS[current]


class AudioModeController:
    """Orchestrates audio session lifecycle transitions"""

    def __init__(
        self,
        sessions: AudioSessionStore,
        features: FeatureGate,
        store: KeyValueStore,
        audit: Optional[AuditSink] = None,
        clock: Clock = time.time,
    ):
        self.sessions = sessions
        self.features = features
        self.store = store
        self.audit = audit
        self.clock = clock

    async def activate(self, session_key: str, user_id: Optional[str] = None) -> TransitionResult:
        reason = await self._activation_refusal(user_id)
        if reason:
            logger.info("Audio mode activation refused",
                        session_key=session_key, user_id=user_id, reason=reason)
            return TransitionResult(
                success=False,
                state=await self._current_state(session_key),
                message="Audio mode not available for your account.",
                reason=reason,
            )

        previous = await self.sessions.get(session_key)
        session = await self.sessions.create(session_key, user_id)
        session = await self.sessions.update_state(session.id, AudioState.ACTIVATING) or session
        if previous is None or previous.state == AudioState.INACTIVE:
            AUDIO_SESSIONS_ACTIVE.inc()
        await self._log_event("activate", session_key, user_id)

        return TransitionResult(
            success=True,
            state=AudioState.ACTIVATING,
            message="Audio mode activated.",
            session=session,
            instructions=INSTRUCTIONS,
        )

    async def deactivate(self, session_key: str, user_id: Optional[str] = None) -> TransitionResult:
        session = await self.sessions.get(session_key)
        if session is None or session.state == AudioState.INACTIVE:
            return self._refuse("No active audio session found.", "no_active_session")

        closed = await self.sessions.close(session.id)
        if closed is None:
            return self._lost(session_key, session.state)
        AUDIO_SESSIONS_ACTIVE.dec()
        await self._log_event("deactivate", session_key, user_id or session.user_id)

        return TransitionResult(
            success=True,
            state=AudioState.INACTIVE,
            message="Audio mode deactivated.",
            stats=await self.sessions.statistics(session.id),
        )

    async def pause(self, session_key: str, user_id: Optional[str] = None) -> TransitionResult:
        session = await self.sessions.get(session_key)
        if session is None or session.state == AudioState.INACTIVE:
            return self._refuse("No active audio session to pause.", "no_active_session")

        if await self.sessions.update_state(session.id, AudioState.PAUSED) is None:
            return self._lost(session_key, session.state)
        await self._log_event("pause", session_key, user_id or session.user_id)
        return TransitionResult(success=True, state=AudioState.PAUSED, message="Audio mode paused.")

    async def resume(self, session_key: str, user_id: Optional[str] = None) -> TransitionResult:
        session = await self.sessions.get(session_key)
        if session is None or session.state != AudioState.PAUSED:
            state = session.state if session else AudioState.INACTIVE
            return self._refuse("No paused audio session to resume.", "not_paused", state)

        if await self.sessions.update_state(session.id, AudioState.LISTENING) is None:
            return self._lost(session_key, session.state)
        await self._log_event("resume", session_key, user_id or session.user_id)
        return TransitionResult(success=True, state=AudioState.LISTENING, message="Audio mode resumed.")

    async def toggle(self, session_key: str, user_id: Optional[str] = None) -> TransitionResult:
        session = await self.sessions.get(session_key)
        if session is None or session.state == AudioState.INACTIVE:
            return await self.activate(session_key, user_id)
        return await self.deactivate(session_key, user_id)

    async def transition(self, session_key: str, target: AudioState) -> TransitionResult:
        """Apply a client or pipeline reported state change if it is legal"""
        if target == AudioState.INACTIVE:
            return await self.deactivate(session_key)
        if target == AudioState.PAUSED:
            return await self.pause(session_key)

        session = await self.sessions.get(session_key)
        if session is None or session.state == AudioState.INACTIVE:
            return self._refuse("No active audio session found.", "no_active_session")
        if session.state == target:
            return TransitionResult(success=True, state=target, message=f"Already {target.value.lower()}.")
        if not can_transition(session.state, target):
            logger.info("Rejected audio state transition",
                        session_key=session_key,
                        current=session.state.value,
                        target=target.value)
            return self._refuse(
                f"Cannot move from {session.state.value} to {target.value}.",
                "invalid_transition",
                session.state,
            )

        if await self.sessions.update_state(session.id, target) is None:
            return self._lost(session_key, session.state)
        AUDIO_STATE_TRANSITIONS.labels(state=target.value).inc()
        if target == AudioState.ERROR:
            await self._log_event("error", session_key, session.user_id)
        return TransitionResult(success=True, state=target, message=f"Audio state is now {target.value}.")

    async def active_session(self, session_key: str) -> Optional[AudioSession]:
        """The session for the key unless it is missing or inactive"""
        session = await self.sessions.get(session_key)
        if session is None or session.state == AudioState.INACTIVE:
            return None
        return session

    async def begin_processing(self, session_key: str) -> Optional[AudioState]:
        session = await self.active_session(session_key)
        if session is None:
            return None
        if can_transition(session.state, AudioState.PROCESSING):
            await self.sessions.update_state(session.id, AudioState.PROCESSING)
            AUDIO_STATE_TRANSITIONS.labels(state=AudioState.PROCESSING.value).inc()
            return AudioState.PROCESSING
        return session.state

    async def finish_response(self, session_key: str, will_speak: bool) -> Optional[AudioState]:
        session = await self.active_session(session_key)
        if session is None:
            return None
        if will_speak:
            target = AudioState.SPEAKING
        else:
            target = AudioState.LISTENING if session.settings.auto_listen else AudioState.WAITING
        if session.state != target and can_transition(session.state, target):
            await self.sessions.update_state(session.id, target)
            AUDIO_STATE_TRANSITIONS.labels(state=target.value).inc()
            return target
        return session.state

    async def status(self, session_key: str) -> AudioStatus:
        session = await self.sessions.get(session_key)
        if session is None:
            return AudioStatus(
                active=False,
                state=AudioState.INACTIVE,
                session_id=session_key,
                uptime_seconds=0,
                interactions=0,
            )

        end = session.ended_at if session.ended_at is not None else self.clock()
        return AudioStatus(
            active=session.state != AudioState.INACTIVE,
            state=session.state,
            session_id=session_key,
            uptime_seconds=end - session.created_at,
            interactions=session.interaction_count,
            last_activity=session.last_activity_at,
        )

    async def event_statistics(self) -> Dict[str, object]:
        raw = await self.store.get(STATS_KEY)
        return json.loads(raw) if raw else {}

    async def reset_event_statistics(self):
        await self.store.delete(STATS_KEY)
        logger.info("Audio mode statistics reset")

    async def _activation_refusal(self, user_id: Optional[str]) -> Optional[str]:
        if not self.features.is_feature_enabled(AUDIO_MODE_FEATURE):
            return "feature_disabled"
        if not self.features.user_has_entitlement(user_id, AUDIO_ENTITLEMENT):
            return "not_entitled"
        if await self.features.is_user_restricted(user_id, AUDIO_MODE_FEATURE):
            return "user_restricted"
        return None

    async def _current_state(self, session_key: str) -> AudioState:
        session = await self.sessions.get(session_key)
        return session.state if session else AudioState.INACTIVE

    async def _log_event(self, event_type: str, session_key: str, user_id: Optional[str]):
        now = self.clock()
        logger.info("Audio mode event", event_type=event_type, session_key=session_key, user_id=user_id)

        async with self.store.lock(STATS_KEY):
            raw = await self.store.get(STATS_KEY)
            stats = json.loads(raw) if raw else {}
            stats[event_type] = stats.get(event_type, 0) + 1
            stats["last_activity"] = now
            await self.store.set(STATS_KEY, json.dumps(stats))

        record_audio_event(event_type)
        if self.audit:
            await self.audit.record(
                f"audio_mode_{event_type}",
                session_key,
                {"user_id": user_id},
                now,
            )

    @staticmethod
    def _lost(session_key: str, state: AudioState) -> TransitionResult:
        # Session vanished or was replaced between the read and the write
        logger.warning("Audio session changed during update", session_key=session_key)
        return AudioModeController._refuse("Audio session is no longer available.", "session_unavailable", state)

    @staticmethod
    def _refuse(message: str, reason: str, state: AudioState = AudioState.INACTIVE) -> TransitionResult:
        return TransitionResult(success=False, state=state, message=message, reason=reason)
