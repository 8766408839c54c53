"""Audio decoration of AI responses: listen delay, next action and context"""

import re
import time
from collections import Counter
from typing import List, Optional

import structlog

from ..models import (
    AudioMetadata,
    AudioSession,
    AudioState,
    ConversationContext,
    Interaction,
    NextAction,
    SpeechPlan,
)
from ..utils.store import Clock
from .session_store import AudioSessionStore
from .speech import SpeechPlanner, is_question

logger = structlog.get_logger(__name__)

BASE_LISTEN_DELAY = 1.0
MIN_LISTEN_DELAY = 0.5
SPEECH_BUFFER = 0.5
LONG_RESPONSE = 200
VERY_LONG_RESPONSE = 500
FLOW_WINDOW = 3
DEEP_CONVERSATION = 10
MAX_TOPICS = 3

STOPWORDS = frozenset("""
    about above after again also been before being below between both but can
    could does doing done down each from further have having here hers herself
    himself into its itself just like more most much myself need once only other
    ours ourselves over same should some such than that their theirs them
    themselves then there these they this those through under until very want
    were what when where which while whom with would your yours yourself
    yourselves please thanks thank tell know help
""".split())

_TOPIC_WORD = re.compile(r"[a-z][a-z'-]{3,}")


def listen_delay(response_text: str, speech: Optional[SpeechPlan] = None) -> float:
    """Seconds the client should wait before listening again"""
    delay = BASE_LISTEN_DELAY
    length = len(response_text)
    if length > VERY_LONG_RESPONSE:
        delay += 2.0
    elif length > LONG_RESPONSE:
        delay += 1.0

    if speech is not None and speech.should_speak:
        delay += speech.timing.estimated_duration + SPEECH_BUFFER

    # Questions expect a quick answer
    if is_question(response_text):
        delay = max(MIN_LISTEN_DELAY, delay - 1.0)

    return round(delay, 2)


def next_action(response_text: str, default_timeout: int) -> NextAction:
    if is_question(response_text):
        return NextAction(action="quick_listen", timeout=10, prompt="Please respond...")
    if len(response_text) > LONG_RESPONSE:
        return NextAction(
            action="wait_acknowledgment",
            timeout=15,
            prompt='Say "continue" for more or ask a question...',
        )
    return NextAction(
        action="standard_listen",
        timeout=default_timeout,
        prompt="How can I help you further?",
    )


def flow_stage(interactions: List[Interaction], interaction_count: int) -> str:
    if not interactions:
        return "greeting"

    recent = interactions[-FLOW_WINDOW:]
    questions = sum(1 for i in recent if is_question(i.user_message))
    if questions > len(recent) - questions:
        return "information_seeking"
    if interaction_count > DEEP_CONVERSATION:
        return "deep_conversation"
    return "active_chat"


def recent_topics(interactions: List[Interaction], limit: int = MAX_TOPICS) -> List[str]:
    """Most frequent content words of the latest user messages"""
    words = Counter()
    for interaction in interactions[-FLOW_WINDOW:]:
        for word in _TOPIC_WORD.findall(interaction.user_message.lower()):
            if word not in STOPWORDS:
                words[word] += 1
    return [word for word, _ in words.most_common(limit)]


class ResponseAudioEnhancer:
    """Computes audio metadata for a reply and records the exchange"""

    def __init__(
        self,
        sessions: AudioSessionStore,
        planner: SpeechPlanner,
        clock: Clock = time.time,
    ):
        self.sessions = sessions
        self.planner = planner
        self.clock = clock

    async def enhance(self, response_text: str, session_key: str, user_message: str = "") -> Optional[AudioMetadata]:
        """Decorate the response; returns None when audio mode is not active"""
        session = await self.sessions.get(session_key)
        if session is None or session.state == AudioState.INACTIVE:
            return None

        speech = self.planner.plan(response_text)
        metadata = AudioMetadata(
            should_speak=speech.should_speak,
            speech_text=speech.speech_text,
            voice_settings=speech.voice_settings,
            chunks=speech.chunks,
            timing=speech.timing,
            listen_delay_seconds=listen_delay(response_text, speech),
            next_action=next_action(response_text, session.settings.timeout),
            conversation_context=self.conversation_context(session),
            session_state=session.state,
            auto_listen=session.settings.auto_listen,
        )

        await self.sessions.record_interaction(session.id, user_message, response_text)

        logger.debug("Response enhanced for audio mode",
                     session_key=session_key,
                     next_action=metadata.next_action.action,
                     listen_delay=metadata.listen_delay_seconds)
        return metadata

    def conversation_context(self, session: AudioSession) -> ConversationContext:
        end = session.ended_at if session.ended_at is not None else self.clock()
        return ConversationContext(
            session_duration_seconds=end - session.created_at,
            interaction_count=session.interaction_count,
            recent_topics=recent_topics(session.interactions),
            flow_stage=flow_stage(session.interactions, session.interaction_count),
            user_preferences=session.settings,
        )
