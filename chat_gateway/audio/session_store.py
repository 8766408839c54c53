"""
Audio session storage.

One session per chat session key, persisted as JSON at
``audio_session:<session_key>`` with an id index at
``audio_session_id:<id>``. The store does not validate state transitions;
that is the controller's job. Each mutation is a locked read-modify-write on
the session key, so concurrent interaction records on one session never
drop each other's writes.
"""

from statistics import mean
import time
import uuid
from typing import List, Optional

import structlog
from pydantic import ValidationError

from ..exceptions import StorageError
from ..models import AudioSession, AudioState, Interaction, SessionSettings, SessionStatistics
from ..utils.store import Clock, KeyValueStore

logger = structlog.get_logger(__name__)

MAX_INTERACTIONS = 10


class AudioSessionStore:
    """State container for audio sessions"""

    def __init__(
        self,
        store: KeyValueStore,
        settings: SessionSettings,
        ttl: int = 86400,
        clock: Clock = time.time,
    ):
        self.store = store
        self.settings = settings
        self.ttl = ttl
        self.clock = clock

    async def create(self, session_key: str, user_id: Optional[str] = None) -> AudioSession:
        """Start a fresh session, replacing any existing one for the key"""
        now = self.clock()
        session = AudioSession(
            id=str(uuid.uuid4()),
            session_key=session_key,
            user_id=user_id,
            state=AudioState.ACTIVATING,
            created_at=now,
            last_activity_at=now,
            settings=self.settings.model_copy(),
        )

        key = self._session_key(session_key)
        async with self.store.lock(key):
            previous = await self._read(key)
            if previous is not None:
                await self.store.delete(self._id_key(previous.id))
                logger.info("Replacing audio session",
                            session_key=session_key,
                            previous_id=previous.id)
            await self._write(session)

        logger.info("Audio session created", session_id=session.id, session_key=session_key)
        return session

    async def get(self, session_key: str) -> Optional[AudioSession]:
        return await self._read(self._session_key(session_key))

    async def get_by_id(self, session_id: str) -> Optional[AudioSession]:
        session_key = await self.store.get(self._id_key(session_id))
        if session_key is None:
            return None
        session = await self.get(session_key)
        if session is None or session.id != session_id:
            return None
        return session

    async def update_state(self, session_id: str, new_state: AudioState) -> Optional[AudioSession]:
        def apply(session: AudioSession):
            session.state = new_state
            session.last_activity_at = self.clock()

        return await self._mutate(session_id, apply)

    async def record_interaction(self, session_id: str, user_message: str, ai_response: str) -> Optional[AudioSession]:
        def apply(session: AudioSession):
            now = self.clock()
            session.interaction_count += 1
            session.interactions.append(
                Interaction(user_message=user_message, ai_response=ai_response, timestamp=now)
            )
            session.interactions = session.interactions[-MAX_INTERACTIONS:]
            session.last_activity_at = now

        return await self._mutate(session_id, apply)

    async def close(self, session_id: str) -> Optional[AudioSession]:
        """Mark the session ended; closing twice keeps the first end time"""
        def apply(session: AudioSession):
            session.state = AudioState.INACTIVE
            if session.ended_at is None:
                session.ended_at = self.clock()

        return await self._mutate(session_id, apply)

    async def statistics(self, session_id: str) -> Optional[SessionStatistics]:
        session = await self.get_by_id(session_id)
        if session is None:
            return None

        end = session.ended_at if session.ended_at is not None else self.clock()
        return SessionStatistics(
            session_id=session.id,
            state=session.state,
            duration_seconds=end - session.created_at,
            interaction_count=session.interaction_count,
            started_at=session.created_at,
            ended_at=session.ended_at,
            average_response_time=self._average_gap(session.interactions),
        )

    async def interactions(self, session_id: str) -> List[Interaction]:
        session = await self.get_by_id(session_id)
        return list(session.interactions) if session else []

    async def preferences(self, session_id: str) -> Optional[SessionSettings]:
        session = await self.get_by_id(session_id)
        return session.settings if session else None

    async def _mutate(self, session_id: str, apply) -> Optional[AudioSession]:
        session_key = await self.store.get(self._id_key(session_id))
        if session_key is None:
            logger.debug("Audio session not found", session_id=session_id)
            return None

        key = self._session_key(session_key)
        async with self.store.lock(key):
            session = await self._read(key)
            if session is None or session.id != session_id:
                return None
            apply(session)
            await self._write(session)
        return session

    async def _read(self, key: str) -> Optional[AudioSession]:
        raw = await self.store.get(key)
        if raw is None:
            return None
        try:
            return AudioSession.model_validate_json(raw)
        except ValidationError as e:
            raise StorageError("decode", key, str(e)) from e

    async def _write(self, session: AudioSession):
        # The id index must live as long as the record it points to
        await self.store.set(
            self._session_key(session.session_key),
            session.model_dump_json(),
            ttl=self.ttl,
        )
        await self.store.set(self._id_key(session.id), session.session_key, ttl=self.ttl)

    @staticmethod
    def _average_gap(interactions: List[Interaction]) -> Optional[float]:
        if len(interactions) < 2:
            return None
        gaps = [b.timestamp - a.timestamp for a, b in zip(interactions, interactions[1:])]
        return round(mean(gaps), 2)

    @staticmethod
    def _session_key(session_key: str) -> str:
        return f"audio_session:{session_key}"

    @staticmethod
    def _id_key(session_id: str) -> str:
        return f"audio_session_id:{session_id}"
