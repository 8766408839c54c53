import asyncio

import pytest

from chat_gateway.audio.session_store import MAX_INTERACTIONS, AudioSessionStore
from chat_gateway.exceptions import StorageError
from chat_gateway.models import AudioState, SessionSettings


async def test_create_and_lookup(sessions):
    session = await sessions.create("chat-1", user_id="42")

    assert session.state == AudioState.ACTIVATING
    assert session.interaction_count == 0
    assert (await sessions.get("chat-1")).id == session.id
    assert (await sessions.get_by_id(session.id)).session_key == "chat-1"


async def test_create_replaces_existing_session(sessions):
    first = await sessions.create("chat-1")
    second = await sessions.create("chat-1")

    assert first.id != second.id
    assert await sessions.get_by_id(first.id) is None
    assert await sessions.update_state(first.id, AudioState.LISTENING) is None
    assert (await sessions.get("chat-1")).state == AudioState.ACTIVATING


async def test_unknown_ids_are_ignored(sessions):
    assert await sessions.get("missing") is None
    assert await sessions.update_state("missing", AudioState.LISTENING) is None
    assert await sessions.record_interaction("missing", "hi", "hello") is None
    assert await sessions.statistics("missing") is None
    assert await sessions.interactions("missing") == []


async def test_interaction_buffer_keeps_latest(sessions, clock):
    session = await sessions.create("chat-1")
    for i in range(MAX_INTERACTIONS + 3):
        clock.advance(1)
        await sessions.record_interaction(session.id, f"question {i}", f"answer {i}")

    interactions = await sessions.interactions(session.id)
    assert len(interactions) == MAX_INTERACTIONS
    assert interactions[0].user_message == "question 3"
    assert interactions[-1].ai_response == f"answer {MAX_INTERACTIONS + 2}"
    assert (await sessions.get_by_id(session.id)).interaction_count == MAX_INTERACTIONS + 3


async def test_close_is_idempotent(sessions, clock):
    session = await sessions.create("chat-1")
    clock.advance(20)
    closed = await sessions.close(session.id)
    first_end = closed.ended_at

    clock.advance(30)
    closed = await sessions.close(session.id)
    assert closed.ended_at == first_end
    assert closed.state == AudioState.INACTIVE


async def test_statistics_duration_and_average_gap(sessions, clock):
    start = clock.now
    session = await sessions.create("chat-1")
    for offset in (2, 6, 12):
        clock.now = start + offset
        await sessions.record_interaction(session.id, "q", "a")

    clock.now = start + 20
    await sessions.close(session.id)
    clock.now = start + 100

    stats = await sessions.statistics(session.id)
    assert stats.duration_seconds == 20
    assert stats.interaction_count == 3
    assert stats.started_at == start
    assert stats.ended_at == start + 20
    assert stats.average_response_time == 5.0


async def test_statistics_while_open_uses_now(sessions, clock):
    session = await sessions.create("chat-1")
    clock.advance(7)
    stats = await sessions.statistics(session.id)
    assert stats.duration_seconds == 7
    assert stats.average_response_time is None


async def test_update_state_touches_last_activity(sessions, clock):
    session = await sessions.create("chat-1")
    clock.advance(3)
    updated = await sessions.update_state(session.id, AudioState.LISTENING)
    assert updated.state == AudioState.LISTENING
    assert updated.last_activity_at == session.created_at + 3


async def test_preferences_snapshot(sessions):
    session = await sessions.create("chat-1")
    preferences = await sessions.preferences(session.id)
    assert preferences.language == "en-US"
    assert preferences.auto_listen is True


async def test_sessions_expire_with_ttl(sessions, clock):
    await sessions.create("chat-1")
    clock.advance(sessions.ttl)
    assert await sessions.get("chat-1") is None


async def test_corrupt_session_raises_storage_error(sessions, store):
    await store.set("audio_session:chat-1", "{broken")
    with pytest.raises(StorageError):
        await sessions.get("chat-1")


async def test_concurrent_interactions_are_all_counted(yielding_store, clock):
    sessions = AudioSessionStore(yielding_store, SessionSettings(), clock=clock)
    session = await sessions.create("chat-1")

    await asyncio.gather(*(sessions.record_interaction(session.id, f"q{i}", f"a{i}") for i in range(8)))

    assert (await sessions.get("chat-1")).interaction_count == 8
    assert yielding_store._locks == {}


async def test_id_index_outlives_the_original_ttl(store, clock):
    sessions = AudioSessionStore(store, SessionSettings(), ttl=100, clock=clock)
    session = await sessions.create("chat-1")

    clock.advance(60)
    await sessions.record_interaction(session.id, "hi", "hello")
    clock.advance(60)

    assert (await sessions.get_by_id(session.id)).session_key == "chat-1"
    closed = await sessions.close(session.id)
    assert closed.state == AudioState.INACTIVE
    assert (await sessions.get("chat-1")).state == AudioState.INACTIVE
