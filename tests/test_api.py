from chat_gateway.rate_limiter import RateLimiter

from .conftest import make_token

CHAT_URL = "/api/v1/chat/message"


def auth(sub: str = "42", roles=()):
    return {"Authorization": f"Bearer {make_token(sub, roles)}"}


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"

    ready = await client.get("/health/ready")
    assert ready.json() == {"status": "healthy", "checks": {"storage": "healthy"}}

    assert (await client.get("/health/live")).json() == {"status": "alive"}


async def test_metrics(client):
    await client.post(CHAT_URL, json={"message": "Hello"})
    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "rate_limit_decisions_total" in response.text


async def test_chat_message(client, provider):
    response = await client.post(CHAT_URL, json={"message": "Hello", "session_id": "chat-1"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["response"] == provider.reply
    assert body["session_id"] == "chat-1"
    assert body["audio"] is None


async def test_chat_rate_limit(client, clock):
    for _ in range(3):
        assert (await client.post(CHAT_URL, json={"message": "Hi"})).status_code == 200
    clock.advance(20)

    response = await client.post(CHAT_URL, json={"message": "Hi"})
    assert response.status_code == 429
    assert response.headers["Retry-After"] == "40"
    body = response.json()
    assert body["error"] == "rate_limited"
    assert body["reset_time"] == 40

    stats = await client.get("/api/v1/chat/rate-limit")
    assert stats.json()["used_requests"] == 3
    assert stats.json()["is_limited"] is True


async def test_authenticated_users_have_their_own_budget(client):
    for _ in range(3):
        await client.post(CHAT_URL, json={"message": "Hi"})

    response = await client.post(CHAT_URL, json={"message": "Hi"}, headers=auth("42"))
    assert response.status_code == 200


async def test_chat_validation(client):
    response = await client.post(CHAT_URL, json={"message": "   "})
    assert response.status_code == 400
    assert response.json()["message"] == "Please enter a message."

    response = await client.post(CHAT_URL, json={"message": "BUY THIS NOW PLEASE"})
    assert response.status_code == 400
    assert response.json()["message"] == "Message appears to be spam."


async def test_blocked_client(app, client):
    await app.state.security_monitor.block("user_42")
    response = await client.post(CHAT_URL, json={"message": "Hi"}, headers=auth("42"))
    assert response.status_code == 403
    assert response.json()["error"] == "blocked"


async def test_provider_failure_maps_to_bad_gateway(client, provider):
    provider.fail = True
    response = await client.post(CHAT_URL, json={"message": "Hi"})
    assert response.status_code == 502
    assert response.json()["error"] == "AI provider unavailable"


async def test_storage_failure_maps_to_service_unavailable(client, store):
    await store.set(RateLimiter._key("user_42"), "garbage")
    response = await client.post(CHAT_URL, json={"message": "Hi"}, headers=auth("42"))
    assert response.status_code == 503


async def test_audio_mode_flow(client):
    activated = await client.post("/api/v1/audio-mode/toggle", json={"session_id": "chat-1"}, headers=auth())
    body = activated.json()
    assert body["success"] is True
    assert body["state"] == "ACTIVATING"
    assert body["instructions"]["welcome_message"]

    status = await client.get("/api/v1/audio-mode/status", params={"session_id": "chat-1"})
    assert status.json()["active"] is True

    reply = await client.post(CHAT_URL, json={"message": "Tell me more", "session_id": "chat-1"})
    audio = reply.json()["audio"]
    assert audio["session_state"] == "SPEAKING"
    assert audio["next_action"]["action"] == "standard_listen"

    finished = await client.post("/api/v1/audio-mode/state", json={"session_id": "chat-1", "state": "LISTENING"})
    assert finished.json()["success"] is True

    paused = await client.post("/api/v1/audio-mode/toggle", json={"session_id": "chat-1", "action": "pause"})
    assert paused.json()["state"] == "PAUSED"

    rejected = await client.post("/api/v1/audio-mode/state", json={"session_id": "chat-1", "state": "SPEAKING"})
    assert rejected.status_code == 200
    assert rejected.json()["reason"] == "invalid_transition"

    resumed = await client.post("/api/v1/audio-mode/toggle", json={"session_id": "chat-1", "action": "resume"})
    assert resumed.json()["state"] == "LISTENING"

    deactivated = await client.post("/api/v1/audio-mode/toggle", json={"session_id": "chat-1"})
    body = deactivated.json()
    assert body["state"] == "INACTIVE"
    assert body["stats"]["interaction_count"] == 1


async def test_voice_command_through_chat(client, provider):
    await client.post("/api/v1/audio-mode/toggle", json={"session_id": "chat-1", "action": "activate"})

    response = await client.post(CHAT_URL, json={"message": "pause", "session_id": "chat-1"})
    body = response.json()
    assert body["command_result"]["action"] == "pause_audio"
    assert provider.calls == []


async def test_audio_statistics_require_admin(client):
    await client.post("/api/v1/audio-mode/toggle", json={"session_id": "chat-1"})

    assert (await client.get("/api/v1/audio-mode/statistics")).status_code == 401
    assert (await client.get("/api/v1/audio-mode/statistics", headers=auth())).status_code == 403

    response = await client.get("/api/v1/audio-mode/statistics", headers=auth(roles=["admin"]))
    assert response.status_code == 200
    assert response.json()["activate"] == 1

    reset = await client.delete("/api/v1/audio-mode/statistics", headers=auth(roles=["admin"]))
    assert reset.status_code == 200
    assert (await client.get("/api/v1/audio-mode/statistics", headers=auth(roles=["admin"]))).json() == {}


async def test_invalid_token_is_treated_as_anonymous(client):
    headers = {"Authorization": "Bearer not-a-token"}
    assert (await client.post(CHAT_URL, json={"message": "Hi"}, headers=headers)).status_code == 200
    assert (await client.get("/api/v1/audio-mode/statistics", headers=headers)).status_code == 401


async def test_voice_command_endpoints(client):
    listing = await client.get("/api/v1/voice-commands")
    ids = [c["id"] for c in listing.json()["commands"]]
    assert "clear_chat" in ids

    detected = await client.post("/api/v1/voice-commands/detect", json={"transcript": "clear chat"})
    assert detected.json()["detected"] is True
    assert detected.json()["match"]["command_id"] == "clear_chat"

    missing = await client.post("/api/v1/voice-commands/detect", json={"transcript": "what is the weather like"})
    assert missing.json() == {"detected": False, "match": None}

    pending = await client.post("/api/v1/voice-commands/execute", json={"command_id": "clear_chat"})
    assert pending.json()["requires_confirmation"] is True

    confirmed = await client.post(
        "/api/v1/voice-commands/execute",
        json={"command_id": "clear_chat", "confirmed": True},
    )
    assert confirmed.json()["success"] is True

    stats = await client.get("/api/v1/voice-commands/statistics")
    assert stats.json()["commands"]["clear_chat"]["usage_count"] == 1


async def test_custom_command_registration(client):
    payload = {"command_id": "open_pricing", "phrases": ["show pricing"], "success_message": "Opening pricing"}

    assert (await client.post("/api/v1/voice-commands", json=payload, headers=auth())).status_code == 403

    created = await client.post("/api/v1/voice-commands", json=payload, headers=auth(roles=["admin"]))
    assert created.status_code == 201
    assert created.json()["phrases"] == ["show pricing"]

    conflict = dict(payload, command_id="other", phrases=["help"])
    response = await client.post("/api/v1/voice-commands", json=conflict, headers=auth(roles=["admin"]))
    assert response.status_code == 409
