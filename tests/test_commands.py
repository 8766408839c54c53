import pytest

from chat_gateway.audio.commands import (
    CommandContext,
    VoiceCommandMatcher,
    levenshtein,
    register_default_commands,
    similarity,
)
from chat_gateway.exceptions import CommandConflictError
from chat_gateway.models import AudioState


def test_levenshtein():
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("", "abc") == 3
    assert levenshtein("same", "same") == 0


def test_similarity():
    assert similarity("", "") == 1.0
    assert similarity("abcd", "abce") == 0.75


def test_exact_match(matcher):
    match = matcher.detect("  Clear   Chat ")
    assert match.command_id == "clear_chat"
    assert match.confidence == 1.0
    assert match.parameters == {}


def test_fuzzy_match_extracts_remaining_text(matcher):
    match = matcher.detect("repeat last message now")
    assert match.command_id == "repeat_last"
    assert match.parameters == {"text": "now"}
    assert 0.7 < match.confidence < 1.0


def test_fuzzy_match_without_phrase_substring_has_no_parameters(matcher):
    match = matcher.detect("stop listenin")
    assert match.command_id == "stop_listening"
    assert match.parameters == {}


def test_no_match(matcher):
    assert matcher.detect("what's the weather like in paris") is None
    assert matcher.detect("   ") is None


def test_threshold_is_configurable(store):
    strict = register_default_commands(VoiceCommandMatcher(store, threshold=0.9))
    assert strict.detect("repeat last message now") is None
    assert strict.detect("repeat last message").command_id == "repeat_last"


def test_phrase_collision_is_rejected(matcher):
    with pytest.raises(CommandConflictError):
        matcher.register_custom_command("my_help", ["Help"])
    assert matcher.detect("help").command_id == "show_help"


def test_reregistering_replaces_phrases(matcher):
    matcher.register_custom_command("weather", ["weather report"])
    matcher.register_custom_command("weather", ["forecast please"])

    assert matcher.detect("forecast please").command_id == "weather"
    assert matcher.detect("weather report") is None


async def test_disabled_commands(store):
    matcher = register_default_commands(VoiceCommandMatcher(store), disabled=["close_chat"])

    assert matcher.detect("goodbye") is None
    assert "close_chat" not in [c.id for c in matcher.available_commands()]

    result = await matcher.execute("close_chat")
    assert result.action == "unknown_command"
    assert not result.success


async def test_unknown_command(matcher):
    result = await matcher.execute("launch_rockets")
    assert result.action == "unknown_command"
    assert result.success is False


async def test_confirmation_flow(matcher):
    match = matcher.detect("clear conversation now")
    assert match.command_id == "clear_chat"

    pending = await matcher.execute(match.command_id, match.parameters)
    assert pending.requires_confirmation
    assert not pending.success
    assert pending.message == "Are you sure you want to clear the current conversation?"
    assert await matcher.command_statistics() == {}

    done = await matcher.execute("clear_chat", confirmed=True)
    assert done.success
    assert done.action == "clear_chat"
    assert done.message == "Chat cleared successfully"


async def test_usage_statistics(matcher, clock):
    await matcher.execute("show_help")
    clock.advance(5)
    await matcher.execute("show_help")
    await matcher.execute("close_chat")

    stats = await matcher.command_statistics()
    assert stats["show_help"] == {"usage_count": 2, "last_used": clock.now}
    assert stats["close_chat"]["usage_count"] == 1
    assert list(await matcher.popular_commands(1)) == ["show_help"]

    await matcher.reset_statistics()
    assert await matcher.command_statistics() == {}


async def test_show_help_lists_enabled_commands(matcher):
    result = await matcher.execute("show_help")
    assert result.message.startswith("Available voice commands:")
    assert "stop listening" in result.message
    assert "show_help" in result.data["commands"]


async def test_configured_info_commands(matcher):
    support = await matcher.execute("contact_support")
    assert support.message == "Contact support at: support@example.com"

    hours = await matcher.execute("show_business_hours")
    assert hours.message == "Business hours not configured"


async def test_change_language_echoes_parameters(matcher):
    result = await matcher.execute("change_language", {"language": "de-DE"})
    assert result.parameters == {"language": "de-DE"}


async def test_repeat_last(matcher, controller, sessions):
    context = CommandContext(session_key="chat-1", controller=controller)
    nothing = await matcher.execute("repeat_last", context=context)
    assert not nothing.success

    session = (await controller.activate("chat-1")).session
    await sessions.record_interaction(session.id, "hi", "Hello! How can I help?")

    result = await matcher.execute("repeat_last", context=context)
    assert result.success
    assert result.message == "Hello! How can I help?"


async def test_stop_listening_deactivates_audio_mode(matcher, controller):
    await controller.activate("chat-1", "42")
    context = CommandContext(session_key="chat-1", user_id="42", controller=controller)

    result = await matcher.execute("stop_listening", context=context)
    assert result.success
    assert result.data == {"state": AudioState.INACTIVE.value}
    assert await controller.active_session("chat-1") is None


async def test_audio_commands_need_a_session(matcher):
    result = await matcher.execute("pause_audio")
    assert not result.success


async def test_custom_command(matcher):
    matcher.register_custom_command(
        "open_pricing",
        ["show pricing"],
        description="Open the pricing page",
        success_message="Opening pricing",
    )
    match = matcher.detect("show pricing")
    result = await matcher.execute(match.command_id, match.parameters)
    assert result.action == "custom_command"
    assert result.message == "Opening pricing"
    assert result.command_id == "open_pricing"
