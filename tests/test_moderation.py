import pytest

from chat_gateway.moderation import BLOCKED_CONTENT, SPAM_DETECTED, MessageFilter


@pytest.fixture
def message_filter():
    return MessageFilter(["Viagra", " lottery ", ""])


def test_sanitize():
    assert MessageFilter.sanitize("<script>x</script>  hi\n\tthere ") == "x hi there"


def test_blocked_words_are_case_insensitive(message_filter):
    assert message_filter.check("cheap VIAGRA here") == BLOCKED_CONTENT
    assert message_filter.check("you won the Lottery!") == BLOCKED_CONTENT
    assert message_filter.blocked_words == ["viagra", "lottery"]


@pytest.mark.parametrize(
    "message",
    [
        "whyyyyyyyyyyyyy",
        "BUY THIS NOW PLEASE",
        "see http://spam.example/offer",
        "call 555-123-4567 today",
        "write to deals@example.com",
    ],
)
def test_spam(message_filter, message):
    assert message_filter.check(message) == SPAM_DETECTED


@pytest.mark.parametrize(
    "message",
    [
        "Hello there",
        "OK",
        "What is NASA working on?",
        "Room 101 please",
    ],
)
def test_clean_messages_pass(message_filter, message):
    assert message_filter.check(message) is None


def test_spam_detection_can_be_disabled():
    message_filter = MessageFilter(["lottery"], spam_detection=False)

    assert message_filter.check("BUY THIS NOW PLEASE") is None
    assert message_filter.check("lottery") == BLOCKED_CONTENT
