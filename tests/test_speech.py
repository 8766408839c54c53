import pytest

from chat_gateway.audio.speech import SpeechPlanner, count_words, is_question


def test_is_question():
    assert is_question("Can I help?  ")
    assert not is_question("Done.")


@pytest.mark.parametrize("text,expected", [
    ("**Bold** and `code`", "Bold and code"),
    ("Read [the docs](https://example.com) first", "Read the docs first"),
    ("<p>Hello &amp; welcome</p>", "Hello & welcome"),
    ("The API costs $5.00, about 20% off.", "The A P I costs 5.00 dollars, about 20 percent off."),
    ("See https://example.com/docs for details", "See web link for details"),
    ("Write to help@example.com today", "Write to email address today"),
    ("Call 555-123-4567 now", "Call phone number now"),
    ("Use tools, e.g. hammers", "Use tools, for example hammers"),
    ("Apples,pears;plums", "Apples, pears; plums"),
])
def test_prepare_text(text, expected):
    assert SpeechPlanner().prepare_text(text) == expected


def test_abbreviations_respect_word_boundaries():
    assert SpeechPlanner().prepare_text("RAPID builds") == "RAPID builds"


def test_custom_pronunciations_ignore_case():
    planner = SpeechPlanner(custom_pronunciations={"nginx": "engine x"})
    assert planner.prepare_text("Restart NGINX now") == "Restart engine x now"


def test_should_speak():
    assert SpeechPlanner().should_speak("Hello there")
    assert not SpeechPlanner().should_speak("   ")
    assert not SpeechPlanner(enabled=False).should_speak("Hello there")
    assert not SpeechPlanner(auto_play=False).should_speak("Hello there")


def test_smart_autoplay():
    planner = SpeechPlanner(auto_play=False, smart_autoplay=True)
    filler = "This sentence is deliberately long enough to pass the short reply cutoff. " * 2

    assert planner.should_speak("Short reply")
    assert planner.should_speak(filler + "Warning: disk almost full.")
    assert planner.should_speak(filler + "Shall I go on?")
    assert not planner.should_speak(filler)


def test_voice_settings_by_content_type():
    planner = SpeechPlanner()

    technical = planner.voice_settings("Please install the database server first.")
    assert technical.rate == 0.8
    assert technical.pitch == 1.0

    urgent = planner.voice_settings("This is an urgent warning.")
    assert urgent.rate == 1.1
    assert urgent.pitch == 1.1

    assert planner.voice_settings("x" * 600).rate == 1.1
    assert planner.voice_settings("x" * 100).volume == 0.8


def test_split_into_chunks_keeps_sentences_whole():
    planner = SpeechPlanner(chunk_size=30)
    chunks = planner.split_into_chunks("One two three. Four five six. Seven.")
    assert chunks == ["One two three. Four five six.", "Seven."]


def test_oversized_sentence_gets_its_own_chunk():
    planner = SpeechPlanner(chunk_size=10)
    assert planner.split_into_chunks("Tiny. This sentence is far too long.") == [
        "Tiny.",
        "This sentence is far too long.",
    ]


def test_timing():
    text = " ".join(["word"] * 175)
    timing = SpeechPlanner().timing(text)
    assert timing.word_count == 175
    assert timing.estimated_duration == 60.0
    assert timing.speaking_rate == 175.0
    assert timing.chunks_count == 1

    assert SpeechPlanner(rate=2.0).timing(text).estimated_duration == 30.0


def test_count_words():
    assert count_words("It's a well-known fact, 42 times.") == 5
