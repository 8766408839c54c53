"""Text-to-speech planning: what to say, how to say it and how long it takes"""

import html
import re
from typing import Dict, List, Optional

from ..models import SpeechPlan, SpeechTiming, VoiceSettings

BASE_WORDS_PER_MINUTE = 175

PRONUNCIATIONS: Dict[str, str] = {
    "AI": "Artificial Intelligence",
    "API": "A P I",
    "URL": "U R L",
    "HTTP": "H T T P",
    "HTTPS": "H T T P S",
    "CSS": "C S S",
    "HTML": "H T M L",
    "JS": "JavaScript",
    "SQL": "S Q L",
    "UI": "User Interface",
    "UX": "User Experience",
    "FAQ": "Frequently Asked Questions",
    "CEO": "C E O",
    "SEO": "Search Engine Optimization",
    "SaaS": "Software as a Service",
    "ROI": "Return on Investment",
    "KPI": "Key Performance Indicator",
    "GPS": "G P S",
    "WiFi": "Wi-Fi",
    "iOS": "i O S",
    "vs": "versus",
    "etc": "etcetera",
    "e.g.": "for example",
    "i.e.": "that is",
    "Mr.": "Mister",
    "Mrs.": "Missus",
    "Dr.": "Doctor",
}

TECHNICAL_KEYWORDS = ("api", "code", "function", "database", "server", "configure", "install", "debug")
URGENT_KEYWORDS = ("urgent", "important", "warning", "error", "immediately", "emergency", "critical")
FRIENDLY_KEYWORDS = ("thank", "welcome", "please", "help", "happy", "glad", "appreciate")
AUTOPLAY_KEYWORDS = ("urgent", "important", "warning", "error", "help", "emergency")

_MARKDOWN_RULES = (
    (re.compile(r"\*\*(.*?)\*\*"), r"\1"),
    (re.compile(r"\*(.*?)\*"), r"\1"),
    (re.compile(r"`(.*?)`"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    (re.compile(r"<[^>]+>"), ""),
)

# URLs and emails go before currency so their digits are left alone
_FORMATTING_RULES = (
    (re.compile(r"https?://\S+"), "web link"),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "email address"),
    (re.compile(r"\b\d{3}-\d{3}-\d{4}\b"), "phone number"),
    (re.compile(r"\$(\d+(?:,\d{3})*(?:\.\d{2})?)"), r"\1 dollars"),
    (re.compile(r"€(\d+(?:,\d{3})*(?:\.\d{2})?)"), r"\1 euros"),
    (re.compile(r"£(\d+(?:,\d{3})*(?:\.\d{2})?)"), r"\1 pounds"),
    (re.compile(r"(\d+(?:\.\d+)?)%"), r"\1 percent"),
)

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_WORD = re.compile(r"[A-Za-z][A-Za-z'-]*")


def _term_pattern(term: str, ignore_case: bool = False) -> re.Pattern:
    # \b does not anchor next to punctuation such as the dot in "e.g."
    flags = re.IGNORECASE if ignore_case else 0
    return re.compile(r"(?<![\w.])" + re.escape(term) + r"(?![\w])", flags)


_PRONUNCIATION_PATTERNS = [(_term_pattern(term), spoken) for term, spoken in PRONUNCIATIONS.items()]


def is_question(text: str) -> bool:
    return text.strip().endswith("?")


def count_words(text: str) -> int:
    return len(_WORD.findall(text))


class SpeechPlanner:
    """Builds the TTS metadata attached to responses"""

    def __init__(
        self,
        enabled: bool = True,
        auto_play: bool = True,
        smart_autoplay: bool = False,
        rate: float = 1.0,
        pitch: float = 1.0,
        volume: float = 0.8,
        voice_name: str = "",
        language: str = "en-US",
        chunk_size: int = 200,
        pause_detection: bool = True,
        custom_pronunciations: Optional[Dict[str, str]] = None,
    ):
        self.enabled = enabled
        self.auto_play = auto_play
        self.smart_autoplay = smart_autoplay
        self.rate = rate
        self.pitch = pitch
        self.volume = volume
        self.voice_name = voice_name
        self.language = language
        self.chunk_size = chunk_size
        self.pause_detection = pause_detection
        self._custom_patterns = [
            (_term_pattern(word, ignore_case=True), spoken)
            for word, spoken in (custom_pronunciations or {}).items()
        ]

    def plan(self, text: str) -> SpeechPlan:
        chunks = self.split_into_chunks(text)
        return SpeechPlan(
            should_speak=self.should_speak(text),
            speech_text=self.prepare_text(text),
            voice_settings=self.voice_settings(text),
            chunks=chunks,
            timing=self.timing(text, len(chunks)),
        )

    def should_speak(self, text: str) -> bool:
        if not self.enabled or not text.strip():
            return False
        if self.auto_play:
            return True
        if not self.smart_autoplay:
            return False

        # Smart auto-play: short, urgent or questioning replies
        if len(text) < 100:
            return True
        lowered = text.lower()
        if any(keyword in lowered for keyword in AUTOPLAY_KEYWORDS):
            return True
        return is_question(text)

    def prepare_text(self, text: str) -> str:
        for pattern, replacement in _MARKDOWN_RULES:
            text = pattern.sub(replacement, text)
        text = html.unescape(text)

        for pattern, replacement in _FORMATTING_RULES:
            text = pattern.sub(replacement, text)
        for pattern, spoken in _PRONUNCIATION_PATTERNS:
            text = pattern.sub(spoken, text)
        for pattern, spoken in self._custom_patterns:
            text = pattern.sub(spoken, text)

        text = re.sub(r"\s+", " ", text).strip()
        if self.pause_detection:
            text = re.sub(r"([,:;])(?=\S)", r"\1 ", text)
        return text

    def voice_settings(self, text: str) -> VoiceSettings:
        rate, pitch = self.rate, self.pitch

        content_type = self.content_type(text)
        if content_type == "technical":
            rate = max(0.7, rate - 0.2)
        elif content_type == "urgent":
            rate = min(1.5, rate + 0.2)
            pitch = min(1.2, pitch + 0.1)
        elif content_type == "friendly":
            pitch = min(1.1, pitch + 0.05)

        if len(text) > 500:
            rate = min(1.2, rate + 0.1)
        elif len(text) < 50:
            rate = max(0.8, rate - 0.1)

        return VoiceSettings(
            rate=round(rate, 2),
            pitch=round(pitch, 2),
            volume=self.volume,
            voice=self.voice_name,
            language=self.language,
        )

    @staticmethod
    def content_type(text: str) -> str:
        lowered = text.lower()
        for content_type, keywords in (
            ("technical", TECHNICAL_KEYWORDS),
            ("urgent", URGENT_KEYWORDS),
            ("friendly", FRIENDLY_KEYWORDS),
        ):
            if any(keyword in lowered for keyword in keywords):
                return content_type
        return "neutral"

    def split_into_chunks(self, text: str) -> List[str]:
        """Group whole sentences into chunks of at most ``chunk_size`` characters"""
        sentences = [s for s in _SENTENCE_SPLIT.split(text.strip()) if s]
        chunks: List[str] = []
        current = ""
        for sentence in sentences:
            candidate = f"{current} {sentence}" if current else sentence
            if len(candidate) <= self.chunk_size:
                current = candidate
            else:
                if current:
                    chunks.append(current.strip())
                current = sentence
        if current:
            chunks.append(current.strip())
        return chunks

    def timing(self, text: str, chunks_count: Optional[int] = None) -> SpeechTiming:
        words = count_words(text)
        words_per_minute = BASE_WORDS_PER_MINUTE * self.rate
        duration = words / words_per_minute * 60 if words_per_minute > 0 else 0.0
        if chunks_count is None:
            chunks_count = len(self.split_into_chunks(text))
        return SpeechTiming(
            estimated_duration=round(duration, 1),
            word_count=words,
            speaking_rate=words_per_minute,
            chunks_count=chunks_count,
        )
