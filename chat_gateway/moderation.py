"""Content checks applied to incoming chat messages"""

import re
from typing import Iterable, Optional

BLOCKED_CONTENT = "blocked_content"
SPAM_DETECTED = "spam_detected"

CAPS_MIN_LENGTH = 10
CAPS_MAX_PERCENTAGE = 70

_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")
_REPEATED_CHARACTER = re.compile(r"(.)\1{10,}")
_SPAM_PATTERNS = (
    re.compile(r"https?://\S+"),
    re.compile(r"\b\d{3}-\d{3}-\d{4}\b"),
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
)


class MessageFilter:
    """Strips markup from user messages and flags blocked or spammy content"""

    def __init__(self, blocked_words: Iterable[str] = (), spam_detection: bool = True):
        self.blocked_words = [w.strip().lower() for w in blocked_words if w.strip()]
        self.spam_detection = spam_detection

    @staticmethod
    def sanitize(message: str) -> str:
        text = _TAG.sub("", message)
        return _WHITESPACE.sub(" ", text).strip()

    def contains_blocked_words(self, message: str) -> bool:
        lowered = message.lower()
        return any(word in lowered for word in self.blocked_words)

    @staticmethod
    def is_spam(message: str) -> bool:
        """Long character runs, shouting, or links and contact details"""
        if _REPEATED_CHARACTER.search(message):
            return True

        if len(message) > CAPS_MIN_LENGTH:
            caps = sum(1 for c in message if "A" <= c <= "Z")
            if caps / len(message) * 100 > CAPS_MAX_PERCENTAGE:
                return True

        return any(pattern.search(message) for pattern in _SPAM_PATTERNS)

    def check(self, message: str) -> Optional[str]:
        """Reason code when the message must be rejected, None when it may pass"""
        if self.contains_blocked_words(message):
            return BLOCKED_CONTENT
        if self.spam_detection and self.is_spam(message):
            return SPAM_DETECTED
        return None
