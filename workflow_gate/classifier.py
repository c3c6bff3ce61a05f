"""
Outcome classification of sub-agent results.

The transition engine only needs to know whether a reviewer or tester
result reads as affirmative or negative. The default implementation is a
keyword match; anything smarter can implement ``OutcomeClassifier``.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Iterable, Optional


class Outcome(str, Enum):
    AFFIRMATIVE = "affirmative"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


AFFIRMATIVE_KEYWORDS = ("approve", "lgtm", "pass", "✅", "通過", "100%")
NEGATIVE_KEYWORDS = ("reject", "fail", "request changes", "❌", "問題", "失敗", "拒絕")


class OutcomeClassifier(ABC):
    """Classifies the textual result of a role invocation."""

    @abstractmethod
    def classify(self, text: Optional[str]) -> Outcome:
        """Return the outcome expressed by ``text``."""


class KeywordClassifier(OutcomeClassifier):
    """
    Case-insensitive substring match.

    Affirmative keywords are checked first, so a result containing both
    ("approved, no failures") reads as affirmative.
    """

    def __init__(self, affirmative: Iterable[str] = AFFIRMATIVE_KEYWORDS,
                 negative: Iterable[str] = NEGATIVE_KEYWORDS):
        self.affirmative = tuple(k.lower() for k in affirmative)
        self.negative = tuple(k.lower() for k in negative)

    def classify(self, text: Optional[str]) -> Outcome:
        if not text:
            return Outcome.NEUTRAL
        lowered = text.lower()
        if any(keyword in lowered for keyword in self.affirmative):
            return Outcome.AFFIRMATIVE
        if any(keyword in lowered for keyword in self.negative):
            return Outcome.NEGATIVE
        return Outcome.NEUTRAL
