"""Pluggable detection of questions and direct mentions."""

from abc import ABC, abstractmethod

QUESTION_WORDS = {
    "how",
    "what",
    "why",
    "when",
    "where",
    "can",
    "is",
    "are",
    "do",
    "does",
    "did",
    "was",
    "were",
    "will",
    "would",
    "could",
    "should",
    "who",
    "which",
}


class QuestionClassifier(ABC):
    @abstractmethod
    def looks_like_question(self, text: str) -> bool:
        """Cheap pre-filter run before any AI call."""

    @abstractmethod
    def is_direct_mention(self, text: str) -> bool:
        """True when the message addresses the bot directly."""


class HeuristicClassifier(QuestionClassifier):
    """Question mark or a leading interrogative word; mention by @username or user id."""

    def __init__(self, bot_username: str = "", bot_user_id: str = ""):
        self.bot_username = bot_username.lstrip("@").lower()
        self.bot_user_id = bot_user_id

    def looks_like_question(self, text: str) -> bool:
        stripped = text.strip()
        if not stripped:
            return False
        if "?" in stripped:
            return True

        first_word = stripped.lower().split()[0]
        # "what's" / "how's" count as their interrogative
        first_word = first_word.split("'")[0].split("’")[0]
        return first_word in QUESTION_WORDS

    def is_direct_mention(self, text: str) -> bool:
        lowered = text.lower()
        if self.bot_username and f"@{self.bot_username}" in lowered:
            return True
        return bool(self.bot_user_id) and self.bot_user_id in text
