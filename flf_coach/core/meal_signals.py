import re
from dataclasses import dataclass
from typing import Callable

from flf_coach.core.food_log import has_food_log_block, strip_food_log_blocks

# Tuned to gpt-4o-mini phrasing; best-effort only.
REPLY_LOGGING_PATTERN = re.compile(
    r"\b(log|logging|food log|add to your (log|app)|enter it|write it down|track(ing)?|manually)\b",
    re.IGNORECASE,
)
USER_LOG_REQUEST_PATTERN = re.compile(r"\b(log|help me log|can you log|let's log)\b", re.IGNORECASE)
CALORIE_NUMBER_PATTERN = re.compile(r"\d+\s*calories?", re.IGNORECASE)
PARENTHETICAL_AMOUNT_PATTERN = re.compile(r"\([^)]+\)\s*:\s*\d+")
BOLD_AMOUNT_PATTERN = re.compile(r"\*\*[^*]+\*\*\s*:\s*\d+")


@dataclass(frozen=True)
class LoggingSignals:
    reply_mentions_logging: bool = False
    user_asked_to_log: bool = False
    reply_looks_like_meal_breakdown: bool = False

    @property
    def any(self) -> bool:
        return self.reply_mentions_logging or self.user_asked_to_log or self.reply_looks_like_meal_breakdown


LoggingClassifier = Callable[[str, str], LoggingSignals]


def looks_like_meal_breakdown(reply: str) -> bool:
    if not CALORIE_NUMBER_PATTERN.search(reply):
        return False
    return bool(PARENTHETICAL_AMOUNT_PATTERN.search(reply) or BOLD_AMOUNT_PATTERN.search(reply))


def detect_logging_signals(reply: str, last_user_message: str) -> LoggingSignals:
    reply = reply or ""
    return LoggingSignals(
        reply_mentions_logging=bool(REPLY_LOGGING_PATTERN.search(reply)),
        user_asked_to_log=bool(USER_LOG_REQUEST_PATTERN.search(last_user_message or "")),
        reply_looks_like_meal_breakdown=looks_like_meal_breakdown(reply),
    )


def needs_food_log_block(
    reply: str,
    last_user_message: str,
    classify: LoggingClassifier = detect_logging_signals,
) -> bool:
    if has_food_log_block(reply):
        return False
    return classify(strip_food_log_blocks(reply), last_user_message).any


def get_logging_classifier() -> LoggingClassifier:
    return detect_logging_signals
