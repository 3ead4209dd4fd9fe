import logging
from typing import Optional

from flf_coach.core.food_log import (
    attach_food_log_block,
    extract_block_from_completion,
    fallback_block_from_reply,
    has_food_log_block,
    has_food_log_marker,
    strip_food_log_blocks,
)
from flf_coach.core.meal_signals import LoggingClassifier, detect_logging_signals, needs_food_log_block
from flf_coach.core.prompts import FOOD_LOG_FOLLOW_UP_REQUEST, FOOD_LOG_ONLY_INSTRUCTIONS
from flf_coach.services.llm import (
    FOOD_LOG_MAX_TOKENS,
    FOOD_LOG_TIMEOUT_SECONDS,
    LLMClient,
    LLMRequestError,
)

logger = logging.getLogger("uvicorn.error")


def food_log_follow_up_messages(last_user_message: str, assistant_reply: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": FOOD_LOG_ONLY_INSTRUCTIONS},
        {"role": "user", "content": f"User said: {last_user_message}"},
        {"role": "assistant", "content": assistant_reply},
        {"role": "user", "content": FOOD_LOG_FOLLOW_UP_REQUEST},
    ]


def fetch_food_log_block(llm_client: LLMClient, last_user_message: str, assistant_reply: str) -> Optional[str]:
    """Ask the provider for only the block; None when the call fails or returns nothing usable."""
    try:
        text = llm_client.complete(
            food_log_follow_up_messages(last_user_message, assistant_reply),
            max_tokens=FOOD_LOG_MAX_TOKENS,
            timeout=FOOD_LOG_TIMEOUT_SECONDS,
        )
    except LLMRequestError as exc:
        logger.warning("food_log_follow_up_failed status=%s detail=%s", exc.status_code, str(exc))
        return None
    block = extract_block_from_completion(text)
    if block is None:
        logger.info("food_log_follow_up_unusable preview=%r", text[:120])
    return block


def ensure_food_log_block(
    reply: str,
    last_user_message: str,
    llm_client: LLMClient,
    classify: LoggingClassifier = detect_logging_signals,
) -> str:
    if has_food_log_block(reply):
        return reply
    if has_food_log_marker(reply):
        # A block without usable items counts as absent and is never shown.
        logger.info("food_log_block_discarded reason=no_usable_items")
        reply = strip_food_log_blocks(reply)
    if not needs_food_log_block(reply, last_user_message, classify):
        return reply
    block = fetch_food_log_block(llm_client, last_user_message, reply)
    if block is None:
        block = fallback_block_from_reply(reply)
    if block is None:
        return reply
    return attach_food_log_block(reply, block)
