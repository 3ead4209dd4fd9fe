import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from flf_coach.core.food_log import FoodLogItem, parse_food_log_reply
from flf_coach.db.models import AppliedFoodLogSuggestion, FoodEntry
from flf_coach.services.app_state import get_chat_message, new_food_entry, today_key

logger = logging.getLogger(__name__)


class SuggestionNotFoundError(LookupError):
    pass


def suggestion_key(message_id: str, item_index: int) -> str:
    return f"{message_id}-{item_index}"


def is_suggestion_applied(db: Session, message_id: str, item_index: int) -> bool:
    key = suggestion_key(message_id, item_index)
    return db.query(AppliedFoodLogSuggestion).filter(AppliedFoodLogSuggestion.key == key).first() is not None


def applied_suggestion_keys(db: Session, message_id: str) -> set[str]:
    rows = db.query(AppliedFoodLogSuggestion).filter(AppliedFoodLogSuggestion.message_id == message_id).all()
    return {row.key for row in rows}


def suggestions_for_message(db: Session, message_id: str) -> list[tuple[int, FoodLogItem, bool]]:
    """(index, item, already_applied) for every food-log item on a stored assistant message."""
    message = get_chat_message(db, message_id)
    if message is None or message.role != "assistant":
        return []
    applied = applied_suggestion_keys(db, message_id)
    parsed = parse_food_log_reply(message.content)
    return [
        (index, item, suggestion_key(message_id, index) in applied)
        for index, item in enumerate(parsed.items)
    ]


def apply_food_log_item(
    db: Session,
    message_id: str,
    item_index: int,
    item: FoodLogItem,
    day_key: Optional[str] = None,
) -> Optional[FoodEntry]:
    """Add one suggestion as a food entry; None when it was already applied."""
    key = suggestion_key(message_id, item_index)
    if is_suggestion_applied(db, message_id, item_index):
        return None

    entry = new_food_entry(day_key or today_key(), item.display_name, item.calories, item.protein)
    db.add(entry)
    db.add(
        AppliedFoodLogSuggestion(
            key=key,
            message_id=message_id,
            item_index=item_index,
            food_entry_id=entry.id,
            applied_at=datetime.now(timezone.utc),
        )
    )
    try:
        db.commit()
    except IntegrityError:
        # Another tap recorded the same key first.
        db.rollback()
        logger.info("food_log_suggestion_already_applied key=%s", key)
        return None
    db.refresh(entry)
    logger.info("food_log_suggestion_applied key=%s entry_id=%s", key, entry.id)
    return entry


def apply_suggestion(
    db: Session,
    message_id: str,
    item_index: int,
    day_key: Optional[str] = None,
) -> Optional[FoodEntry]:
    for index, item, _ in suggestions_for_message(db, message_id):
        if index == item_index:
            return apply_food_log_item(db, message_id, item_index, item, day_key)
    raise SuggestionNotFoundError(f"No food-log item {item_index} on message {message_id}")
