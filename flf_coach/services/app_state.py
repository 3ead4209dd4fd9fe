"""Local on-device state for the coach client.

Mirrors what the phone keeps between launches: chat history, goal weight,
remembered challenges, daily logs, food entries, user-added foods and a small
key/value table of settings that override compiled-in defaults.
"""
import os
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from flf_coach.core.context_builder import load_goal_weight, weekly_calorie_target
from flf_coach.core.foods import UserFood
from flf_coach.core.security import open_sealed_api_key, seal_api_key
from flf_coach.db.models import AppSetting, ChatMessage, DailyLog, FoodEntry, UserAddedFood, UserChallenge, UserGoal

DEFAULT_BACKEND_URL = os.getenv("FLF_BACKEND_URL", "")
DEFAULT_OPENAI_API_KEY = os.getenv("FLF_OPENAI_API_KEY", "")
DEFAULT_CHATBOT_CONTEXT = os.getenv("FLF_CHATBOT_CONTEXT", "")

SETTING_BACKEND_URL = "backend_url"
SETTING_OPENAI_API_KEY = "openai_api_key"
SETTING_CHATBOT_CONTEXT = "chatbot_context"
SETTING_ONBOARDING_COMPLETE = "onboarding_complete"

CHALLENGE_PREFIX = "Remember this as something I find challenging:"
DATE_KEY_FORMAT = "%Y-%m-%d"


def date_key(day: date) -> str:
    return day.strftime(DATE_KEY_FORMAT)


def today_key() -> str:
    return date_key(datetime.now().date())


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


# ---------------------------------------------------------------------------
# settings
# ---------------------------------------------------------------------------


def get_setting(db: Session, key: str) -> Optional[str]:
    row = db.query(AppSetting).filter(AppSetting.key == key).first()
    return row.value if row else None


def set_setting(db: Session, key: str, value: Optional[str]) -> None:
    row = db.query(AppSetting).filter(AppSetting.key == key).first()
    if row is None:
        row = AppSetting(key=key)
        db.add(row)
    row.value = value
    db.commit()


def resolve_backend_url(db: Session) -> Optional[str]:
    stored = _blank_to_none(get_setting(db, SETTING_BACKEND_URL))
    return stored or _blank_to_none(DEFAULT_BACKEND_URL)


def save_backend_url(db: Session, url: Optional[str]) -> None:
    set_setting(db, SETTING_BACKEND_URL, _blank_to_none(url))


def resolve_api_key(db: Session) -> Optional[str]:
    stored = _blank_to_none(open_sealed_api_key(get_setting(db, SETTING_OPENAI_API_KEY)))
    return stored or _blank_to_none(DEFAULT_OPENAI_API_KEY)


def save_api_key(db: Session, api_key: Optional[str]) -> None:
    trimmed = _blank_to_none(api_key)
    set_setting(db, SETTING_OPENAI_API_KEY, seal_api_key(trimmed) if trimmed else None)


def resolve_chatbot_context(db: Session) -> Optional[str]:
    stored = _blank_to_none(get_setting(db, SETTING_CHATBOT_CONTEXT))
    return stored or _blank_to_none(DEFAULT_CHATBOT_CONTEXT)


def save_chatbot_context(db: Session, context: Optional[str]) -> None:
    set_setting(db, SETTING_CHATBOT_CONTEXT, _blank_to_none(context))


# ---------------------------------------------------------------------------
# goals and challenges
# ---------------------------------------------------------------------------


def has_completed_onboarding(db: Session) -> bool:
    return get_setting(db, SETTING_ONBOARDING_COMPLETE) == "1"


def set_goal_weight(db: Session, goal_weight_lbs: float) -> UserGoal:
    weekly_calorie_target(goal_weight_lbs)
    goal = db.query(UserGoal).filter(UserGoal.id == 1).first()
    if goal is None:
        goal = UserGoal(id=1, goal_weight_lbs=goal_weight_lbs)
        db.add(goal)
    goal.goal_weight_lbs = goal_weight_lbs
    db.commit()
    set_setting(db, SETTING_ONBOARDING_COMPLETE, "1")
    db.refresh(goal)
    return goal


def current_weekly_target(db: Session) -> float:
    goal_weight = load_goal_weight(db)
    return weekly_calorie_target(goal_weight) if goal_weight else 0.0


def add_challenge(db: Session, text: str) -> bool:
    challenge = (text or "").strip()
    if not challenge:
        return False
    exists = db.query(UserChallenge).filter(UserChallenge.text == challenge).first()
    if exists:
        return False
    db.add(UserChallenge(text=challenge, created_at=datetime.now(timezone.utc)))
    db.commit()
    return True


def challenge_from_message(text: str) -> Optional[str]:
    lowered = (text or "").lower()
    if "remember" not in lowered or "challeng" not in lowered:
        return None
    return _blank_to_none(text.replace(CHALLENGE_PREFIX, ""))


def capture_challenge(db: Session, text: str) -> Optional[str]:
    challenge = challenge_from_message(text)
    if challenge and add_challenge(db, challenge):
        return challenge
    return None


# ---------------------------------------------------------------------------
# chat history
# ---------------------------------------------------------------------------


def record_chat_message(
    db: Session,
    role: str,
    content: str,
    *,
    image_ref: Optional[str] = None,
    message_id: Optional[str] = None,
) -> ChatMessage:
    if role not in {"user", "assistant"}:
        raise ValueError(f"Unsupported chat role: {role}")
    row = ChatMessage(
        message_id=message_id or str(uuid4()),
        role=role,
        content=content,
        image_ref=image_ref,
        created_at=datetime.now(timezone.utc),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def chat_history(db: Session) -> list[ChatMessage]:
    return db.query(ChatMessage).order_by(ChatMessage.seq.asc()).all()


def recent_history(db: Session, limit: int) -> list[ChatMessage]:
    rows = db.query(ChatMessage).order_by(ChatMessage.seq.desc()).limit(limit).all()
    return list(reversed(rows))


def get_chat_message(db: Session, message_id: str) -> Optional[ChatMessage]:
    return db.query(ChatMessage).filter(ChatMessage.message_id == message_id).first()


# ---------------------------------------------------------------------------
# food entries and daily logs
# ---------------------------------------------------------------------------


def new_food_entry(day_key: str, name: str, calories: float, protein_grams: float) -> FoodEntry:
    return FoodEntry(
        id=str(uuid4()),
        date_key=day_key,
        name=name,
        calories=float(calories),
        protein_grams=float(protein_grams),
        created_at=datetime.now(timezone.utc),
    )


def add_food_entry(db: Session, day_key: str, name: str, calories: float, protein_grams: float) -> FoodEntry:
    entry = new_food_entry(day_key, name, calories, protein_grams)
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def food_entries_for(db: Session, day_key: str) -> list[FoodEntry]:
    return (
        db.query(FoodEntry)
        .filter(FoodEntry.date_key == day_key)
        .order_by(FoodEntry.created_at.asc())
        .all()
    )


def remove_food_entry(db: Session, entry_id: str) -> bool:
    deleted = db.query(FoodEntry).filter(FoodEntry.id == entry_id).delete()
    db.commit()
    return bool(deleted)


def day_totals(db: Session, day_key: str) -> tuple[float, float]:
    entries = food_entries_for(db, day_key)
    return sum(e.calories for e in entries), sum(e.protein_grams for e in entries)


def upsert_daily_log(
    db: Session,
    day_key: str,
    *,
    calories_consumed: Optional[float] = None,
    protein_grams: Optional[float] = None,
    step_count: Optional[int] = None,
    weight_lbs: Optional[float] = None,
    is_manual_override: bool = False,
) -> DailyLog:
    row = db.query(DailyLog).filter(DailyLog.date_key == day_key).first()
    if row is None:
        row = DailyLog(date_key=day_key)
        db.add(row)
    if calories_consumed is not None:
        row.calories_consumed = calories_consumed
    if protein_grams is not None:
        row.protein_grams = protein_grams
    if step_count is not None:
        row.step_count = step_count
    if weight_lbs is not None:
        row.weight_lbs = weight_lbs
    row.is_manual_override = is_manual_override
    db.commit()
    db.refresh(row)
    return row


def week_days(day: date) -> list[date]:
    """Sunday-to-Saturday calendar week containing day (not a rolling window)."""
    start = day - timedelta(days=(day.weekday() + 1) % 7)
    return [start + timedelta(days=offset) for offset in range(7)]


def calories_consumed_this_week(db: Session, day: date) -> float:
    keys = [date_key(d) for d in week_days(day)]
    logs = {row.date_key: row for row in db.query(DailyLog).filter(DailyLog.date_key.in_(keys)).all()}
    total = 0.0
    for key in keys:
        log = logs.get(key)
        if log is not None and log.calories_consumed is not None:
            total += log.calories_consumed
        else:
            total += day_totals(db, key)[0]
    return total


def calories_remaining_this_week(db: Session, day: date) -> float:
    return max(0.0, current_weekly_target(db) - calories_consumed_this_week(db, day))


# ---------------------------------------------------------------------------
# user-added foods
# ---------------------------------------------------------------------------


def save_user_food(
    db: Session,
    name: str,
    calories_per_100g: float,
    protein_per_100g: float,
    grams_per_cup: Optional[float] = None,
    grams_per_serving: Optional[float] = None,
) -> UserFood:
    row = UserAddedFood(
        id=str(uuid4()),
        name=name.strip(),
        calories_per_100g=calories_per_100g,
        protein_per_100g=protein_per_100g,
        grams_per_cup=grams_per_cup,
        grams_per_serving=grams_per_serving,
        created_at=datetime.now(timezone.utc),
    )
    db.add(row)
    db.commit()
    return _to_user_food(row)


def list_user_foods(db: Session) -> list[UserFood]:
    rows = db.query(UserAddedFood).order_by(UserAddedFood.created_at.asc()).all()
    return [_to_user_food(row) for row in rows]


def _to_user_food(row: UserAddedFood) -> UserFood:
    return UserFood(
        id=row.id,
        name=row.name,
        calories_per_100g=row.calories_per_100g,
        protein_per_100g=row.protein_per_100g,
        grams_per_cup=row.grams_per_cup,
        grams_per_serving=row.grams_per_serving,
    )
