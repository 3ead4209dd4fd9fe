import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from flf_coach.db.models import UserChallenge, UserGoal

WEEKLY_CALORIES_PER_GOAL_LB = 84


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def weekly_calorie_target(goal_weight_lbs: float) -> float:
    if goal_weight_lbs < 0:
        raise ValueError("Goal weight cannot be negative")
    return goal_weight_lbs * WEEKLY_CALORIES_PER_GOAL_LB


def dedupe_challenges(challenges: Iterable[Any]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for item in challenges:
        text = str(item).strip() if item is not None else ""
        if not text or text in seen:
            continue
        seen.add(text)
        result.append(text)
    return result


def _as_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


@dataclass(frozen=True)
class UserContext:
    goal_weight_lbs: float = 0.0
    weekly_calorie_target: float = 0.0
    user_challenges: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def for_goal(cls, goal_weight_lbs: float, challenges: Iterable[Any] = ()) -> "UserContext":
        return cls(
            goal_weight_lbs=goal_weight_lbs,
            weekly_calorie_target=weekly_calorie_target(goal_weight_lbs),
            user_challenges=tuple(dedupe_challenges(challenges)),
        )

    @classmethod
    def from_payload(cls, raw: Any) -> "UserContext":
        # Request bodies come from older app builds too; coerce instead of rejecting.
        if not isinstance(raw, dict):
            return cls()
        challenges = raw.get("userChallenges")
        if not isinstance(challenges, list):
            challenges = []
        return cls(
            goal_weight_lbs=_as_float(raw.get("goalWeightLbs")),
            weekly_calorie_target=_as_float(raw.get("weeklyCalorieTarget")),
            user_challenges=tuple(dedupe_challenges(challenges)),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "goalWeightLbs": self.goal_weight_lbs,
            "weeklyCalorieTarget": self.weekly_calorie_target,
            "userChallenges": list(self.user_challenges),
        }


def load_goal_weight(db: Session) -> Optional[float]:
    goal = db.query(UserGoal).filter(UserGoal.id == 1).first()
    return goal.goal_weight_lbs if goal else None


def load_challenges(db: Session) -> list[str]:
    rows = db.query(UserChallenge).order_by(UserChallenge.id.asc()).all()
    return [row.text for row in rows]


def build_user_context(db: Session) -> UserContext:
    """Derive the per-request user context from the local store."""
    goal_weight = load_goal_weight(db) or 0.0
    return UserContext.for_goal(goal_weight, load_challenges(db))
