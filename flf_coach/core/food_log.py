import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from flf_coach.core.context_builder import round_half_up

FOOD_LOG_OPEN = "[FOOD_LOG]"
FOOD_LOG_CLOSE = "[/FOOD_LOG]"
FOOD_LOG_CALL_TO_ACTION = "Tap each item below to add it to your Food log."

FOOD_LOG_BLOCK_RE = re.compile(r"\[FOOD_LOG\]\s*([\s\S]*?)\s*\[/FOOD_LOG\]", re.IGNORECASE)
FOOD_LOG_MARKER_RE = re.compile(r"\[FOOD_LOG\]", re.IGNORECASE)
# An opening tag with no closing tag, e.g. a reply cut off by max_tokens.
FOOD_LOG_DANGLING_RE = re.compile(r"\[FOOD_LOG\][\s\S]*$", re.IGNORECASE)
ITEMS_OBJECT_RE = re.compile(r"\{[\s\S]*\"items\"[\s\S]*\}")

# "**Kale (2 cups)**: 50-70 calories" or "- Kale (2 cups): 50 calories"
MEAL_LINE_RE = re.compile(
    r"(?:\*\*([^*]+)\*\*|^[ \t]*[-•][ \t]*([^:*\n]+\([^)\n]+\)))"
    r"\s*:\s*(\d+)(?:\s*[-–]\s*(\d+))?\s*calories?",
    re.IGNORECASE | re.MULTILINE,
)
NAME_WITH_QUANTITY_RE = re.compile(r"^(.+?)\s*\(([^)]+)\)\s*$")

LOGGING_FILLER_PATTERNS = [
    re.compile(
        r"\s*(I can[’']t (directly )?log[^.!?]*[.!?]|Just (add|enter|write)[^.!?]*[.!?]"
        r"|To log your meal[^.!?]*[.!?]|you can (start|mark)[^.!?]*[.!?])\s*",
        re.IGNORECASE,
    ),
    re.compile(
        r"\s*(If you[’']re using a food diary[^.!?]*[.!?]|Make sure to note[^.!?]*[.!?])\s*",
        re.IGNORECASE,
    ),
]

Number = Union[int, float]


def _clean_number(value: Any) -> Optional[Number]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(number) if number.is_integer() else number


@dataclass(frozen=True)
class FoodLogItem:
    name: str
    calories: Number
    protein: Number = 0
    quantity: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.quantity:
            return f"{self.name} ({self.quantity})"
        return self.name

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["FoodLogItem"]:
        if not isinstance(raw, dict):
            return None
        name = str(raw.get("name") or "").strip()
        calories = _clean_number(raw.get("calories"))
        if not name or calories is None:
            return None
        protein = _clean_number(raw.get("protein"))
        quantity = raw.get("quantity")
        quantity_text = str(quantity).strip() if quantity is not None else ""
        return cls(
            name=name,
            calories=calories,
            protein=protein if protein is not None else 0,
            quantity=quantity_text or None,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name, "calories": self.calories, "protein": self.protein}
        if self.quantity:
            payload["quantity"] = self.quantity
        return payload


@dataclass(frozen=True)
class ParsedReply:
    text: str
    items: list[FoodLogItem] = field(default_factory=list)

    @property
    def has_food_log(self) -> bool:
        return bool(self.items)


def has_food_log_block(text: str) -> bool:
    """True only for a complete block whose JSON yields at least one item."""
    match = FOOD_LOG_BLOCK_RE.search(text or "")
    return bool(match and parse_items_payload(match.group(1)))


def has_food_log_marker(text: str) -> bool:
    return bool(FOOD_LOG_MARKER_RE.search(text or ""))


def strip_food_log_blocks(text: str) -> str:
    """Remove every block, complete or cut off, from the visible text."""
    cleaned = FOOD_LOG_BLOCK_RE.sub("", text or "")
    cleaned = FOOD_LOG_DANGLING_RE.sub("", cleaned)
    return cleaned.strip()


def parse_items_payload(raw: str) -> Optional[list[FoodLogItem]]:
    """Parse the JSON inside a block; None unless it yields at least one item."""
    match = ITEMS_OBJECT_RE.search(raw or "")
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict) or not isinstance(parsed.get("items"), list):
        return None
    items = [item for item in (FoodLogItem.from_raw(entry) for entry in parsed["items"]) if item]
    return items or None


def format_food_log_block(items: list[FoodLogItem]) -> str:
    payload = json.dumps({"items": [item.to_dict() for item in items]}, separators=(",", ":"), ensure_ascii=False)
    return f"{FOOD_LOG_OPEN}\n{payload}\n{FOOD_LOG_CLOSE}"


def extract_block_from_completion(text: str) -> Optional[str]:
    """Normalize a follow-up completion into a well-formed block.

    Accepts either a tagged block or bare JSON containing an items list.
    """
    if not text or not text.strip():
        return None
    tagged = FOOD_LOG_BLOCK_RE.search(text)
    raw = tagged.group(1).strip() if tagged else text.strip()
    items = parse_items_payload(raw)
    if not items:
        return None
    return format_food_log_block(items)


def parse_reply_for_meal_items(reply: str) -> Optional[list[FoodLogItem]]:
    items: list[FoodLogItem] = []
    for match in MEAL_LINE_RE.finditer(reply or ""):
        full_name = (match.group(1) or match.group(2) or "").strip()
        if not full_name:
            continue
        low = int(match.group(3))
        high = int(match.group(4)) if match.group(4) else low
        calories = round_half_up((low + high) / 2)
        quantity_match = NAME_WITH_QUANTITY_RE.match(full_name)
        name = quantity_match.group(1).strip() if quantity_match else full_name
        quantity = quantity_match.group(2).strip() if quantity_match else ""
        items.append(FoodLogItem(name=name, calories=calories, protein=0, quantity=quantity or None))
    return items or None


def fallback_block_from_reply(reply: str) -> Optional[str]:
    items = parse_reply_for_meal_items(reply)
    if not items:
        return None
    return format_food_log_block(items)


def strip_logging_filler(reply: str) -> str:
    cleaned = reply
    for pattern in LOGGING_FILLER_PATTERNS:
        cleaned = pattern.sub(" ", cleaned)
    # Adjacent removals leave doubled spaces behind.
    cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
    return cleaned.strip()


def attach_food_log_block(reply: str, block: str) -> str:
    visible = strip_logging_filler(reply)
    if visible and visible[-1] not in ".!?":
        visible += "."
    prefix = f"{visible}\n\n" if visible else ""
    return f"{prefix}{FOOD_LOG_CALL_TO_ACTION}\n\n{block}"


def parse_food_log_reply(text: str) -> ParsedReply:
    """Split an assistant reply into display text and food-log suggestions.

    A block whose JSON is malformed or has no usable items is removed from the
    display text and yields no suggestions.
    """
    text = text or ""
    match = FOOD_LOG_BLOCK_RE.search(text)
    if not match:
        return ParsedReply(text=strip_food_log_blocks(text))
    display = (text[: match.start()] + text[match.end():]).strip()
    items = parse_items_payload(match.group(1)) or []
    return ParsedReply(text=display, items=items)
