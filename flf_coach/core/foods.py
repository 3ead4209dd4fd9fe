from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Union

GRAMS_PER_OUNCE = 28.35


class AmountUnit(str, Enum):
    grams = "g"
    ounces = "oz"
    cup = "cup"
    serving = "serving"


@dataclass(frozen=True)
class CommonFood:
    id: str
    name: str
    calories_per_100g: float
    protein_per_100g: float
    grams_per_cup: Optional[float] = None
    grams_per_serving: Optional[float] = None


@dataclass(frozen=True)
class UserFood:
    id: str
    name: str
    calories_per_100g: float
    protein_per_100g: float
    grams_per_cup: Optional[float] = None
    grams_per_serving: Optional[float] = None


SearchableFood = Union[CommonFood, UserFood]


def food_key(food: SearchableFood) -> str:
    prefix = "c" if isinstance(food, CommonFood) else "u"
    return f"{prefix}-{food.id}"


def calories_for_grams(food: SearchableFood, grams: float) -> float:
    return grams / 100 * food.calories_per_100g


def protein_for_grams(food: SearchableFood, grams: float) -> float:
    return grams / 100 * food.protein_per_100g


def grams_from_amount(food: SearchableFood, amount: float, unit: AmountUnit) -> Optional[float]:
    """Convert an amount to grams; None when the food has no size for that unit."""
    if unit == AmountUnit.grams:
        return amount
    if unit == AmountUnit.ounces:
        return amount * GRAMS_PER_OUNCE
    if unit == AmountUnit.cup:
        return amount * food.grams_per_cup if food.grams_per_cup is not None else None
    if unit == AmountUnit.serving:
        return amount * food.grams_per_serving if food.grams_per_serving is not None else None
    return None


def available_units(food: SearchableFood) -> list[AmountUnit]:
    units = [AmountUnit.grams, AmountUnit.ounces]
    if food.grams_per_cup is not None:
        units.append(AmountUnit.cup)
    if food.grams_per_serving is not None:
        units.append(AmountUnit.serving)
    return units


def _format_amount(amount: float) -> str:
    return str(int(amount)) if float(amount).is_integer() else f"{amount:g}"


def entry_label(food: SearchableFood, amount: float, unit: AmountUnit) -> str:
    return f"{food.name} ({_format_amount(amount)} {unit.value})"


# Nutrition per 100g.
COMMON_FOODS: tuple[CommonFood, ...] = (
    CommonFood("chicken-breast", "Chicken breast, grilled", 165, 31, grams_per_cup=140, grams_per_serving=113),
    CommonFood("chicken-thigh", "Chicken thigh, skinless", 185, 25, grams_per_serving=113),
    CommonFood("ground-turkey", "Ground turkey (93% lean)", 150, 19, grams_per_serving=113),
    CommonFood("ground-beef", "Ground beef (85% lean)", 190, 21, grams_per_serving=113),
    CommonFood("salmon", "Salmon, baked", 207, 22, grams_per_serving=113),
    CommonFood("shrimp", "Shrimp", 99, 21, grams_per_serving=113),
    CommonFood("eggs", "Eggs, whole", 155, 13, grams_per_serving=100),
    CommonFood("egg-whites", "Egg whites", 52, 11, grams_per_cup=240),
    CommonFood("greek-yogurt", "Greek yogurt, plain nonfat", 59, 10, grams_per_cup=245),
    CommonFood("cottage-cheese", "Cottage cheese, 2%", 81, 10, grams_per_cup=226),
    CommonFood("tofu", "Tofu, firm", 78, 9, grams_per_serving=113),
    CommonFood("tuna-canned", "Tuna, canned in water", 88, 19, grams_per_serving=85),
    CommonFood("whey-powder", "Whey protein powder", 400, 80, grams_per_serving=30),
    CommonFood("milk-skim", "Milk, skim", 34, 3.4, grams_per_cup=245),
    CommonFood("almond-milk", "Almond milk, unsweetened", 13, 0.4, grams_per_cup=240),
    CommonFood("rice-white", "White rice, cooked", 130, 2.7, grams_per_cup=195),
    CommonFood("rice-brown", "Brown rice, cooked", 112, 2.6, grams_per_cup=195),
    CommonFood("quinoa", "Quinoa, cooked", 120, 4.4, grams_per_cup=185),
    CommonFood("oatmeal", "Oatmeal, cooked", 68, 2.4, grams_per_cup=234),
    CommonFood("bread-whole", "Whole wheat bread", 247, 13.4, grams_per_serving=28),
    CommonFood("pasta", "Pasta, cooked", 131, 5, grams_per_cup=140),
    CommonFood("sweet-potato", "Sweet potato, baked", 90, 2, grams_per_serving=130),
    CommonFood("broccoli", "Broccoli, steamed", 35, 2.4, grams_per_cup=91),
    CommonFood("spinach", "Spinach, raw", 23, 2.9, grams_per_cup=30),
    CommonFood("kale", "Kale, raw", 35, 2.9, grams_per_cup=67),
    CommonFood("green-beans", "Green beans", 31, 1.8, grams_per_cup=125),
    CommonFood("avocado", "Avocado", 160, 2, grams_per_serving=100),
    CommonFood("black-beans", "Black beans, cooked", 132, 8.9, grams_per_cup=172),
    CommonFood("lentils", "Lentils, cooked", 116, 9, grams_per_cup=198),
    CommonFood("apple", "Apple", 52, 0.3, grams_per_serving=182),
    CommonFood("banana", "Banana", 89, 1.1, grams_per_serving=118),
    CommonFood("strawberries", "Strawberries", 32, 0.7, grams_per_cup=152),
    CommonFood("blueberries", "Blueberries", 57, 0.7, grams_per_cup=148),
    CommonFood("almonds", "Almonds", 579, 21, grams_per_serving=28),
    CommonFood("peanut-butter", "Peanut butter", 588, 25, grams_per_serving=32),
    CommonFood("hummus", "Hummus", 166, 7.9, grams_per_serving=60),
    CommonFood("latte", "Latte", 50, 2.8, grams_per_serving=360),
    CommonFood("dark-chocolate", "Dark chocolate", 546, 4.9, grams_per_serving=28),
    CommonFood("chipotle-chicken", "Chipotle - Chicken", 159, 28, grams_per_serving=113),
    CommonFood("chipotle-white-rice", "Chipotle - White rice", 186, 3.5, grams_per_serving=113),
    CommonFood("chipotle-black-beans", "Chipotle - Black beans", 115, 7, grams_per_serving=113),
    CommonFood("chipotle-fajita-veg", "Chipotle - Fajita veggies", 27, 1.2, grams_per_serving=113),
    CommonFood("chipotle-guac", "Chipotle - Guacamole", 167, 2, grams_per_serving=113),
)


def search_foods(query: str, foods: Iterable[SearchableFood]) -> list[SearchableFood]:
    q = (query or "").strip().lower()
    pool = list(foods)
    if not q:
        return pool
    return [food for food in pool if q in food.name.lower()]


def search_catalog(query: str, user_foods: Iterable[UserFood] = ()) -> list[SearchableFood]:
    """Search built-in and user-added foods together, user foods first."""
    return search_foods(query, [*user_foods, *COMMON_FOODS])
