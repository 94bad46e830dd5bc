"""Domain constants and enumerations for validation."""

from decimal import Decimal
from enum import Enum
from typing import FrozenSet


class Category(str, Enum):
    FOOD = "FOOD"
    TRANSPORT = "TRANSPORT"
    RENT = "RENT"
    MISC = "MISC"
    OTHER = "OTHER"


class FoodSubcategory(str, Enum):
    BREAKFAST = "BREAKFAST"
    LUNCH = "LUNCH"
    DINNER = "DINNER"
    TEA = "TEA"
    OTHER = "OTHER"


# One record per owner per calendar date for each of these
RESTRICTED_FOOD: FrozenSet[FoodSubcategory] = frozenset(
    {FoodSubcategory.BREAKFAST, FoodSubcategory.LUNCH, FoodSubcategory.DINNER}
)
RESTRICTED_FOOD_ORDER = (
    FoodSubcategory.BREAKFAST,
    FoodSubcategory.LUNCH,
    FoodSubcategory.DINNER,
)

MAX_AMOUNT = Decimal("9999999999.99")
MAX_NOTE_LENGTH = 500
DEFAULT_PAGE_LIMIT = 100
MAX_PAGE_LIMIT = 1000
