from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)
from typing_extensions import Annotated

from expense_manager.services.dates import coerce_calendar_date, same_month
from .constants import (
    DEFAULT_PAGE_LIMIT,
    MAX_AMOUNT,
    MAX_NOTE_LENGTH,
    MAX_PAGE_LIMIT,
    Category,
    FoodSubcategory,
)


def _not_future(v: date) -> date:
    if v > date.today():
        raise ValueError("date cannot be in the future")
    return v


def _blank_note_to_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    return v if v.strip() else None


# Serialized as a JSON number, validated as an exact 2-place decimal
Money = Annotated[
    Decimal,
    Field(gt=0, le=MAX_AMOUNT, decimal_places=2),
    PlainSerializer(float, return_type=float, when_used="json"),
]
CalendarDate = Annotated[date, BeforeValidator(coerce_calendar_date)]
PastOrToday = Annotated[
    date, BeforeValidator(coerce_calendar_date), AfterValidator(_not_future)
]
Note = Optional[
    Annotated[
        str,
        Field(max_length=MAX_NOTE_LENGTH),
        AfterValidator(_blank_note_to_none),
    ]
]


def check_subcategory(
    category: Optional[Category], subcategory: Optional[FoodSubcategory]
) -> None:
    """Subcategory is required for FOOD and forbidden for everything else."""
    if category is None:
        return
    if category == Category.FOOD and subcategory is None:
        raise ValueError("subcategory is required for FOOD expenses")
    if category != Category.FOOD and subcategory is not None:
        raise ValueError("subcategory is only allowed for FOOD expenses")


class ExpenseItemIn(BaseModel):
    """One expense of a batch; the date is shared by the whole batch."""

    amount: Money
    category: Category
    subcategory: Optional[FoodSubcategory] = None
    note: Note = None

    @model_validator(mode="after")
    def cross_field_rules(self) -> "ExpenseItemIn":
        check_subcategory(self.category, self.subcategory)
        return self


class ExpenseIn(ExpenseItemIn):
    date: PastOrToday


class ExpenseBatchIn(BaseModel):
    date: PastOrToday
    expenses: List[ExpenseItemIn] = Field(..., min_length=1)


class RentPaymentIn(BaseModel):
    amount: Money
    date: PastOrToday
    note: Note = None

    @field_validator("date")
    @classmethod
    def within_current_month(cls, v: date) -> date:
        if not same_month(v, date.today()):
            raise ValueError("rent date must be within the current month")
        return v


class ExpenseUpdateIn(BaseModel):
    """Partial update model.

    All fields optional; at least one must be provided. Only the fields the
    client actually sent are applied (``model_fields_set``), so an explicit
    ``"note": null`` clears the note while an omitted note is left alone.
    The subcategory/category pairing is checked after merging with the stored
    record, see ``ExpenseService.update``.
    """

    amount: Optional[Money] = None
    category: Optional[Category] = None
    subcategory: Optional[FoodSubcategory] = None
    date: Optional[PastOrToday] = None
    note: Note = None

    @model_validator(mode="after")
    def at_least_one(self) -> "ExpenseUpdateIn":
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided for update")
        for required in ("amount", "category", "date"):
            if required in self.model_fields_set and getattr(self, required) is None:
                raise ValueError(f"{required} cannot be null")
        return self

    def changes(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    amount: Annotated[
        Decimal, PlainSerializer(float, return_type=float, when_used="json")
    ]
    category: Category
    subcategory: Optional[FoodSubcategory] = None
    date: date
    note: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ----------------------------------------------------------------------
# Listing / projections


class ExpenseFilters(BaseModel):
    date_from: Optional[CalendarDate] = None
    date_to: Optional[CalendarDate] = None
    category: Optional[Category] = None
    limit: int = Field(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT)
    offset: int = Field(0, ge=0)

    @model_validator(mode="after")
    def range_order(self) -> "ExpenseFilters":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("from cannot be after to")
        return self


class Pagination(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int
    limit: int
    offset: int
    has_more: bool = Field(..., alias="hasMore")


class Totals(BaseModel):
    amount: Annotated[
        Decimal, PlainSerializer(float, return_type=float, when_used="json")
    ]
    count: int


class ExpensePage(BaseModel):
    records: List[ExpenseOut]
    pagination: Pagination
    totals: Totals


class Restrictions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: date
    unavailable_food: List[FoodSubcategory] = Field(..., alias="unavailableFood")
    rent_paid: bool = Field(..., alias="rentPaid")


class MonthWindow(BaseModel):
    start: date
    end: date


class RentStatus(BaseModel):
    paid: bool
    record: Optional[ExpenseOut] = None
    month: MonthWindow


T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    """Response envelope shared by every endpoint."""

    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
