"""Meal-slot and rent-month uniqueness checks.

Pure functions over a snapshot of existing records: no I/O, no exceptions for
business-rule violations. Each check returns ``None`` when the candidate is
allowed, or a `Conflict` describing the first rule it breaks. Callers decide
what to do with the result (the expense service turns it into a
`ConstraintConflict` and rolls its transaction back).

Rules
-----
- FOOD with a restricted subcategory (BREAKFAST, LUNCH, DINNER): one record
  per owner per exact calendar date. TEA and OTHER may repeat.
- RENT: one record per owner per calendar month (first to last day,
  inclusive).

Dates are compared as ``datetime.date`` values only, never as instants.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from expense_manager.models.constants import (
    RESTRICTED_FOOD,
    Category,
    FoodSubcategory,
)
from expense_manager.services.dates import month_window

FOOD_SLOT_TAKEN = "food_slot_taken"
FOOD_SLOT_DUPLICATE_IN_BATCH = "food_slot_duplicate_in_batch"
RENT_MONTH_TAKEN = "rent_month_taken"
RENT_DUPLICATE_IN_BATCH = "rent_duplicate_in_batch"


@dataclass(frozen=True)
class SlotRecord:
    """The fields of a persisted expense that the rules look at."""

    id: str
    owner: str
    category: Category
    subcategory: Optional[FoodSubcategory]
    date: date

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SlotRecord":
        day = row["date"]
        sub = row.get("subcategory")
        return cls(
            id=row["id"],
            owner=row["owner"],
            category=Category(row["category"]),
            subcategory=FoodSubcategory(sub) if sub else None,
            date=date.fromisoformat(day) if isinstance(day, str) else day,
        )


@dataclass(frozen=True)
class Candidate:
    """An expense that is about to be written."""

    category: Category
    subcategory: Optional[FoodSubcategory]
    date: date


@dataclass(frozen=True)
class Conflict:
    reason: str
    message: str
    index: Optional[int] = None  # position within a batch


Records = Iterable[Union[SlotRecord, Mapping[str, Any]]]


def _as_records(records: Records) -> list[SlotRecord]:
    return [r if isinstance(r, SlotRecord) else SlotRecord.from_row(r) for r in records]


def is_restricted_food(
    category: Optional[Category], subcategory: Optional[FoodSubcategory]
) -> bool:
    return category == Category.FOOD and subcategory in RESTRICTED_FOOD


def _slot_name(subcategory: FoodSubcategory) -> str:
    return subcategory.value.lower()


def food_slot_message(subcategory: FoodSubcategory) -> str:
    return f"You can only have one {_slot_name(subcategory)} expense per day"


def rent_month_message() -> str:
    return "Rent has already been paid for this month"


def check_food_slot(
    records: Records,
    owner: str,
    day: date,
    subcategory: Optional[FoodSubcategory],
    exclude_id: Optional[str] = None,
    message: Optional[str] = None,
) -> Optional[Conflict]:
    if subcategory not in RESTRICTED_FOOD:
        return None
    for rec in _as_records(records):
        if rec.id == exclude_id or rec.owner != owner:
            continue
        if (
            rec.category == Category.FOOD
            and rec.subcategory == subcategory
            and rec.date == day
        ):
            return Conflict(FOOD_SLOT_TAKEN, message or food_slot_message(subcategory))
    return None


def check_rent_month(
    records: Records,
    owner: str,
    day: date,
    exclude_id: Optional[str] = None,
) -> Optional[Conflict]:
    first, last = month_window(day)
    for rec in _as_records(records):
        if rec.id == exclude_id or rec.owner != owner:
            continue
        if rec.category == Category.RENT and first <= rec.date <= last:
            return Conflict(RENT_MONTH_TAKEN, rent_month_message())
    return None


def check_candidate(
    records: Records,
    owner: str,
    candidate: Candidate,
    exclude_id: Optional[str] = None,
) -> Optional[Conflict]:
    """Run whichever rule applies to the candidate's category."""
    if is_restricted_food(candidate.category, candidate.subcategory):
        return check_food_slot(
            records, owner, candidate.date, candidate.subcategory, exclude_id
        )
    if candidate.category == Category.RENT:
        return check_rent_month(records, owner, candidate.date, exclude_id)
    return None


def check_batch(
    records: Records,
    owner: str,
    day: date,
    candidates: Sequence[Candidate],
) -> Optional[Conflict]:
    """Check same-date candidates against each other, then against `records`.

    Intra-batch collisions are reported before persisted ones; within each
    phase candidates are visited in submission order and the first conflict
    wins.
    """
    existing = _as_records(records)

    seen_slots: set[FoodSubcategory] = set()
    seen_rent = False
    for index, cand in enumerate(candidates):
        if is_restricted_food(cand.category, cand.subcategory):
            if cand.subcategory in seen_slots:
                return Conflict(
                    FOOD_SLOT_DUPLICATE_IN_BATCH,
                    f"Cannot add multiple {_slot_name(cand.subcategory)} "
                    "expenses in one submission",
                    index,
                )
            seen_slots.add(cand.subcategory)
        elif cand.category == Category.RENT:
            if seen_rent:
                return Conflict(
                    RENT_DUPLICATE_IN_BATCH, "Cannot add multiple rent expenses", index
                )
            seen_rent = True

    for index, cand in enumerate(candidates):
        conflict: Optional[Conflict] = None
        if is_restricted_food(cand.category, cand.subcategory):
            conflict = check_food_slot(
                existing,
                owner,
                day,
                cand.subcategory,
                message=f"You already have a {_slot_name(cand.subcategory)} "
                "expense for this date",
            )
        elif cand.category == Category.RENT:
            conflict = check_rent_month(existing, owner, day)
        if conflict is not None:
            return Conflict(conflict.reason, conflict.message, index)
    return None


def batch_conflict_for(candidate: Candidate, index: int) -> Conflict:
    """Conflict reported when the unique index rejects a batch item at write time."""
    if candidate.category == Category.RENT:
        return Conflict(RENT_MONTH_TAKEN, rent_month_message(), index)
    return Conflict(
        FOOD_SLOT_TAKEN,
        f"You already have a {_slot_name(candidate.subcategory)} expense for this date",
        index,
    )


def conflict_for(candidate: Candidate) -> Conflict:
    """Conflict reported when the unique index rejects a single write."""
    if candidate.category == Category.RENT:
        return Conflict(RENT_MONTH_TAKEN, rent_month_message())
    return Conflict(FOOD_SLOT_TAKEN, food_slot_message(candidate.subcategory))
