"""Expense use cases: the only place that combines the repository and the
constraint checks.

Every mutating operation runs check-then-write inside one
``Database.transaction()`` (``BEGIN IMMEDIATE``). The unique indexes created
by the schema migration back the checks up: if a concurrent writer slipped in
anyway, the resulting `UniqueSlotViolation` is reported as the same
`ConstraintConflict` the check would have produced.
"""

from __future__ import annotations

from datetime import date
import logging
import sqlite3
from typing import Any, Dict, List, Optional, Sequence

from expense_manager.core.errors import (
    ConstraintConflict,
    InternalFailure,
    NotAuthorized,
    NotFound,
    ValidationError,
)
from expense_manager.db.dal import Database, UniqueSlotViolation
from expense_manager.models.constants import (
    RESTRICTED_FOOD_ORDER,
    Category,
    FoodSubcategory,
)
from expense_manager.models.expense import (
    ExpenseFilters,
    ExpenseIn,
    ExpenseItemIn,
    ExpenseOut,
    ExpensePage,
    ExpenseUpdateIn,
    MonthWindow,
    Pagination,
    RentPaymentIn,
    RentStatus,
    Restrictions,
    Totals,
    check_subcategory,
)
from expense_manager.services.constraints import (
    Candidate,
    Conflict,
    batch_conflict_for,
    check_batch,
    check_candidate,
    conflict_for,
)
from expense_manager.services.dates import month_window, parse_utc_timestamp
from expense_manager.services.money import from_cents

logger = logging.getLogger("expense_manager.expenses")


def row_to_expense_out(row: Dict[str, Any]) -> ExpenseOut:
    return ExpenseOut(
        id=row["id"],
        amount=from_cents(row["amount_cents"]),
        category=Category(row["category"]),
        subcategory=FoodSubcategory(row["subcategory"]) if row.get("subcategory") else None,
        date=date.fromisoformat(row["date"]),
        note=row.get("note"),
        created_at=parse_utc_timestamp(row["created_at"]),
        updated_at=parse_utc_timestamp(row["updated_at"]),
    )


def _conflict_error(conflict: Conflict) -> ConstraintConflict:
    data = None
    if conflict.index is not None:
        data = {"index": conflict.index, "reason": conflict.reason}
    return ConstraintConflict(conflict.message, data=data)


class ExpenseService:
    def __init__(
        self,
        db: Database,
        *,
        mask_foreign_expenses: bool = False,
        max_batch_size: int = 50,
    ):
        self.db = db
        self.mask_foreign_expenses = mask_foreign_expenses
        self.max_batch_size = max_batch_size

    # ------------------------------------------------------------------
    # Helpers
    def _slot_records(
        self, owner: str, day: date, cur: sqlite3.Cursor
    ) -> List[Dict[str, Any]]:
        # The month window also covers the exact day needed by meal slots
        first, last = month_window(day)
        return self.db.list_slot_records(owner, first, last, cur=cur)

    def _owned_row(
        self, owner: str, expense_id: str, action: str, cur: sqlite3.Cursor
    ) -> Dict[str, Any]:
        row = self.db.get_expense(expense_id, cur=cur)
        if row is None:
            raise NotFound("Expense not found")
        if row["owner"] != owner:
            logger.warning(
                "cross-owner access refused",
                extra={"owner": owner, "expense_id": expense_id},
            )
            if self.mask_foreign_expenses:
                raise NotFound("Expense not found")
            raise NotAuthorized(f"Not authorized to {action} this expense")
        return row

    def _insert_one(
        self,
        owner: str,
        *,
        amount,
        category: Category,
        subcategory: Optional[FoodSubcategory],
        day: date,
        note: Optional[str],
    ) -> ExpenseOut:
        candidate = Candidate(category, subcategory, day)
        try:
            with self.db.transaction() as cur:
                records = self._slot_records(owner, day, cur)
                conflict = check_candidate(records, owner, candidate)
                if conflict is not None:
                    raise _conflict_error(conflict)
                expense_id = self.db.insert_expense(
                    owner,
                    amount=amount,
                    category=category.value,
                    subcategory=subcategory.value if subcategory else None,
                    day=day,
                    note=note,
                    cur=cur,
                )
                row = self.db.get_expense(expense_id, cur=cur)
        except UniqueSlotViolation as exc:
            logger.warning("unique guard rejected insert", extra={"owner": owner})
            raise _conflict_error(conflict_for(candidate)) from exc
        except sqlite3.Error as exc:
            raise InternalFailure("failed to persist expense") from exc
        logger.info("expense created", extra={"owner": owner, "expense_id": expense_id})
        return row_to_expense_out(row)

    # ------------------------------------------------------------------
    # Commands
    def create(self, owner: str, draft: ExpenseIn) -> ExpenseOut:
        return self._insert_one(
            owner,
            amount=draft.amount,
            category=draft.category,
            subcategory=draft.subcategory,
            day=draft.date,
            note=draft.note,
        )

    def pay_rent(self, owner: str, payment: RentPaymentIn) -> ExpenseOut:
        return self._insert_one(
            owner,
            amount=payment.amount,
            category=Category.RENT,
            subcategory=None,
            day=payment.date,
            note=payment.note,
        )

    def create_batch(
        self, owner: str, day: date, drafts: Sequence[ExpenseItemIn]
    ) -> List[ExpenseOut]:
        """Insert every draft for ``day`` or none of them."""
        if not drafts:
            raise ValidationError(details=["expenses: at least one expense is required"])
        if len(drafts) > self.max_batch_size:
            raise ValidationError(
                details=[f"expenses: at most {self.max_batch_size} expenses per submission"]
            )
        candidates = [Candidate(d.category, d.subcategory, day) for d in drafts]
        index = 0
        try:
            with self.db.transaction() as cur:
                records = self._slot_records(owner, day, cur)
                conflict = check_batch(records, owner, day, candidates)
                if conflict is not None:
                    raise _conflict_error(conflict)
                rows = []
                for index, draft in enumerate(drafts):
                    expense_id = self.db.insert_expense(
                        owner,
                        amount=draft.amount,
                        category=draft.category.value,
                        subcategory=draft.subcategory.value if draft.subcategory else None,
                        day=day,
                        note=draft.note,
                        cur=cur,
                    )
                    rows.append(self.db.get_expense(expense_id, cur=cur))
        except UniqueSlotViolation as exc:
            logger.warning("unique guard rejected batch", extra={"owner": owner})
            raise _conflict_error(batch_conflict_for(candidates[index], index)) from exc
        except sqlite3.Error as exc:
            raise InternalFailure("failed to persist expenses") from exc
        logger.info(
            "expense batch created (%d items)", len(rows), extra={"owner": owner}
        )
        return [row_to_expense_out(r) for r in rows]

    def update(self, owner: str, expense_id: str, patch: ExpenseUpdateIn) -> ExpenseOut:
        changes = patch.changes()
        try:
            with self.db.transaction() as cur:
                row = self._owned_row(owner, expense_id, "update", cur)

                category = changes.get("category") or Category(row["category"])
                if "subcategory" in changes:
                    subcategory = changes["subcategory"]
                elif category != Category.FOOD:
                    # Moving away from FOOD drops the meal slot
                    subcategory = None
                else:
                    sub_raw = row.get("subcategory")
                    subcategory = FoodSubcategory(sub_raw) if sub_raw else None
                day = changes.get("date") or date.fromisoformat(row["date"])
                try:
                    check_subcategory(category, subcategory)
                except ValueError as exc:
                    raise ValidationError(details=[str(exc)])

                records = self._slot_records(owner, day, cur)
                conflict = check_candidate(
                    records,
                    owner,
                    Candidate(category, subcategory, day),
                    exclude_id=expense_id,
                )
                if conflict is not None:
                    raise _conflict_error(conflict)

                # Only columns whose merged value differs are written
                fields: Dict[str, Any] = {}
                if "amount" in changes:
                    fields["amount"] = changes["amount"]
                if category.value != row["category"]:
                    fields["category"] = category.value
                sub_value = subcategory.value if subcategory else None
                if sub_value != row.get("subcategory"):
                    fields["subcategory"] = sub_value
                if day.isoformat() != row["date"]:
                    fields["day"] = day
                if "note" in changes:
                    fields["note"] = changes["note"]
                self.db.update_expense(expense_id, owner, cur=cur, **fields)
                updated = self.db.get_expense(expense_id, cur=cur)
        except UniqueSlotViolation as exc:
            raise _conflict_error(
                conflict_for(Candidate(category, subcategory, day))
            ) from exc
        except ValueError as exc:
            raise NotFound("Expense not found") from exc
        except sqlite3.Error as exc:
            raise InternalFailure("failed to update expense") from exc
        logger.info("expense updated", extra={"owner": owner, "expense_id": expense_id})
        return row_to_expense_out(updated)

    def delete(self, owner: str, expense_id: str) -> None:
        try:
            with self.db.transaction() as cur:
                self._owned_row(owner, expense_id, "delete", cur)
                self.db.delete_expense(expense_id, owner, cur=cur)
        except ValueError as exc:
            raise NotFound("Expense not found") from exc
        except sqlite3.Error as exc:
            raise InternalFailure("failed to delete expense") from exc
        logger.info("expense deleted", extra={"owner": owner, "expense_id": expense_id})

    # ------------------------------------------------------------------
    # Queries
    def get(self, owner: str, expense_id: str) -> ExpenseOut:
        with self.db.transaction(immediate=False) as cur:
            row = self._owned_row(owner, expense_id, "view", cur)
        return row_to_expense_out(row)

    def list(self, owner: str, filters: ExpenseFilters) -> ExpensePage:
        category = filters.category.value if filters.category else None
        with self.db.transaction(immediate=False) as cur:
            rows = self.db.list_expenses(
                owner,
                start_date=filters.date_from,
                end_date=filters.date_to,
                category=category,
                limit=filters.limit,
                offset=filters.offset,
                cur=cur,
            )
            count, amount = self.db.summarize_expenses(
                owner,
                start_date=filters.date_from,
                end_date=filters.date_to,
                category=category,
                cur=cur,
            )
        return ExpensePage(
            records=[row_to_expense_out(r) for r in rows],
            pagination=Pagination(
                total=count,
                limit=filters.limit,
                offset=filters.offset,
                has_more=filters.offset + len(rows) < count,
            ),
            totals=Totals(amount=amount, count=count),
        )

    def get_restrictions(self, owner: str, day: date) -> Restrictions:
        first, last = month_window(day)
        with self.db.transaction(immediate=False) as cur:
            taken = set(self.db.taken_food_slots(owner, day, cur=cur))
            rent = self.db.find_rent(owner, first, last, cur=cur)
        return Restrictions(
            date=day,
            unavailable_food=[s for s in RESTRICTED_FOOD_ORDER if s.value in taken],
            rent_paid=rent is not None,
        )

    def rent_status(self, owner: str, today: Optional[date] = None) -> RentStatus:
        today = today or date.today()
        first, last = month_window(today)
        rent = self.db.find_rent(owner, first, last)
        return RentStatus(
            paid=rent is not None,
            record=row_to_expense_out(rent) if rent else None,
            month=MonthWindow(start=first, end=last),
        )
