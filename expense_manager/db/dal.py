"""Data Access Layer utilities with owner-scoped expenses.

Responsibilities
----------------
- Identity store: create and look up users.
- Expense CRUD and query primitives, always filtered by owner.
- Aggregation helpers (page totals over the whole filtered set).
- Transaction boundary: `transaction()` opens a `BEGIN IMMEDIATE` unit whose
  cursor can be handed to any method through its `cur` argument, so several
  reads and writes commit (or roll back) together.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from pathlib import Path
import sqlite3
from typing import Any, Dict, Iterator, List, Optional, Tuple
import uuid

from expense_manager.services.money import from_cents, to_cents
from .schema import FOOD_SLOT_UNIQUE_INDEX, RENT_MONTH_UNIQUE_INDEX

UTC_NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"
RESTRICTED_FOOD_SQL = "('BREAKFAST','LUNCH','DINNER')"
_UNSET = object()


class UniqueSlotViolation(Exception):
    """A write hit one of the meal-slot / rent-month unique indexes."""

    def __init__(self, kind: str, original: sqlite3.IntegrityError):
        super().__init__(str(original))
        self.kind = kind  # 'food' | 'rent'


class DuplicateUser(Exception):
    pass


def _slot_violation(exc: sqlite3.IntegrityError) -> Optional[UniqueSlotViolation]:
    msg = str(exc)
    if "UNIQUE" not in msg:
        return None
    if RENT_MONTH_UNIQUE_INDEX in msg:
        return UniqueSlotViolation("rent", exc)
    if FOOD_SLOT_UNIQUE_INDEX in msg or "expenses.subcategory" in msg:
        return UniqueSlotViolation("food", exc)
    return None


class Database:
    def __init__(self, db_path: Path, busy_timeout: float = 5.0):
        self.db_path = db_path
        self.busy_timeout = busy_timeout

    # ------------------------------------------------------------------
    # Connection helpers
    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode: transactions are opened explicitly in `transaction()`
        conn = sqlite3.connect(
            self.db_path, timeout=self.busy_timeout, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def transaction(self, immediate: bool = True) -> Iterator[sqlite3.Cursor]:
        """Run a unit of work; rolls back on any exception, cancellation included.

        ``immediate=True`` takes the write lock up front so a check followed
        by a write cannot interleave with another writer. ``immediate=False``
        gives a consistent read snapshot without blocking writers.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn.cursor()
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def _cursor(self, cur: Optional[sqlite3.Cursor]) -> Iterator[sqlite3.Cursor]:
        """Reuse the caller's cursor, or run standalone on a short-lived connection."""
        if cur is not None:
            yield cur
            return
        conn = self._connect()
        try:
            yield conn.cursor()
        finally:
            conn.close()

    def ping(self) -> bool:
        with self._cursor(None) as cur:
            cur.execute("SELECT 1")
            return cur.fetchone()[0] == 1

    # ------------------------------------------------------------------
    # Identity store
    def create_user(self, user_id: str, password_hash: str) -> Dict[str, Any]:
        with self.transaction() as cur:
            try:
                cur.execute(
                    f"""
                    INSERT INTO users (user_id, password_hash, created_at)
                    VALUES (?, ?, ({UTC_NOW_SQL}))
                    """,
                    (user_id, password_hash),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateUser(user_id) from exc
            cur.execute("SELECT * FROM users WHERE user_id = ?", (user_id,))
            return dict(cur.fetchone())

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._cursor(None) as cur:
            cur.execute("SELECT * FROM users WHERE user_id = ?", (user_id,))
            row = cur.fetchone()
            return dict(row) if row else None

    # ------------------------------------------------------------------
    # Expense reads
    def get_expense(
        self, expense_id: str, cur: Optional[sqlite3.Cursor] = None
    ) -> Optional[Dict[str, Any]]:
        """Fetch by id regardless of owner; callers enforce ownership."""
        with self._cursor(cur) as c:
            c.execute("SELECT * FROM expenses WHERE id = ?", (expense_id,))
            row = c.fetchone()
            return dict(row) if row else None

    def list_slot_records(
        self,
        owner: str,
        start_date: date,
        end_date: date,
        cur: Optional[sqlite3.Cursor] = None,
    ) -> List[Dict[str, Any]]:
        """FOOD and RENT records of one owner within [start_date, end_date]."""
        with self._cursor(cur) as c:
            c.execute(
                """
                SELECT id, owner, category, subcategory, date
                FROM expenses
                WHERE owner = ? AND date >= ? AND date <= ?
                  AND category IN ('FOOD', 'RENT')
                ORDER BY date, created_at
                """,
                (owner, start_date.isoformat(), end_date.isoformat()),
            )
            return [dict(r) for r in c.fetchall()]

    def find_rent(
        self,
        owner: str,
        start_date: date,
        end_date: date,
        cur: Optional[sqlite3.Cursor] = None,
    ) -> Optional[Dict[str, Any]]:
        with self._cursor(cur) as c:
            c.execute(
                """
                SELECT * FROM expenses
                WHERE owner = ? AND category = 'RENT' AND date >= ? AND date <= ?
                ORDER BY date
                LIMIT 1
                """,
                (owner, start_date.isoformat(), end_date.isoformat()),
            )
            row = c.fetchone()
            return dict(row) if row else None

    def taken_food_slots(
        self, owner: str, day: date, cur: Optional[sqlite3.Cursor] = None
    ) -> List[str]:
        with self._cursor(cur) as c:
            c.execute(
                f"""
                SELECT DISTINCT subcategory FROM expenses
                WHERE owner = ? AND category = 'FOOD' AND date = ?
                  AND subcategory IN {RESTRICTED_FOOD_SQL}
                """,
                (owner, day.isoformat()),
            )
            return [r[0] for r in c.fetchall()]

    @staticmethod
    def _filter_clause(
        owner: str,
        start_date: Optional[date],
        end_date: Optional[date],
        category: Optional[str],
    ) -> Tuple[str, List[Any]]:
        clauses = ["owner = ?"]
        params: List[Any] = [owner]
        if start_date:
            clauses.append("date >= ?")
            params.append(start_date.isoformat())
        if end_date:
            clauses.append("date <= ?")
            params.append(end_date.isoformat())
        if category:
            clauses.append("category = ?")
            params.append(category)
        return " WHERE " + " AND ".join(clauses), params

    def list_expenses(
        self,
        owner: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
        cur: Optional[sqlite3.Cursor] = None,
    ) -> List[Dict[str, Any]]:
        where, params = self._filter_clause(owner, start_date, end_date, category)
        with self._cursor(cur) as c:
            sql = (
                f"SELECT * FROM expenses{where} "
                "ORDER BY date DESC, created_at DESC, id DESC LIMIT ? OFFSET ?"
            )
            c.execute(sql, (*params, limit, offset))
            return [dict(r) for r in c.fetchall()]

    def summarize_expenses(
        self,
        owner: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category: Optional[str] = None,
        cur: Optional[sqlite3.Cursor] = None,
    ) -> Tuple[int, Decimal]:
        """Return (count, amount total) over the whole filtered set."""
        where, params = self._filter_clause(owner, start_date, end_date, category)
        with self._cursor(cur) as c:
            c.execute(
                f"SELECT COUNT(*), COALESCE(SUM(amount_cents), 0) FROM expenses{where}",
                params,
            )
            count, total = c.fetchone()
            return int(count or 0), from_cents(total)

    # ------------------------------------------------------------------
    # Expense writes
    def insert_expense(
        self,
        owner: str,
        *,
        amount: Decimal,
        category: str,
        subcategory: Optional[str],
        day: date,
        note: Optional[str],
        cur: Optional[sqlite3.Cursor] = None,
    ) -> str:
        expense_id = str(uuid.uuid4())
        if cur is None:
            with self.transaction() as own:
                return self.insert_expense(
                    owner,
                    amount=amount,
                    category=category,
                    subcategory=subcategory,
                    day=day,
                    note=note,
                    cur=own,
                )
        try:
            cur.execute(
                f"""
                INSERT INTO expenses (
                    id, owner, amount_cents, category, subcategory, date, note,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                """,
                (
                    expense_id,
                    owner,
                    to_cents(amount),
                    category,
                    subcategory,
                    day.isoformat(),
                    note,
                ),
            )
        except sqlite3.IntegrityError as exc:
            violation = _slot_violation(exc)
            if violation is None:
                raise
            raise violation from exc
        return expense_id

    def update_expense(
        self,
        expense_id: str,
        owner: str,
        *,
        amount: Any = _UNSET,
        category: Any = _UNSET,
        subcategory: Any = _UNSET,
        day: Any = _UNSET,
        note: Any = _UNSET,
        cur: Optional[sqlite3.Cursor] = None,
    ) -> None:
        updates: List[str] = []
        params: List[Any] = []

        if amount is not _UNSET:
            updates.append("amount_cents = ?")
            params.append(to_cents(amount))
        if category is not _UNSET:
            updates.append("category = ?")
            params.append(category)
        if subcategory is not _UNSET:
            updates.append("subcategory = ?")
            params.append(subcategory)
        if day is not _UNSET:
            updates.append("date = ?")
            params.append(day.isoformat())
        if note is not _UNSET:
            updates.append("note = ?")
            params.append(note)

        # updated_at is bumped even for a no-op patch
        updates.append(f"updated_at = ({UTC_NOW_SQL})")
        with self._cursor(cur) as c:
            try:
                c.execute(
                    f"UPDATE expenses SET {', '.join(updates)} WHERE id = ? AND owner = ?",
                    (*params, expense_id, owner),
                )
            except sqlite3.IntegrityError as exc:
                violation = _slot_violation(exc)
                if violation is None:
                    raise
                raise violation from exc
            if c.rowcount == 0:
                raise ValueError("expense not found")

    def delete_expense(
        self, expense_id: str, owner: str, cur: Optional[sqlite3.Cursor] = None
    ) -> None:
        with self._cursor(cur) as c:
            c.execute(
                "DELETE FROM expenses WHERE id = ? AND owner = ?", (expense_id, owner)
            )
            if c.rowcount == 0:
                raise ValueError("expense not found")


__all__ = ["Database", "DuplicateUser", "UniqueSlotViolation"]
