"""Database schema DDL definitions and initialization utilities.

Tables:
  - users: identity store (owner id + bcrypt hash)
  - expenses: individual expense records, always scoped by owner
  - metadata: key/value store (schema version)

The two partial unique indexes on `expenses` are the authoritative guard for
the meal-slot and rent-month rules; the service-level checks only turn the
common case into a friendly message before the write is attempted.
"""

from __future__ import annotations
import sqlite3
from typing import Sequence
from pathlib import Path

BASIC_UTC_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"

USERS_DDL = f"""
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    password_hash TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

EXPENSES_DDL = f"""
CREATE TABLE IF NOT EXISTS expenses (
    id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0), -- money in cents
    category TEXT NOT NULL CHECK (category IN ('FOOD','TRANSPORT','RENT','MISC','OTHER')),
    subcategory TEXT CHECK (
        (category = 'FOOD' AND subcategory IN ('BREAKFAST','LUNCH','DINNER','TEA','OTHER'))
        OR (category != 'FOOD' AND subcategory IS NULL)
    ),
    date TEXT NOT NULL, -- ISO date (YYYY-MM-DD)
    note TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    FOREIGN KEY (owner) REFERENCES users(user_id) ON DELETE CASCADE
);
"""

METADATA_DDL = f"""
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

EXPENSES_OWNER_DATE_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_expenses_owner_date ON expenses(owner, date);"
)
EXPENSES_OWNER_CATEGORY_INDEX_DDL = """
CREATE INDEX IF NOT EXISTS idx_expenses_owner_category
ON expenses(owner, category, date);
"""

FOOD_SLOT_UNIQUE_INDEX = "ux_expenses_food_slot"
RENT_MONTH_UNIQUE_INDEX = "ux_expenses_rent_month"

FOOD_SLOT_UNIQUE_DDL = f"""
CREATE UNIQUE INDEX IF NOT EXISTS {FOOD_SLOT_UNIQUE_INDEX}
ON expenses(owner, date, subcategory)
WHERE category = 'FOOD' AND subcategory IN ('BREAKFAST','LUNCH','DINNER');
"""

# substr(date, 1, 7) is the 'YYYY-MM' calendar month of an ISO date
RENT_MONTH_UNIQUE_DDL = f"""
CREATE UNIQUE INDEX IF NOT EXISTS {RENT_MONTH_UNIQUE_INDEX}
ON expenses(owner, substr(date, 1, 7))
WHERE category = 'RENT';
"""

DDL_ORDER: Sequence[str] = (
    USERS_DDL,
    EXPENSES_DDL,
    METADATA_DDL,
)

INDEX_DDL: Sequence[str] = (
    EXPENSES_OWNER_DATE_INDEX_DDL,
    EXPENSES_OWNER_CATEGORY_INDEX_DDL,
)

# Applied by migrate.py (schema v2) after checking existing rows for duplicates
UNIQUE_GUARD_DDL: Sequence[str] = (
    FOOD_SLOT_UNIQUE_DDL,
    RENT_MONTH_UNIQUE_DDL,
)


def init_db(path: Path) -> None:
    """Create all tables and lookup indexes idempotently.

    Parameters
    ----------
    path: Path to SQLite database file.
    """
    conn = sqlite3.connect(path)
    try:
        cur = conn.cursor()
        for ddl in DDL_ORDER:
            cur.execute(ddl)
        for ddl in INDEX_DDL:
            cur.execute(ddl)
        conn.commit()
    finally:
        conn.close()
