"""Database migration utilities.

Handles schema evolution by applying idempotent migrations keyed by an integer
`schema_version` stored in the metadata table.

Versions:
  1. users / expenses / metadata tables and lookup indexes
  2. unique guards for the meal-slot and rent-month rules
  3. amounts stored as integer cents (`amount_cents`) instead of REAL
"""

from __future__ import annotations
from pathlib import Path
import logging
import sqlite3
from typing import List, Optional

from . import schema as schema_def
from .schema import init_db

CURRENT_SCHEMA_VERSION = 3
SCHEMA_VERSION_KEY = "schema_version"

logger = logging.getLogger("expense_manager.db.migrate")


class MigrationError(RuntimeError):
    """Existing data prevents a migration from being applied."""


def _get_schema_version(conn: sqlite3.Connection) -> Optional[int]:
    try:
        cur = conn.cursor()
        cur.execute("SELECT value FROM metadata WHERE key=?", (SCHEMA_VERSION_KEY,))
        row = cur.fetchone()
        if row:
            return int(row[0])
    except sqlite3.OperationalError:
        # metadata table may not exist yet (first run before init_db)
        return None
    return None


def apply_migrations(db_path: Path) -> int:
    """Apply required migrations and return resulting schema version."""
    init_db(db_path)
    conn = sqlite3.connect(db_path)
    try:
        version = _get_schema_version(conn) or 1
        if version < 2:
            _migrate_to_v2(conn)
            version = 2
        if version < 3:
            _migrate_to_v3(conn)
            version = 3
        _set_schema_version(conn, version)
        conn.commit()
        logger.info("database schema at version %s", version)
        return version
    finally:
        conn.close()


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    cur = conn.cursor()
    cur.execute(
        "INSERT INTO metadata (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value, "
        f"updated_at=({schema_def.BASIC_UTC_NOW})",
        (SCHEMA_VERSION_KEY, str(version)),
    )


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    """Create the unique guards, refusing when existing rows already collide."""
    cur = conn.cursor()
    try:
        duplicates = _find_duplicate_slots(cur)
        if duplicates:
            raise MigrationError(
                "cannot add uniqueness guards, duplicate slots exist: "
                + "; ".join(duplicates)
            )
        for ddl in schema_def.UNIQUE_GUARD_DDL:
            cur.execute(ddl)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _find_duplicate_slots(cur: sqlite3.Cursor) -> List[str]:
    found: List[str] = []
    cur.execute(
        """
        SELECT owner, date, subcategory, COUNT(*)
        FROM expenses
        WHERE category = 'FOOD' AND subcategory IN ('BREAKFAST','LUNCH','DINNER')
        GROUP BY owner, date, subcategory
        HAVING COUNT(*) > 1
        """
    )
    for owner, day, sub, count in cur.fetchall():
        found.append(f"{owner} {day} {sub} x{count}")
    cur.execute(
        """
        SELECT owner, substr(date, 1, 7) AS month, COUNT(*)
        FROM expenses
        WHERE category = 'RENT'
        GROUP BY owner, month
        HAVING COUNT(*) > 1
        """
    )
    for owner, month, count in cur.fetchall():
        found.append(f"{owner} {month} RENT x{count}")
    return found


def _migrate_to_v3(conn: sqlite3.Connection) -> None:
    """Rebuild `expenses` with integer cents when it still has a REAL amount."""
    cols = {row[1] for row in conn.execute("PRAGMA table_info(expenses)")}
    if "amount_cents" in cols:
        return
    try:
        conn.execute("BEGIN")
        conn.execute("ALTER TABLE expenses RENAME TO expenses_v2")
        conn.execute(schema_def.EXPENSES_DDL)
        conn.execute(
            """
            INSERT INTO expenses (
                id, owner, amount_cents, category, subcategory, date, note,
                created_at, updated_at
            )
            SELECT id, owner, CAST(ROUND(amount * 100) AS INTEGER), category,
                   subcategory, date, note, created_at, updated_at
            FROM expenses_v2
            """
        )
        # Dropping the old table also drops the indexes that moved with it
        conn.execute("DROP TABLE expenses_v2")
        for ddl in (*schema_def.INDEX_DDL, *schema_def.UNIQUE_GUARD_DDL):
            conn.execute(ddl)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    logger.info("expense amounts converted to integer cents")
