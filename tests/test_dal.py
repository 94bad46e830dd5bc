"""Repository, migrations and the unique guards behind the business rules."""

import asyncio
import sqlite3
from datetime import date
from decimal import Decimal

import pytest

from expense_manager.db.dal import Database, DuplicateUser, UniqueSlotViolation
from expense_manager.db.migrate import (
    CURRENT_SCHEMA_VERSION,
    MigrationError,
    apply_migrations,
)
from expense_manager.db import schema
from expense_manager.db.schema import init_db


def insert(db, owner="alice", category="FOOD", subcategory="BREAKFAST", day=date(2024, 3, 1), amount="10.00", cur=None):
    return db.insert_expense(
        owner,
        amount=Decimal(amount),
        category=category,
        subcategory=subcategory,
        day=day,
        note=None,
        cur=cur,
    )


def test_migrations_are_idempotent(settings):
    assert apply_migrations(settings.db_path) == CURRENT_SCHEMA_VERSION
    assert apply_migrations(settings.db_path) == CURRENT_SCHEMA_VERSION


def test_migration_refuses_existing_duplicates(settings):
    init_db(settings.db_path)
    conn = sqlite3.connect(settings.db_path)
    conn.execute("INSERT INTO users (user_id, password_hash) VALUES ('alice', 'x')")
    for i in range(2):
        conn.execute(
            "INSERT INTO expenses (id, owner, amount_cents, category, subcategory, date) "
            "VALUES (?, 'alice', 500, 'RENT', NULL, ?)",
            (f"r{i}", f"2024-05-0{i + 1}"),
        )
    conn.commit()
    conn.close()
    with pytest.raises(MigrationError, match="2024-05 RENT"):
        apply_migrations(settings.db_path)


def test_duplicate_user(db):
    with pytest.raises(DuplicateUser):
        db.create_user("alice", "hash")


def test_food_slot_unique_guard(db):
    insert(db)
    with pytest.raises(UniqueSlotViolation) as exc_info:
        insert(db)
    assert exc_info.value.kind == "food"
    # other owners, other days and unrestricted slots are untouched
    insert(db, owner="bob")
    insert(db, day=date(2024, 3, 2))
    insert(db, subcategory="TEA")
    insert(db, subcategory="TEA")


def test_rent_month_unique_guard(db):
    insert(db, category="RENT", subcategory=None, day=date(2024, 5, 3))
    with pytest.raises(UniqueSlotViolation) as exc_info:
        insert(db, category="RENT", subcategory=None, day=date(2024, 5, 28))
    assert exc_info.value.kind == "rent"
    insert(db, category="RENT", subcategory=None, day=date(2024, 6, 1))


def test_update_into_taken_slot_hits_guard(db):
    insert(db, subcategory="LUNCH")
    other = insert(db, subcategory="DINNER")
    with pytest.raises(UniqueSlotViolation):
        db.update_expense(other, "alice", subcategory="LUNCH")


def test_transaction_rolls_back_on_error(db, count_expenses):
    with pytest.raises(RuntimeError):
        with db.transaction() as cur:
            insert(db, cur=cur)
            raise RuntimeError("boom")
    assert count_expenses("alice") == 0


def test_transaction_rolls_back_on_cancellation(db, count_expenses):
    with pytest.raises(asyncio.CancelledError):
        with db.transaction() as cur:
            insert(db, cur=cur)
            insert(db, subcategory="LUNCH", cur=cur)
            raise asyncio.CancelledError()
    assert count_expenses("alice") == 0


def test_list_and_summarize_are_owner_scoped(db):
    insert(db, category="MISC", subcategory=None, amount="1.10")
    insert(db, category="MISC", subcategory=None, amount="2.20", day=date(2024, 3, 5))
    insert(db, owner="bob", category="MISC", subcategory=None, amount="100.00")

    rows = db.list_expenses("alice")
    assert [r["date"] for r in rows] == ["2024-03-05", "2024-03-01"]
    count, total = db.summarize_expenses("alice")
    assert (count, total) == (2, Decimal("3.30"))
    count, total = db.summarize_expenses("alice", start_date=date(2024, 3, 2))
    assert (count, total) == (1, Decimal("2.20"))


def test_update_and_delete_require_owner(db):
    expense_id = insert(db)
    with pytest.raises(ValueError):
        db.update_expense(expense_id, "bob", note="hijack")
    with pytest.raises(ValueError):
        db.delete_expense(expense_id, "bob")
    db.delete_expense(expense_id, "alice")
    assert db.get_expense(expense_id) is None


def test_unknown_owner_rejected_by_foreign_key(db):
    with pytest.raises(sqlite3.IntegrityError):
        insert(db, owner="mallory")


def test_ping(db: Database):
    assert db.ping() is True


def test_update_writes_only_given_columns(db):
    expense_id = insert(db, amount="42.10")
    db.update_expense(expense_id, "alice", note="toast")
    row = db.get_expense(expense_id)
    assert row["note"] == "toast"
    assert row["amount_cents"] == 4210
    assert (row["category"], row["subcategory"]) == ("FOOD", "BREAKFAST")


def test_summarize_is_exact_for_large_amounts(db):
    for _ in range(300):
        insert(db, category="MISC", subcategory=None, amount="9999999999.99")
    insert(db, category="MISC", subcategory=None, amount="0.01")
    assert db.summarize_expenses("alice") == (301, Decimal("2999999999997.01"))


def test_real_amounts_migrated_to_cents(settings):
    conn = sqlite3.connect(settings.db_path)
    conn.execute(schema.USERS_DDL)
    conn.execute(schema.METADATA_DDL)
    conn.execute(
        """
        CREATE TABLE expenses (
            id TEXT PRIMARY KEY,
            owner TEXT NOT NULL,
            amount REAL NOT NULL CHECK (amount > 0),
            category TEXT NOT NULL,
            subcategory TEXT,
            date TEXT NOT NULL,
            note TEXT,
            created_at TEXT NOT NULL DEFAULT '2024-03-01T00:00:00.000Z',
            updated_at TEXT NOT NULL DEFAULT '2024-03-01T00:00:00.000Z'
        )
        """
    )
    conn.execute("INSERT INTO users (user_id, password_hash) VALUES ('alice', 'x')")
    conn.execute(
        "INSERT INTO expenses (id, owner, amount, category, subcategory, date, note) "
        "VALUES ('e1', 'alice', 19.99, 'FOOD', 'BREAKFAST', '2024-03-01', 'kept')"
    )
    conn.execute("INSERT INTO metadata (key, value) VALUES ('schema_version', '2')")
    conn.commit()
    conn.close()

    assert apply_migrations(settings.db_path) == CURRENT_SCHEMA_VERSION
    migrated = Database(settings.db_path)
    row = migrated.get_expense("e1")
    assert row["amount_cents"] == 1999
    assert row["note"] == "kept"
    assert migrated.summarize_expenses("alice") == (1, Decimal("19.99"))
    # unique guards exist on the rebuilt table
    with pytest.raises(UniqueSlotViolation):
        insert(migrated)
