"""Shared fixtures: every test gets its own SQLite file under tmp_path."""

from datetime import date
from decimal import Decimal
from typing import Callable, Dict

import pytest
from fastapi.testclient import TestClient

from expense_manager.core.config import Settings
from expense_manager.db.dal import Database
from expense_manager.db.migrate import apply_migrations
from expense_manager.main import create_app
from expense_manager.models.expense import ExpenseIn
from expense_manager.services.expense_service import ExpenseService


@pytest.fixture
def settings(tmp_path) -> Settings:
    s = Settings(
        data_dir=tmp_path,
        db_filename="test.sqlite3",
        environment="test",
        jwt_secret="test-secret-for-the-suite-0123456789",
        bcrypt_rounds=4,
    )
    s.init_post_load()
    return s


@pytest.fixture
def db(settings) -> Database:
    apply_migrations(settings.db_path)
    database = Database(settings.db_path)
    for owner in ("alice", "bob"):
        database.create_user(owner, "not-a-real-hash")
    return database


@pytest.fixture
def count_expenses(db) -> Callable[[str], int]:
    """Row count of one owner's expenses, read straight from the table."""

    def _count(owner: str) -> int:
        with db.transaction(immediate=False) as cur:
            cur.execute("SELECT COUNT(*) FROM expenses WHERE owner = ?", (owner,))
            return cur.fetchone()[0]

    return _count


@pytest.fixture
def service(db) -> ExpenseService:
    return ExpenseService(db)


@pytest.fixture
def make_expense() -> Callable[..., ExpenseIn]:
    def _make(
        category: str = "FOOD",
        subcategory: str | None = "BREAKFAST",
        day: date = date(2024, 3, 1),
        amount: str = "10.00",
        note: str | None = None,
    ) -> ExpenseIn:
        return ExpenseIn(
            amount=Decimal(amount),
            category=category,
            subcategory=subcategory,
            date=day,
            note=note,
        )

    return _make


@pytest.fixture
def client(settings):
    app = create_app(settings_override=settings)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers(client) -> Callable[[str], Dict[str, str]]:
    """Register (once) and log in a user, returning bearer headers."""

    def _headers(user_id: str = "alice", password: str = "secret123") -> Dict[str, str]:
        client.post(
            "/v1/auth/register", json={"user_id": user_id, "password": password}
        )
        resp = client.post(
            "/v1/auth/login", json={"user_id": user_id, "password": password}
        )
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['data']['token']}"}

    return _headers
