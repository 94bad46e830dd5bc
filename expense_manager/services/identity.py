"""Registration and login on top of the users table."""

from __future__ import annotations

import logging

from expense_manager.core.config import Settings
from expense_manager.core.errors import AlreadyExists, AuthenticationError
from expense_manager.core.security import (
    create_access_token,
    hash_password,
    verify_password,
)
from expense_manager.db.dal import Database, DuplicateUser
from expense_manager.models.user import LoginIn, RegisterIn, TokenOut, UserOut
from expense_manager.services.dates import parse_utc_timestamp

logger = logging.getLogger("expense_manager.identity")


class IdentityService:
    def __init__(self, db: Database, settings: Settings):
        self.db = db
        self.settings = settings

    def register(self, payload: RegisterIn) -> UserOut:
        password_hash = hash_password(payload.password, self.settings.bcrypt_rounds)
        try:
            row = self.db.create_user(payload.user_id, password_hash)
        except DuplicateUser:
            raise AlreadyExists("User ID already exists")
        logger.info("user registered", extra={"owner": payload.user_id})
        return UserOut(
            user_id=row["user_id"],
            created_at=parse_utc_timestamp(row["created_at"]),
        )

    def login(self, payload: LoginIn) -> TokenOut:
        user = self.db.get_user(payload.user_id)
        # Same message for unknown id and wrong password
        if user is None or not verify_password(payload.password, user["password_hash"]):
            raise AuthenticationError("Invalid credentials")
        return TokenOut(
            token=create_access_token(user["user_id"], self.settings),
            user_id=user["user_id"],
            expires_in=self.settings.token_ttl_seconds,
        )
