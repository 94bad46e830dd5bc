"""Credential hashing, token issuance and the authenticated-owner dependency.

Hashing is delegated to ``bcrypt`` and tokens to ``PyJWT``; this module only
wires them to the settings and to FastAPI.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from expense_manager.core.config import Settings
from expense_manager.core.errors import AuthenticationError
from expense_manager.db.dal import Database

logger = logging.getLogger("expense_manager.security")

_bearer = HTTPBearer(auto_error=False)


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode(
        "utf-8"
    )


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def create_access_token(owner: str, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": owner,
        "iat": now,
        "exp": now + timedelta(seconds=settings.token_ttl_seconds),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> str:
    """Return the owner id carried by a valid token."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("Invalid token") from exc
    owner = payload.get("sub")
    if not isinstance(owner, str) or not owner:
        raise AuthenticationError("Invalid token")
    return owner


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_current_owner(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> str:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Access token required")
    settings = get_app_settings(request)
    owner = decode_access_token(credentials.credentials, settings)
    db = Database(settings.db_path, busy_timeout=settings.db_busy_timeout_seconds)
    if db.get_user(owner) is None:
        logger.info("token for unknown user rejected", extra={"owner": owner})
        raise AuthenticationError("Invalid token")
    return owner
