# app/services/auth.py
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.errors import Forbidden, Unauthenticated, ValidationError
from app.core.security import create_access_token, verify_password
from app.db.models import User
from app.services.users import get_user_by_username

log = logging.getLogger(__name__)


def _role_value(user: User) -> str:
    return str(getattr(user.role, "value", user.role))


async def authenticate(
    db: AsyncSession,
    *,
    username: str | None,
    password: str | None,
    settings: Settings,
) -> User:
    """
    Check a username/password pair. Raises instead of returning None so the
    route can hand the error straight to the exception handlers.
    """
    username = (username or "").strip()
    if not username or not password:
        raise ValidationError("Username & password required")

    user = await get_user_by_username(db, username)
    if user is None:
        log.info("login_failed", extra={"username": username, "reason": "unknown_user"})
        raise Unauthenticated("Invalid username")

    if not verify_password(password, user.password_hash):
        log.info("login_failed", extra={"username": username, "reason": "bad_password"})
        raise Unauthenticated("Invalid password")

    if not user.is_active:
        raise Forbidden("Account is inactive")

    role = _role_value(user)
    if role not in settings.login_roles:
        log.info("login_failed", extra={"username": username, "reason": "role_not_allowed"})
        raise Forbidden(f"Role {role} not allowed")

    return user


def session_user(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "role": _role_value(user),
        "display_name": user.display_name,
    }


def make_token_for_user(user: User, settings: Settings) -> str:
    return create_access_token(
        subject=str(user.id),
        role=_role_value(user),
        username=user.username,
        display_name=user.display_name,
        secret=settings.jwt_secret,
        expires_minutes=settings.jwt_expires_min,
        algorithm=settings.jwt_alg,
    )
