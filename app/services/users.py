"""
User directory: employee lookup, admin/technician listings and resolution of
the user references that arrive on forms (id, username or display name).
"""
from __future__ import annotations

from typing import Optional, Sequence, Union

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationError
from app.db.models import RoleEnum as Role, User


def _enum_value(v):
    return v.value if hasattr(v, "value") else v


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "emp_id": user.emp_id,
        "username": user.username,
        "display_name": user.display_name,
        "department": user.department,
        "email": user.email,
        "role": str(_enum_value(user.role)),
    }


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    res = await db.execute(select(User).where(User.username == username))
    return res.scalar_one_or_none()


async def find_employee(db: AsyncSession, key: str) -> Optional[User]:
    res = await db.execute(
        select(User)
        .where(or_(User.emp_id == key, User.username == key))
        .order_by(User.id.asc())
        .limit(1)
    )
    return res.scalar_one_or_none()


async def list_by_role(db: AsyncSession, role: Role) -> Sequence[User]:
    res = await db.execute(
        select(User)
        .where(User.role == role, User.is_active == True)  # noqa: E712
        .order_by(User.display_name.asc(), User.id.asc())
    )
    return res.scalars().all()


async def resolve_user_ref(db: AsyncSession, ref: Union[int, str], role: Role) -> User:
    """
    Resolve a form reference to an active user of ``role``.

    An int (or all-digit string) is tried as an id first, then the value is
    matched against username and finally display name. A display name shared
    by more than one user is rejected instead of guessed.
    """
    label = "technician" if role == Role.technician else "admin"
    base = select(User).where(User.role == role, User.is_active == True)  # noqa: E712

    text = str(ref).strip()
    if not text:
        raise ValidationError(f"Unknown {label}")

    if isinstance(ref, int) or text.isdigit():
        user = (await db.execute(base.where(User.id == int(text)))).scalar_one_or_none()
        if user is not None:
            return user

    user = (await db.execute(base.where(User.username == text))).scalar_one_or_none()
    if user is not None:
        return user

    matches = (await db.execute(base.where(User.display_name == text))).scalars().all()
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise ValidationError(f"Ambiguous {label} name: {text}")
    raise ValidationError(f"Unknown {label}: {text}")
