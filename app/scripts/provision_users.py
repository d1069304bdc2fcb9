"""
Out-of-band user provisioning (there is no self-registration endpoint).

    python -m app.scripts.provision_users alice --role ADMIN --name "Alice Admin" \
        --email alice@example.com --password 'S3cret!'
    python -m app.scripts.provision_users --demo
"""
from __future__ import annotations

import argparse
import asyncio
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.security import hash_password
from app.db.models import RoleEnum as Role, User
from app.db.session import create_engine_from_url, make_sessionmaker


DEMO_USERS = [
    dict(username="admin", display_name="Admin", role=Role.admin, password="Admin123!", email="admin@example.com"),
    dict(username="tech", display_name="Technician", role=Role.technician, password="Tech123!", email="tech@example.com"),
    dict(username="emp", display_name="Employee", role=Role.employee, password=None,
         email="emp@example.com", emp_id="E001", department="IT"),
]


async def ensure_user(
    db: AsyncSession,
    *,
    username: str,
    display_name: str,
    role: Role,
    password: Optional[str] = None,
    email: Optional[str] = None,
    emp_id: Optional[str] = None,
    department: Optional[str] = None,
    mail_username: Optional[str] = None,
    mail_password: Optional[str] = None,
) -> User:
    """
    Creates the user if missing. An existing user gets its contact fields and
    (when given) password refreshed; the role is never changed.
    """
    user = (await db.execute(select(User).where(User.username == username))).scalar_one_or_none()

    if user is None:
        if role != Role.employee and not password:
            raise ValueError(f"Password required for new {role.value} user {username}")
        user = User(
            username=username,
            display_name=display_name,
            role=role,
            password_hash=hash_password(password) if password else None,
            email=email,
            emp_id=emp_id,
            department=department,
            mail_username=mail_username,
            mail_password=mail_password,
            is_active=True,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        print(f"[provision] created: {username} ({role.value})")
        return user

    if user.role != role:
        print(f"[provision] {username} is {user.role.value}; role is immutable, keeping it")

    changes = {
        "display_name": display_name,
        "email": email,
        "emp_id": emp_id,
        "department": department,
        "mail_username": mail_username,
        "mail_password": mail_password,
    }
    updated = False
    for field, value in changes.items():
        if value is not None and getattr(user, field) != value:
            setattr(user, field, value)
            updated = True
    if password:
        user.password_hash = hash_password(password)
        updated = True

    if updated:
        await db.commit()
        await db.refresh(user)
        print(f"[provision] updated: {username}")
    else:
        print(f"[provision] unchanged: {username}")
    return user


async def _run(users: list[dict]) -> None:
    engine = create_engine_from_url(settings.database_url)
    try:
        async with make_sessionmaker(engine)() as db:
            for spec in users:
                await ensure_user(db, **spec)
    finally:
        await engine.dispose()


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Create or update helpdesk users")
    p.add_argument("username", nargs="?", help="Login name")
    p.add_argument("--role", choices=[r.value for r in Role], default=Role.employee.value)
    p.add_argument("-n", "--name", dest="display_name", help="Display name (defaults to username)")
    p.add_argument("--password")
    p.add_argument("--email")
    p.add_argument("--emp-id", dest="emp_id")
    p.add_argument("--department")
    p.add_argument("--mail-username", dest="mail_username", help="Personal SMTP login")
    p.add_argument("--mail-password", dest="mail_password", help="Personal SMTP password")
    p.add_argument("--demo", action="store_true", help="Create demo admin/technician/employee")
    return p.parse_args()


def main() -> None:
    args = _parse_args()

    users: list[dict] = []
    if args.demo:
        users.extend(DEMO_USERS)
    if args.username:
        users.append(dict(
            username=args.username,
            display_name=args.display_name or args.username,
            role=Role(args.role),
            password=args.password,
            email=args.email,
            emp_id=args.emp_id,
            department=args.department,
            mail_username=args.mail_username,
            mail_password=args.mail_password,
        ))
    if not users:
        raise SystemExit("Nothing to do: pass a username or --demo")

    asyncio.run(_run(users))


if __name__ == "__main__":
    main()
