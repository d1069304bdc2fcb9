import asyncio
from typing import Any, Mapping

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select, update
from sqlalchemy.pool import NullPool

from app.core.config import settings
from app.core.security import create_access_token, hash_password
from app.db.base import Base
from app.db.models import RoleEnum as Role, Ticket, TicketStatusEnum as Status, User
from app.db.session import create_engine_from_url, make_sessionmaker, get_session
from app.main import app
from app.services.notifications import get_notifier

PASSWORD = "S3cret-pass"


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[str, Mapping[str, Any]]] = []

    def emit(self, event_type, payload):
        self.events.append((event_type, payload))

    def types(self):
        return [e for e, _ in self.events]


@pytest.fixture(scope="session")
def password_hash():
    # bcrypt is slow; hash once per run
    return hash_password(PASSWORD)


@pytest.fixture
def db(tmp_path):
    engine = create_engine_from_url(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)

    async def _create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_create())
    yield make_sessionmaker(engine)
    asyncio.run(engine.dispose())


@pytest.fixture
def run(db):
    """Run ``fn(session)`` against the test database and return its result."""
    def _run(fn):
        async def _go():
            async with db() as session:
                return await fn(session)
        return asyncio.run(_go())
    return _run


@pytest.fixture
def users(run, password_hash):
    specs = {
        "alice": dict(display_name="Alice", role=Role.admin, email="alice@example.com"),
        "bob": dict(display_name="Bob", role=Role.admin, email="bob@example.com"),
        "tom": dict(display_name="Tom Tech", role=Role.technician, email="tom@example.com"),
        "tina": dict(display_name="Tina Tech", role=Role.technician, email="tina@example.com"),
        "eve": dict(display_name="Eve Employee", role=Role.employee, email="eve@example.com",
                    emp_id="E100", department="Finance"),
    }

    async def _seed(session):
        out = {}
        for username, spec in specs.items():
            u = User(username=username, password_hash=password_hash, is_active=True, **spec)
            session.add(u)
            out[username] = u
        await session.commit()
        return out

    return run(_seed)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(db, notifier):
    async def _session():
        async with db() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


def token_for(user: User, role: str | None = None, **kw) -> str:
    return create_access_token(
        subject=str(user.id),
        role=role or user.role.value,
        username=user.username,
        display_name=user.display_name,
        secret=settings.jwt_secret,
        expires_minutes=kw.pop("expires_minutes", 60),
    )


def auth(user: User, role: str | None = None) -> dict:
    return {"Authorization": f"Bearer {token_for(user, role)}"}


@pytest.fixture
def submit(client):
    def _submit(reporting_to="Alice", **overrides):
        body = {
            "emp_id": "E100",
            "username": "eve",
            "full_name": "Eve Employee",
            "department": "Finance",
            "reporting_to": reporting_to,
            "issue_text": "Printer on 3rd floor is jammed",
        }
        body.update(overrides)
        r = client.post("/api/tickets", json=body)
        assert r.status_code == 201, r.text
        return r.json()["ids"]
    return _submit


@pytest.fixture
def load_ticket(run):
    def _load(ticket_id):
        async def _get(session):
            return (await session.execute(select(Ticket).where(Ticket.id == ticket_id))).scalar_one_or_none()
        return run(_get)
    return _load


@pytest.fixture
def force_status(run):
    def _force(ticket_id, status: Status, **values):
        async def _set(session):
            await session.execute(update(Ticket).where(Ticket.id == ticket_id).values(status=status, **values))
            await session.commit()
        run(_set)
    return _force
