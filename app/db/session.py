# app/db/session.py
"""
Engine/session lifecycle.

The engine (and its bounded connection pool) is created once at startup,
kept on ``app.state`` and disposed on shutdown. Handlers never touch a
module-level engine: they receive a per-request session via ``get_session``.
"""
from __future__ import annotations

from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


def create_engine_from_url(
    database_url: str,
    *,
    pool_size: int = 10,
    max_overflow: int = 0,
    **kwargs,
) -> AsyncEngine:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite" and "poolclass" not in kwargs:
        kwargs.update(pool_size=pool_size, max_overflow=max_overflow, pool_pre_ping=True)
    return create_async_engine(url, **kwargs)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.sessionmaker
    async with session_factory() as session:
        yield session
