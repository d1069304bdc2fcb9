# app/api/routes/auth.py
from __future__ import annotations

from fastapi import APIRouter

from app.api.deps import CurrentUser, DBDep
from app.core.config import settings
from app.schemas.auth import LoginIn, Principal, SessionUserOut, TokenOut
from app.services.auth import authenticate, make_token_for_user, session_user

router = APIRouter()


@router.post("/login", response_model=TokenOut)
async def login(payload: LoginIn, db: DBDep):
    user = await authenticate(
        db,
        username=payload.username,
        password=payload.password,
        settings=settings,
    )
    return TokenOut(
        token=make_token_for_user(user, settings),
        user=SessionUserOut(**session_user(user)),
    )


@router.get("/me", response_model=Principal)
async def me(current: CurrentUser):
    return current
