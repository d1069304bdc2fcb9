# app/schemas/auth.py
from __future__ import annotations
from pydantic import BaseModel


class LoginIn(BaseModel):
    # both optional here: the verifier reports the missing pair itself
    username: str | None = None
    password: str | None = None


class SessionUserOut(BaseModel):
    id: int
    username: str
    role: str
    display_name: str | None = None


class TokenOut(BaseModel):
    ok: bool = True
    token: str
    token_type: str = "bearer"
    user: SessionUserOut


class Principal(BaseModel):
    """Identity decoded from the session token; no DB round-trip."""
    id: int
    username: str
    role: str
    display_name: str | None = None
