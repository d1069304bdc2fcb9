from __future__ import annotations

from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import Forbidden, Unauthenticated
from app.core.security import decode_token
from app.db.models import RoleEnum as Role
from app.db.session import get_session
from app.schemas.auth import Principal
from app.services.notifications import Notifier, get_notifier

# auto_error=False: a missing header is a 401 of our own, not Starlette's 403
bearer_scheme = HTTPBearer(auto_error=False)

# DI aliases
DBDep = Annotated[AsyncSession, Depends(get_session)]
NotifierDep = Annotated[Notifier, Depends(get_notifier)]


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> Principal:
    """
    Decodes the Bearer JWT into a Principal. Only the signed claims are
    trusted; nothing is read from the database here.
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("No token")
    try:
        payload = decode_token(credentials.credentials, settings.jwt_secret, settings.jwt_alg)
        return Principal(
            id=int(payload["sub"]),
            username=payload.get("username") or "",
            role=str(payload["role"]),
            display_name=payload.get("display_name"),
        )
    except (ValueError, KeyError, TypeError):
        raise Forbidden("Invalid or expired token")


def require_role(*allowed: Role):
    """
    Admits only principals whose role is in ``allowed``.
    Example: current: Annotated[Principal, Depends(require_role(Role.admin))]
    """
    allowed_set = {r.value for r in allowed}

    async def _guard(current: Annotated[Principal, Depends(get_current_user)]) -> Principal:
        if current.role not in allowed_set:
            raise Forbidden("Access denied")
        return current

    return _guard


CurrentUser = Annotated[Principal, Depends(get_current_user)]
AdminUser = Annotated[Principal, Depends(require_role(Role.admin))]
TechnicianUser = Annotated[Principal, Depends(require_role(Role.technician))]
