# app/api/routes/users.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, Request

from app.api.deps import DBDep
from app.core.errors import NotFound, ValidationError
from app.db.models import RoleEnum as Role
from app.schemas.users import EmployeeOut, StaffOut
from app.services.users import find_employee, list_by_role, serialize_user

router = APIRouter()


def client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip()
    if ip:
        return ip
    return request.client.host if request.client else None


@router.get("/employees/find", response_model=EmployeeOut)
async def find(db: DBDep, key: Optional[str] = Query(default=None)):
    key = (key or "").strip()
    if not key:
        raise ValidationError("key required")
    user = await find_employee(db, key)
    if user is None:
        raise NotFound("Not found")
    return EmployeeOut(**serialize_user(user))


@router.get("/admins", response_model=list[StaffOut])
async def list_admins(db: DBDep):
    # public: the submission form needs it before anyone logs in
    return [StaffOut.model_validate(u) for u in await list_by_role(db, Role.admin)]


@router.get("/ip")
async def my_ip(request: Request):
    return {"ip": client_ip(request)}
