# app/api/routes/admin.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Query

from app.api.deps import AdminUser, DBDep, NotifierDep
from app.db.models import RoleEnum as Role
from app.schemas.tickets import TicketAssign, TicketOut, TicketReject
from app.schemas.users import StaffOut
from app.services import ticket_store as store
from app.services import tickets as workflow
from app.services.users import list_by_role

router = APIRouter()


@router.get("/tickets", response_model=list[TicketOut])
async def my_tickets(
    db: DBDep,
    current: AdminUser,
    status_: Optional[str] = Query(default=None, alias="status"),
):
    rows = await store.list_by_addressee(db, current.id, workflow.parse_status_filter(status_))
    return [TicketOut(**workflow.serialize_ticket(t)) for t in rows]


@router.get("/tickets/counts", response_model=dict[str, int])
async def my_ticket_counts(db: DBDep, current: AdminUser):
    return await store.counts_by_addressee(db, current.id)


@router.get("/technicians", response_model=list[StaffOut])
async def technicians(db: DBDep, current: AdminUser):
    return [StaffOut.model_validate(u) for u in await list_by_role(db, Role.technician)]


@router.patch("/tickets/{ticket_id}/assign", response_model=TicketOut)
async def assign_ticket(
    ticket_id: int,
    payload: TicketAssign,
    db: DBDep,
    notifier: NotifierDep,
    current: AdminUser,
):
    t = await workflow.assign(db, notifier, ticket_id, current, payload)
    return TicketOut(**workflow.serialize_ticket(t))


@router.patch("/tickets/{ticket_id}/reject", response_model=TicketOut)
async def reject_ticket(
    ticket_id: int,
    db: DBDep,
    notifier: NotifierDep,
    current: AdminUser,
    payload: Optional[TicketReject] = Body(default=None),
):
    message = payload.message if payload else None
    t = await workflow.reject(db, notifier, ticket_id, current, message)
    return TicketOut(**workflow.serialize_ticket(t))


@router.delete("/tickets/{ticket_id}/delete")
async def delete_ticket(ticket_id: int, db: DBDep, current: AdminUser):
    await workflow.remove(db, ticket_id, current)
    return {"ok": True}
