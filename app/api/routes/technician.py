# app/api/routes/technician.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query

from app.api.deps import DBDep, NotifierDep, TechnicianUser
from app.schemas.tickets import TechnicianReject, TicketOut, TicketStatusUpdate
from app.services import ticket_store as store
from app.services import tickets as workflow

router = APIRouter()


@router.get("/my-tickets", response_model=list[TicketOut])
async def my_tickets(
    db: DBDep,
    current: TechnicianUser,
    status_: Optional[str] = Query(default=None, alias="status"),
):
    rows = await store.list_by_assignee(db, current.id, workflow.parse_status_filter(status_))
    return [TicketOut(**workflow.serialize_ticket(t)) for t in rows]


@router.patch("/tickets/{ticket_id}/status", response_model=TicketOut)
async def update_status(
    ticket_id: int,
    payload: TicketStatusUpdate,
    db: DBDep,
    notifier: NotifierDep,
    current: TechnicianUser,
):
    t = await workflow.update_status(db, notifier, ticket_id, current, payload)
    return TicketOut(**workflow.serialize_ticket(t))


@router.patch("/tickets/{ticket_id}/reject", response_model=TicketOut)
async def reject_ticket(
    ticket_id: int,
    payload: TechnicianReject,
    db: DBDep,
    notifier: NotifierDep,
    current: TechnicianUser,
):
    t = await workflow.technician_reject(db, notifier, ticket_id, current, payload.reason)
    return TicketOut(**workflow.serialize_ticket(t))
