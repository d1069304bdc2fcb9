# app/api/routes/tickets.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Request, status

from app.api.deps import DBDep, NotifierDep
from app.api.routes.users import client_ip
from app.core.logging import log_extra
from app.schemas.tickets import TicketCreate, TicketCreated
from app.services import tickets as workflow


router = APIRouter()
log = logging.getLogger(__name__)


@router.post("", response_model=TicketCreated, status_code=status.HTTP_201_CREATED)
async def submit_ticket(payload: TicketCreate, request: Request, db: DBDep, notifier: NotifierDep):
    """Employee submission; one ticket per selected admin. No session required."""
    created = await workflow.submit(db, notifier, payload, client_ip=client_ip(request))
    log.info("tickets_created", extra={**log_extra(request), "count": len(created)})
    return TicketCreated(
        message="Ticket created successfully",
        ids=[t.id for t in created],
    )
