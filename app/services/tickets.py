"""
Tickets service (workflow rules)

The state machine lives here together with who may trigger which transition
and which notification follows it. Routers stay thin: they authenticate,
parse and call one function from this module.

Every transition is one conditional write in ``ticket_store``; notifications
are emitted only after the commit.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import ValidationError
from app.db.models import PriorityEnum as Priority, RoleEnum as Role, Ticket, TicketStatusEnum as Status
from app.schemas.auth import Principal
from app.schemas.tickets import TicketAssign, TicketCreate, TicketStatusUpdate
from app.services import ticket_store as store
from app.services.notifications import Notifier
from app.services.users import find_employee, get_user_by_username, resolve_user_ref

log = logging.getLogger(__name__)

# Allowed transitions (state machine)
ALLOWED_TRANSITIONS: dict[Status, Set[Status]] = {
    Status.not_assigned: {Status.assigned, Status.rejected},
    Status.assigned: {Status.pending, Status.inprocess, Status.complete, Status.rejected},
    Status.pending: {Status.inprocess, Status.complete, Status.rejected},
    Status.inprocess: {Status.complete, Status.rejected},
    Status.complete: set(),
    Status.rejected: set(),
}

TERMINAL: Set[Status] = {s for s, dst in ALLOWED_TRANSITIONS.items() if not dst}

# what a technician may set via the status endpoint
TECHNICIAN_TARGETS: Set[Status] = {Status.pending, Status.inprocess, Status.complete}

# dashboards of older deployments call PENDING "NOT_STARTED"
STATUS_ALIASES: dict[str, Status] = {"NOT_STARTED": Status.pending}


def can_transition(src: Status, dst: Status) -> bool:
    return dst in ALLOWED_TRANSITIONS.get(src, set())


def sources_for(dst: Status) -> Set[Status]:
    """States from which ``dst`` is reachable in one step."""
    return {src for src, targets in ALLOWED_TRANSITIONS.items() if dst in targets}


def parse_status(value: Optional[str]) -> Status:
    raw = (value or "").strip().upper()
    if raw in STATUS_ALIASES:
        return STATUS_ALIASES[raw]
    try:
        return Status(raw)
    except ValueError:
        raise ValidationError("Invalid status") from None


def parse_status_filter(value: Optional[str]) -> Optional[Status]:
    """Query-string filter: empty or ALL means no filter."""
    if value is None or value.strip().upper() in ("", "ALL"):
        return None
    return parse_status(value)


# ==== payloads ====

def _v(x):
    return getattr(x, "value", x)


def _iso(x):
    return x.isoformat() if x is not None else None


def serialize_ticket(t: Ticket) -> Dict[str, Any]:
    return {
        "id": t.id,
        "emp_id": t.emp_id,
        "username": t.username,
        "full_name": t.full_name,
        "department": t.department,
        "system_ip": t.system_ip,
        "issue_text": t.issue_text,
        "remarks": t.remarks,
        "reporting_to": t.addressee.display_name if t.addressee else None,
        "reporting_to_id": t.addressee_id,
        "assigned_to": t.assignee.display_name if t.assignee else None,
        "assigned_to_id": t.assignee_id,
        "start_date": t.start_date,
        "end_date": t.end_date,
        "priority": _v(t.priority),
        "status": _v(t.status),
        "admin_remarks": t.admin_remarks,
        "fixed_note": t.fixed_note,
        "reject_reason": t.reject_reason,
        "created_at": t.created_at,
        "updated_at": t.updated_at,
    }


def _party(u) -> Optional[Dict[str, Any]]:
    if u is None:
        return None
    return {"id": u.id, "name": u.display_name, "email": u.email}


def event_payload(t: Ticket, actor: Optional[Principal] = None, **extra: Any) -> Dict[str, Any]:
    """JSON-safe snapshot of a ticket for the notification worker."""
    data = serialize_ticket(t)
    for k in ("start_date", "end_date", "created_at", "updated_at"):
        data[k] = _iso(data[k])
    payload: Dict[str, Any] = {
        "ticket": data,
        "requester": {
            "id": t.requester_id,
            "name": t.full_name,
            "email": t.requester.email if t.requester else None,
        },
        "addressee": _party(t.addressee),
        "assignee": _party(t.assignee),
        "actor": actor.model_dump() if actor else None,
    }
    payload.update(extra)
    return payload


async def _commit_and_reload(db: AsyncSession, ticket_id: int) -> Ticket:
    await db.commit()
    return await store.get(db, ticket_id)


def _emit(notifier: Notifier, event_type: str, t: Ticket, actor: Optional[Principal] = None, **extra: Any) -> None:
    # the transition is committed by now; nothing here may turn it into an error
    try:
        notifier.emit(event_type, event_payload(t, actor, **extra))
    except Exception:
        log.exception("notify_failed", extra={"event_type": event_type, "ticket_id": t.id})


# ==== Submit (employee form, no session) ====

async def submit(
    db: AsyncSession,
    notifier: Notifier,
    payload: TicketCreate,
    *,
    client_ip: Optional[str],
) -> list[Ticket]:
    """
    One independent ticket per selected addressee, all in one transaction.
    The client-reported IP wins over the address the server saw.
    """
    refs = payload.addressee_refs()
    if not refs:
        raise ValidationError("Missing required fields")

    addressees = []
    for ref in refs:
        u = await resolve_user_ref(db, ref, Role.admin)
        if all(a.id != u.id for a in addressees):
            addressees.append(u)

    # username first, then the employee id the form was filled from
    requester = await get_user_by_username(db, payload.username) or await find_employee(db, payload.emp_id)
    ip = payload.ip_address or client_ip

    ids: list[int] = []
    for addressee in addressees:
        t = await store.create(
            db,
            requester_id=requester.id if requester else None,
            emp_id=payload.emp_id,
            username=payload.username,
            full_name=payload.full_name,
            department=payload.department,
            system_ip=ip,
            issue_text=payload.issue_text,
            remarks=payload.remarks,
            addressee_id=addressee.id,
        )
        ids.append(t.id)
    await db.commit()

    tickets = [await store.get(db, i) for i in ids]
    for t in tickets:
        log.info("ticket_submitted", extra={"ticket_id": t.id, "addressee_id": t.addressee_id})
        _emit(notifier, "ticket.submitted", t)
    return tickets


# ==== Addressee (admin) transitions ====

async def assign(
    db: AsyncSession,
    notifier: Notifier,
    ticket_id: int,
    actor: Principal,
    payload: TicketAssign,
) -> Ticket:
    if payload.assigned_to is None:
        raise ValidationError("assigned_to required")

    technician = await resolve_user_ref(db, payload.assigned_to, Role.technician)
    start = payload.start_date or date.today()
    if payload.end_date is not None and payload.end_date < start:
        raise ValidationError("end_date must not be before start_date")

    values = {
        "assignee_id": technician.id,
        "start_date": start,
        "end_date": payload.end_date,
        "priority": payload.priority or Priority(settings.default_priority),
        "admin_remarks": payload.remarks,
        "status": Status.assigned,
    }
    ok = await store.transition(
        db,
        ticket_id,
        owner_attr="addressee_id",
        owner_id=actor.id,
        sources={Status.not_assigned},
        values=values,
    )
    if not ok:
        await store.diagnose_miss(
            db, ticket_id, owner_attr="addressee_id", owner_id=actor.id,
            message="Only unassigned tickets can be assigned",
        )

    t = await _commit_and_reload(db, ticket_id)
    log.info("ticket_assigned", extra={"ticket_id": t.id, "assignee_id": technician.id, "actor_id": actor.id})
    _emit(notifier, "ticket.assigned", t, actor)
    return t


async def reject(
    db: AsyncSession,
    notifier: Notifier,
    ticket_id: int,
    actor: Principal,
    message: Optional[str] = None,
) -> Ticket:
    message = (message or "").strip() or None
    ok = await store.transition(
        db,
        ticket_id,
        owner_attr="addressee_id",
        owner_id=actor.id,
        sources=sources_for(Status.rejected),
        values={"status": Status.rejected, "reject_reason": message},
    )
    if not ok:
        await store.diagnose_miss(
            db, ticket_id, owner_attr="addressee_id", owner_id=actor.id,
            message="Ticket is already closed",
        )

    t = await _commit_and_reload(db, ticket_id)
    log.info("ticket_rejected", extra={"ticket_id": t.id, "actor_id": actor.id})
    _emit(notifier, "ticket.rejected", t, actor, message=message)
    return t


async def remove(db: AsyncSession, ticket_id: int, actor: Principal) -> None:
    await store.delete(db, ticket_id, addressee_id=actor.id)
    await db.commit()
    log.info("ticket_deleted", extra={"ticket_id": ticket_id, "actor_id": actor.id})


# ==== Assignee (technician) transitions ====

async def update_status(
    db: AsyncSession,
    notifier: Notifier,
    ticket_id: int,
    actor: Principal,
    payload: TicketStatusUpdate,
) -> Ticket:
    target = parse_status(payload.status)
    if target not in TECHNICIAN_TARGETS:
        raise ValidationError("Invalid status")

    values: Dict[str, Any] = {"status": target}
    note = (payload.fixed_note or "").strip() or None
    if target == Status.complete:
        values["fixed_note"] = note

    ok = await store.transition(
        db,
        ticket_id,
        owner_attr="assignee_id",
        owner_id=actor.id,
        sources=sources_for(target) - {Status.not_assigned},
        values=values,
    )
    if not ok:
        await store.diagnose_miss(
            db, ticket_id, owner_attr="assignee_id", owner_id=actor.id,
            message=f"Cannot move ticket to {target.value}",
        )

    t = await _commit_and_reload(db, ticket_id)
    log.info("ticket_status_changed", extra={"ticket_id": t.id, "to": target.value, "actor_id": actor.id})
    _emit(notifier, "ticket.status_changed", t, actor, to=target.value)
    return t


async def technician_reject(
    db: AsyncSession,
    notifier: Notifier,
    ticket_id: int,
    actor: Principal,
    reason: Optional[str],
) -> Ticket:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason required")

    ok = await store.transition(
        db,
        ticket_id,
        owner_attr="assignee_id",
        owner_id=actor.id,
        sources=sources_for(Status.rejected) - {Status.not_assigned},
        values={"status": Status.rejected, "reject_reason": reason},
    )
    if not ok:
        await store.diagnose_miss(
            db, ticket_id, owner_attr="assignee_id", owner_id=actor.id,
            message="Ticket is already closed",
        )

    t = await _commit_and_reload(db, ticket_id)
    log.info("ticket_rejected_by_technician", extra={"ticket_id": t.id, "actor_id": actor.id})
    _emit(notifier, "ticket.technician_rejected", t, actor, reason=reason)
    return t
