"""
Ticket store.

Reads are plain selects ordered newest first. Every state-changing write is a
single conditional statement (``... WHERE id=? AND <owner>=? AND status IN
(...)``) so the precondition and the write are one atomic step; when nothing
matched, ``diagnose_miss`` works out which part of the condition failed.
"""
from __future__ import annotations

from typing import Any, Collection, Dict, Optional, Sequence

from sqlalchemy import delete as sa_delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Forbidden, NotFound, PreconditionFailed
from app.db.models import Ticket, TicketStatusEnum as Status


async def create(db: AsyncSession, **fields: Any) -> Ticket:
    """Adds a ticket in the initial state; the caller commits."""
    fields["status"] = Status.not_assigned
    t = Ticket(**fields)
    db.add(t)
    await db.flush()
    return t


async def get(db: AsyncSession, ticket_id: int) -> Ticket:
    t = (
        await db.execute(
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if t is None:
        raise NotFound("Ticket not found")
    return t


async def _list(db: AsyncSession, owner_col, owner_id: int, status_: Optional[Status]) -> Sequence[Ticket]:
    q = select(Ticket).where(owner_col == owner_id)
    if status_ is not None:
        q = q.where(Ticket.status == status_)
    q = q.order_by(Ticket.created_at.desc(), Ticket.id.desc())
    return (await db.execute(q)).scalars().all()


async def list_by_addressee(db: AsyncSession, addressee_id: int, status_: Optional[Status] = None) -> Sequence[Ticket]:
    return await _list(db, Ticket.addressee_id, addressee_id, status_)


async def list_by_assignee(db: AsyncSession, assignee_id: int, status_: Optional[Status] = None) -> Sequence[Ticket]:
    return await _list(db, Ticket.assignee_id, assignee_id, status_)


async def counts_by_addressee(db: AsyncSession, addressee_id: int) -> Dict[str, int]:
    rows = (
        await db.execute(
            select(Ticket.status, func.count())
            .where(Ticket.addressee_id == addressee_id)
            .group_by(Ticket.status)
        )
    ).all()
    counts = {s.value: 0 for s in Status}
    for s, c in rows:
        counts[getattr(s, "value", s)] = int(c)
    return counts


async def diagnose_miss(
    db: AsyncSession,
    ticket_id: int,
    *,
    owner_attr: str,
    owner_id: int,
    message: str = "Illegal status transition",
) -> None:
    """Raise the error that explains why a conditional write matched no row."""
    row = (
        await db.execute(
            select(getattr(Ticket, owner_attr), Ticket.status).where(Ticket.id == ticket_id)
        )
    ).first()
    if row is None:
        raise NotFound("Ticket not found")
    owner, current = row
    if owner != owner_id:
        raise Forbidden("Not your ticket")
    raise PreconditionFailed(f"{message} (current status: {getattr(current, 'value', current)})")


async def transition(
    db: AsyncSession,
    ticket_id: int,
    *,
    owner_attr: str,
    owner_id: int,
    sources: Collection[Status],
    values: Dict[str, Any],
) -> bool:
    """
    Conditional update. Returns False when no row satisfied
    id/owner/status; the caller commits on success.
    """
    stmt = (
        update(Ticket)
        .where(
            Ticket.id == ticket_id,
            getattr(Ticket, owner_attr) == owner_id,
            Ticket.status.in_(list(sources)),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return res.rowcount == 1


async def delete(db: AsyncSession, ticket_id: int, *, addressee_id: int) -> None:
    """Hard delete; only a REJECTED ticket of this addressee goes away."""
    res = await db.execute(
        sa_delete(Ticket)
        .where(
            Ticket.id == ticket_id,
            Ticket.addressee_id == addressee_id,
            Ticket.status == Status.rejected,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        await diagnose_miss(
            db,
            ticket_id,
            owner_attr="addressee_id",
            owner_id=addressee_id,
            message="Only rejected tickets can be deleted",
        )
