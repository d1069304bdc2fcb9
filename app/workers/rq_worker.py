import asyncio
import hashlib
import hmac
import json
import logging
import os
from typing import Any, Callable, Mapping, Optional

import redis
import requests
from rq import Queue, Worker
from sqlalchemy import select
from sqlalchemy.pool import NullPool

from app.core.config import settings
from app.core.logging import setup_logging
from app.db.models import User
from app.db.session import create_engine_from_url, make_sessionmaker
from app.services.mailer import MailIdentity, send_mail

logger = logging.getLogger("worker.notifications")

# ---------- webhook mirror ----------

def _sign(payload: Mapping[str, Any]) -> Optional[str]:
    if not settings.webhook_secret:
        return None
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return hmac.new(settings.webhook_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

def _post_webhook(event_type: str, payload: Mapping[str, Any]) -> None:
    url = settings.webhook_url
    if not url:
        return
    headers = {"Content-Type": "application/json", "X-Helpdesk-Event": event_type}
    sig = _sign(payload)
    if sig:
        headers["X-Helpdesk-Signature"] = f"sha256={sig}"
    try:
        r = requests.post(url, json=payload, headers=headers, timeout=10)
        logger.info("webhook_sent", extra={"event_type": event_type, "status": r.status_code})
    except requests.RequestException:
        logger.exception("webhook_failed", extra={"event_type": event_type})

# ---------- sender identity ----------

async def _load_user(user_id: int) -> Optional[User]:
    engine = create_engine_from_url(settings.database_url, poolclass=NullPool)
    try:
        async with make_sessionmaker(engine)() as db:
            res = await db.execute(select(User).where(User.id == user_id))
            return res.scalar_one_or_none()
    finally:
        await engine.dispose()

def load_sender(user_id: Optional[int]) -> Optional[MailIdentity]:
    """Actor's personal mailbox if it has one configured, else None (system sender)."""
    if not user_id:
        return None
    try:
        user = asyncio.run(_load_user(user_id))
    except Exception:
        logger.exception("sender_lookup_failed", extra={"user_id": user_id})
        return None
    if user is None or not (user.mail_username and user.mail_password):
        return None
    return MailIdentity(
        address=user.email or user.mail_username,
        username=user.mail_username,
        password=user.mail_password,
        display_name=user.display_name,
    )

def _deliver(payload: Mapping[str, Any], to: Optional[str], subject: str, body: str, cc=()) -> None:
    if not to:
        logger.warning("recipient_missing", extra={"subject": subject})
        return
    actor = payload.get("actor") or {}
    sender = load_sender(actor.get("id"))
    try:
        send_mail(settings, to=to, subject=subject, body=body, cc=cc, sender=sender)
    except Exception:
        # the transition is already committed; a lost mail is only logged
        logger.exception("mail_failed", extra={"to": to, "subject": subject})

def _email(party: Optional[Mapping[str, Any]]) -> Optional[str]:
    return (party or {}).get("email")

# ---------- handlers ----------

def on_ticket_submitted(payload: Mapping[str, Any]) -> None:
    t = payload.get("ticket", {})
    _deliver(
        payload,
        _email(payload.get("addressee")),
        f"New ticket #{t.get('id')} from {t.get('full_name')}",
        f"{t.get('full_name')} ({t.get('department')}) reported:\n\n{t.get('issue_text')}",
    )

def on_ticket_assigned(payload: Mapping[str, Any]) -> None:
    t = payload.get("ticket", {})
    lines = [
        f"Ticket #{t.get('id')} has been assigned to {t.get('assigned_to')}.",
        f"Requested by: {t.get('full_name')} ({t.get('department')})",
        f"Issue: {t.get('issue_text')}",
        f"Priority: {t.get('priority')}",
        f"Schedule: {t.get('start_date')} - {t.get('end_date') or 'open'}",
    ]
    if t.get("admin_remarks"):
        lines.append(f"Remarks: {t.get('admin_remarks')}")
    _deliver(
        payload,
        _email(payload.get("assignee")),
        f"Ticket #{t.get('id')} assigned to you",
        "\n".join(lines),
        cc=[c for c in [_email(payload.get("requester"))] if c],
    )

def on_ticket_rejected(payload: Mapping[str, Any]) -> None:
    t = payload.get("ticket", {})
    body = f"Your ticket #{t.get('id')} was rejected by {t.get('reporting_to')}."
    if payload.get("message"):
        body += f"\n\nMessage: {payload.get('message')}"
    _deliver(payload, _email(payload.get("requester")), f"Ticket #{t.get('id')} rejected", body)

def on_status_changed(payload: Mapping[str, Any]) -> None:
    t = payload.get("ticket", {})
    to = payload.get("to")
    logger.info("status_changed", extra={"ticket_id": t.get("id"), "to": to})
    if to == "INPROCESS":
        _deliver(
            payload,
            _email(payload.get("requester")),
            f"Work started on ticket #{t.get('id')}",
            f"{t.get('assigned_to')} has started working on your ticket #{t.get('id')}.",
        )
    elif to == "COMPLETE":
        body = f"Your ticket #{t.get('id')} has been resolved by {t.get('assigned_to')}."
        if t.get("fixed_note"):
            body += f"\n\nFix note: {t.get('fixed_note')}"
        _deliver(payload, _email(payload.get("requester")), f"Ticket #{t.get('id')} resolved", body)

def on_technician_rejected(payload: Mapping[str, Any]) -> None:
    t = payload.get("ticket", {})
    _deliver(
        payload,
        _email(payload.get("addressee")),
        f"Ticket #{t.get('id')} rejected by {t.get('assigned_to')}",
        f"Reason: {payload.get('reason')}",
    )

EVENT_HANDLERS: dict[str, Callable[[Mapping[str, Any]], None]] = {
    "ticket.submitted": on_ticket_submitted,
    "ticket.assigned": on_ticket_assigned,
    "ticket.rejected": on_ticket_rejected,
    "ticket.status_changed": on_status_changed,
    "ticket.technician_rejected": on_technician_rejected,
}

def handle_event(event_type: str, payload: Mapping[str, Any] | None = None) -> None:
    payload = payload or {}
    _post_webhook(event_type, payload)
    handler = EVENT_HANDLERS.get(event_type)
    if not handler:
        logger.warning("unknown_event", extra={"event_type": event_type})
        return
    handler(payload)

def main() -> None:
    setup_logging(settings.log_level)
    logger.info("worker_starting", extra={"queue": settings.notifications_queue, "redis": settings.redis_url})
    conn = redis.from_url(settings.redis_url)
    queue = Queue(settings.notifications_queue, connection=conn)
    worker = Worker([queue], connection=conn, name=os.getenv("WORKER_NAME", "notifications-worker"))
    worker.work(logging_level=settings.log_level)

if __name__ == "__main__":
    main()
