import socket
import threading
import time

import pytest

from app.main import app
from app.db.models import TicketStatusEnum as Status
from app.services import notifications
from app.services.mailer import MailIdentity
from app.services.notifications import InlineNotifier, NullNotifier, QueueNotifier, build_notifier, get_notifier
from app.workers import rq_worker
from conftest import auth


class _BrokenQueue:
    def enqueue(self, *a, **kw):
        raise ConnectionError("redis is down")


def test_queue_notifier_swallows_enqueue_errors(monkeypatch):
    n = QueueNotifier("redis://localhost:1/0")
    monkeypatch.setattr(n, "_get_queue", lambda: _BrokenQueue())
    n.emit("ticket.assigned", {"ticket": {"id": 1}})  # must not raise
    n.close()


def test_queue_notifier_enqueues_worker_handler(monkeypatch):
    calls = []

    class _Queue:
        def enqueue(self, func, *args, **kw):
            calls.append((func, args, kw))

    n = QueueNotifier("redis://localhost:1/0")
    monkeypatch.setattr(n, "_get_queue", lambda: _Queue())
    n.emit("ticket.rejected", {"ticket": {"id": 3}})
    n.close()
    [(func, args, kw)] = calls
    assert func == "app.workers.rq_worker.handle_event"
    assert args == ("ticket.rejected", {"ticket": {"id": 3}})
    assert "retry" not in kw


def test_build_notifier_backends(monkeypatch):
    from app.core.config import Settings

    assert isinstance(build_notifier(Settings(notifications_backend="rq")), QueueNotifier)
    assert isinstance(build_notifier(Settings(notifications_backend="inline")), InlineNotifier)
    assert isinstance(build_notifier(Settings(notifications_backend="disabled")), NullNotifier)


def test_inline_notifier_swallows_handler_errors(monkeypatch):
    def boom(event_type, payload):
        raise RuntimeError("smtp exploded")

    monkeypatch.setattr(rq_worker, "handle_event", boom)
    n = InlineNotifier()
    n.emit("ticket.assigned", {})  # must not raise
    n.close()


def test_transition_survives_notification_failure(client, users, submit, load_ticket, monkeypatch):
    tid = submit("Alice")[0]

    broken = QueueNotifier("redis://localhost:1/0")
    monkeypatch.setattr(broken, "_get_queue", lambda: _BrokenQueue())
    app.dependency_overrides[get_notifier] = lambda: broken

    r = client.patch(f"/api/admin/tickets/{tid}/assign", json={"assigned_to": "tom"}, headers=auth(users["alice"]))
    assert r.status_code == 200
    assert load_ticket(tid).status == Status.assigned


def test_transition_survives_raising_notifier(client, users, submit, load_ticket, monkeypatch):
    """Even a notifier that breaks its contract cannot undo a committed transition."""
    tid = submit("Alice")[0]

    class Exploding:
        def emit(self, event_type, payload):
            raise RuntimeError("boom")

    app.dependency_overrides[get_notifier] = lambda: Exploding()
    r = client.patch(f"/api/admin/tickets/{tid}/reject", headers=auth(users["alice"]))
    assert r.status_code == 200
    assert r.json()["status"] == "REJECTED"
    assert load_ticket(tid).status == Status.rejected


def test_emit_returns_before_enqueue_finishes(monkeypatch):
    release = threading.Event()
    seen = []

    class _SlowQueue:
        def enqueue(self, func, event_type, payload, **kw):
            release.wait(5)
            seen.append(payload["ticket"]["id"])

    n = QueueNotifier("redis://localhost:1/0")
    monkeypatch.setattr(n, "_get_queue", lambda: _SlowQueue())
    n.emit("ticket.submitted", {"ticket": {"id": 1}})
    n.emit("ticket.submitted", {"ticket": {"id": 2}})
    assert seen == []

    release.set()
    n.close()
    assert seen == [1, 2]


@pytest.fixture
def hung_redis():
    """A TCP endpoint that accepts connections and never answers."""
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.bind(("127.0.0.1", 0))
    srv.listen(8)
    yield f"redis://127.0.0.1:{srv.getsockname()[1]}/0"
    srv.close()


def test_submit_does_not_wait_for_a_hung_queue(client, users, submit, load_ticket, hung_redis):
    queue = QueueNotifier(hung_redis)
    app.dependency_overrides[get_notifier] = lambda: queue

    started = time.monotonic()
    ids = submit(["Alice", "Bob"])
    elapsed = time.monotonic() - started

    assert elapsed < 1.5
    assert [load_ticket(i).status for i in ids] == [Status.not_assigned, Status.not_assigned]
    queue.close(wait=False)


# ---------- worker ----------

@pytest.fixture
def sent(monkeypatch):
    out = []

    def fake_send(settings, *, to, subject, body, cc=(), sender=None):
        out.append(dict(to=to, subject=subject, body=body, cc=list(cc), sender=sender))

    monkeypatch.setattr(rq_worker, "send_mail", fake_send)
    monkeypatch.setattr(rq_worker, "load_sender", lambda user_id: None)
    return out


def _payload(**extra):
    p = {
        "ticket": {
            "id": 7,
            "full_name": "Eve Employee",
            "department": "Finance",
            "issue_text": "Printer jammed",
            "reporting_to": "Alice",
            "assigned_to": "Tom Tech",
            "priority": "Medium",
            "start_date": "2026-10-19",
            "end_date": None,
            "fixed_note": None,
        },
        "requester": {"id": 5, "name": "Eve Employee", "email": "eve@example.com"},
        "addressee": {"id": 1, "name": "Alice", "email": "alice@example.com"},
        "assignee": {"id": 3, "name": "Tom Tech", "email": "tom@example.com"},
        "actor": {"id": 1, "username": "alice", "role": "ADMIN", "display_name": "Alice"},
    }
    p.update(extra)
    return p


def test_assigned_mail_goes_to_technician_cc_requester(sent):
    rq_worker.handle_event("ticket.assigned", _payload())
    [m] = sent
    assert m["to"] == "tom@example.com"
    assert m["cc"] == ["eve@example.com"]
    assert "#7" in m["subject"]


def test_submitted_mail_goes_to_addressee(sent):
    rq_worker.handle_event("ticket.submitted", _payload())
    assert [m["to"] for m in sent] == ["alice@example.com"]


def test_rejected_mail_carries_message(sent):
    rq_worker.handle_event("ticket.rejected", _payload(message="duplicate"))
    [m] = sent
    assert m["to"] == "eve@example.com"
    assert "duplicate" in m["body"]


def test_status_mails_only_for_started_and_completed(sent):
    rq_worker.handle_event("ticket.status_changed", _payload(to="PENDING"))
    assert sent == []

    rq_worker.handle_event("ticket.status_changed", _payload(to="INPROCESS"))
    p = _payload(to="COMPLETE")
    p["ticket"]["fixed_note"] = "new drum"
    rq_worker.handle_event("ticket.status_changed", p)
    assert [m["to"] for m in sent] == ["eve@example.com", "eve@example.com"]
    assert "new drum" in sent[1]["body"]


def test_technician_reject_mail_goes_to_addressee(sent):
    rq_worker.handle_event("ticket.technician_rejected", _payload(reason="needs vendor"))
    [m] = sent
    assert m["to"] == "alice@example.com"
    assert "needs vendor" in m["body"]


def test_missing_recipient_and_unknown_event_are_ignored(sent):
    p = _payload()
    p["requester"]["email"] = None
    rq_worker.handle_event("ticket.rejected", p)
    rq_worker.handle_event("ticket.exploded", p)
    assert sent == []


def test_mail_failure_is_swallowed(monkeypatch):
    def failing(settings, **kw):
        raise OSError("connection refused")

    monkeypatch.setattr(rq_worker, "send_mail", failing)
    monkeypatch.setattr(rq_worker, "load_sender", lambda user_id: None)
    rq_worker.handle_event("ticket.assigned", _payload())  # must not raise


def test_personal_sender_identity_is_used(monkeypatch):
    seen = {}
    personal = MailIdentity(address="alice@example.com", username="alice@example.com", password="app-pass")

    def fake_send(settings, *, to, subject, body, cc=(), sender=None):
        seen["sender"] = sender

    monkeypatch.setattr(rq_worker, "send_mail", fake_send)
    monkeypatch.setattr(rq_worker, "load_sender", lambda user_id: personal if user_id == 1 else None)
    rq_worker.handle_event("ticket.assigned", _payload())
    assert seen["sender"] is personal


def test_webhook_is_signed(monkeypatch, sent):
    posted = {}

    class _Resp:
        status_code = 204

    def fake_post(url, json, headers, timeout):
        posted.update(url=url, json=json, headers=headers)
        return _Resp()

    monkeypatch.setattr(rq_worker.settings, "webhook_url", "https://hooks.example.com/helpdesk")
    monkeypatch.setattr(rq_worker.settings, "webhook_secret", "k")
    monkeypatch.setattr(rq_worker.requests, "post", fake_post)

    rq_worker.handle_event("ticket.submitted", _payload())
    assert posted["headers"]["X-Helpdesk-Event"] == "ticket.submitted"
    assert posted["headers"]["X-Helpdesk-Signature"].startswith("sha256=")
    assert len(sent) == 1


def test_dispatcher_module_exposes_handler_path():
    assert notifications.HANDLER_PATH.endswith("handle_event")
