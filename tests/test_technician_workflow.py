import pytest

from app.db.models import TicketStatusEnum as Status
from conftest import auth


@pytest.fixture
def assigned(client, users, submit):
    """A ticket addressed to Alice and assigned to Tom."""
    tid = submit("Alice")[0]
    r = client.patch(f"/api/admin/tickets/{tid}/assign", json={"assigned_to": "tom"}, headers=auth(users["alice"]))
    assert r.status_code == 200
    return tid


def _set(client, user, tid, status, **extra):
    return client.patch(
        f"/api/technician/tickets/{tid}/status",
        json={"status": status, **extra},
        headers=auth(user),
    )


def test_my_tickets_lists_only_assigned_to_me(client, users, submit, assigned):
    submit("Alice")  # unassigned, must not show up
    r = client.get("/api/technician/my-tickets", headers=auth(users["tom"]))
    assert r.status_code == 200
    assert [t["id"] for t in r.json()] == [assigned]

    assert client.get("/api/technician/my-tickets", headers=auth(users["tina"])).json() == []

    filtered = client.get("/api/technician/my-tickets", params={"status": "COMPLETE"}, headers=auth(users["tom"]))
    assert filtered.json() == []


def test_full_progression(client, users, assigned, load_ticket, notifier):
    notifier.events.clear()
    tom = users["tom"]

    assert _set(client, tom, assigned, "PENDING").json()["status"] == "PENDING"
    assert _set(client, tom, assigned, "INPROCESS").json()["status"] == "INPROCESS"
    r = _set(client, tom, assigned, "COMPLETE", fixed_note="replaced fuser unit")
    assert r.status_code == 200
    assert r.json()["fixed_note"] == "replaced fuser unit"

    t = load_ticket(assigned)
    assert t.status == Status.complete
    assert t.fixed_note == "replaced fuser unit"

    assert [p["to"] for _, p in notifier.events] == ["PENDING", "INPROCESS", "COMPLETE"]
    assert notifier.events[-1][1]["ticket"]["fixed_note"] == "replaced fuser unit"


def test_not_started_is_an_alias_of_pending(client, users, assigned, load_ticket):
    r = _set(client, users["tom"], assigned, "not_started")
    assert r.status_code == 200
    assert load_ticket(assigned).status == Status.pending


def test_can_skip_straight_to_inprocess(client, users, assigned):
    assert _set(client, users["tom"], assigned, "INPROCESS").status_code == 200


@pytest.mark.parametrize("target", ["ASSIGNED", "REJECTED", "NOT_ASSIGNED", "DONE", "", None])
def test_status_outside_allow_list_is_rejected(client, users, assigned, load_ticket, notifier, target):
    notifier.events.clear()
    r = _set(client, users["tom"], assigned, target)
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid status"}
    assert load_ticket(assigned).status == Status.assigned
    assert notifier.events == []


def test_cannot_go_backwards(client, users, assigned, load_ticket):
    tom = users["tom"]
    _set(client, tom, assigned, "INPROCESS")
    r = _set(client, tom, assigned, "PENDING")
    assert r.status_code == 400
    assert load_ticket(assigned).status == Status.inprocess


def test_completed_ticket_is_final(client, users, assigned, load_ticket):
    tom = users["tom"]
    _set(client, tom, assigned, "COMPLETE")
    assert _set(client, tom, assigned, "INPROCESS").status_code == 400
    assert load_ticket(assigned).status == Status.complete


def test_other_technician_gets_403(client, users, assigned, load_ticket):
    r = _set(client, users["tina"], assigned, "INPROCESS")
    assert r.status_code == 403
    assert load_ticket(assigned).status == Status.assigned


def test_unknown_ticket_is_404(client, users):
    assert _set(client, users["tom"], 4242, "INPROCESS").status_code == 404


def test_technician_reject_goes_back_to_addressee(client, users, assigned, load_ticket, notifier):
    notifier.events.clear()
    r = client.patch(
        f"/api/technician/tickets/{assigned}/reject",
        json={"reason": "hardware is out of warranty, needs vendor"},
        headers=auth(users["tom"]),
    )
    assert r.status_code == 200
    t = load_ticket(assigned)
    assert t.status == Status.rejected
    assert t.reject_reason == "hardware is out of warranty, needs vendor"

    assert notifier.types() == ["ticket.technician_rejected"]
    assert notifier.events[0][1]["addressee"]["email"] == "alice@example.com"

    # the addressee may now delete it
    assert client.delete(f"/api/admin/tickets/{assigned}/delete", headers=auth(users["alice"])).status_code == 200


def test_technician_reject_requires_reason(client, users, assigned, load_ticket):
    r = client.patch(f"/api/technician/tickets/{assigned}/reject", json={"reason": "  "}, headers=auth(users["tom"]))
    assert r.status_code == 400
    assert r.json() == {"error": "reason required"}
    assert load_ticket(assigned).status == Status.assigned


def test_technician_reject_after_completion_fails(client, users, assigned):
    _set(client, users["tom"], assigned, "COMPLETE")
    r = client.patch(f"/api/technician/tickets/{assigned}/reject", json={"reason": "x"}, headers=auth(users["tom"]))
    assert r.status_code == 400
