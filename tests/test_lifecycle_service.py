"""Request lifecycle: create, update, read, list and remove from control."""

from datetime import timedelta

import pytest

from civictrack.config import ControlStatus, NotificationType, RequestStatus, UserRole
from civictrack.control.application import (
    AttachmentDTO,
    RequestListQuery,
    RequestUpdateDTO,
)
from civictrack.control.domain import Actor, CitizenRequest, Recipient
from civictrack.core import (
    InvalidReferenceException,
    ResourceLimitException,
    ResourceNotFoundException,
    StateConflictException,
    ValidationException,
)
from tests.conftest import EXECUTOR

OPERATOR = Actor(user_id=11, email="op@city.gov", name="Olga Operator", role=UserRole.OPERATOR)


def _files(n):
    return [AttachmentDTO(original_name=f"f{i}.pdf", stored_name=f"s{i}.pdf", size=10) for i in range(n)]


# ========== create ==========

async def test_create_derives_control_status(lifecycle, make_payload):
    assert (await lifecycle.create(make_payload())).control_status == "no"
    assert (await lifecycle.create(make_payload(due_in_hours=200))).control_status == "normal"
    assert (await lifecycle.create(make_payload(due_in_hours=10))).control_status == "approaching"
    assert (await lifecycle.create(make_payload(due_in_hours=-1))).control_status == "overdue"


async def test_create_inside_window_notifies_executor_once(lifecycle, make_payload, mailer, ledger):
    view = await lifecycle.create(make_payload(due_in_hours=10))

    assert mailer.recipients() == [EXECUTOR.email]
    assert await ledger.has_entry(view.id, NotificationType.DUE_SOON)

    await lifecycle.get(view.id)
    assert len(mailer.sent) == 1


async def test_create_overdue_escalates_to_supervisors_and_admins(lifecycle, make_payload, mailer):
    await lifecycle.create(make_payload(due_in_hours=-5))
    assert sorted(mailer.recipients()) == ["admin@city.gov", "supervisor@city.gov"]


async def test_create_fills_executor_name_and_stores_attachments(lifecycle, make_payload):
    view = await lifecycle.create(make_payload(attachments=[a.model_dump() for a in _files(2)]))
    assert view.executor == EXECUTOR.name
    assert [a.original_name for a in view.attachments] == ["f0.pdf", "f1.pdf"]


async def test_create_rejects_removed_status(lifecycle, make_payload, requests_repo):
    with pytest.raises(ValidationException):
        await lifecycle.create(make_payload(status="removed"))
    assert requests_repo.rows == {}


async def test_create_rejects_unknown_status(lifecycle, make_payload):
    with pytest.raises(ValidationException, match="Unsupported status value"):
        await lifecycle.create(make_payload(status="bogus"))


async def test_create_rejects_invalid_due_date(lifecycle, make_payload):
    with pytest.raises(ValidationException, match="Invalid due_date"):
        await lifecycle.create(make_payload(due_date="not-a-date"))


async def test_create_rejects_inactive_reference(lifecycle, make_payload, requests_repo):
    with pytest.raises(InvalidReferenceException):
        await lifecycle.create(make_payload(request_topic_id=999))
    assert requests_repo.rows == {}


async def test_create_rejects_inactive_executor(lifecycle, make_payload, users):
    users.add(Recipient(user_id=50, email="gone@city.gov", name="Gone", is_active=False))
    with pytest.raises(InvalidReferenceException, match="executor"):
        await lifecycle.create(make_payload(executor_user_id=50))


async def test_create_enforces_attachment_limit(lifecycle, make_payload, requests_repo):
    with pytest.raises(ResourceLimitException):
        await lifecycle.create(make_payload(), attachments=_files(6))
    assert requests_repo.rows == {}


async def test_create_writes_audit_and_proceeding(lifecycle, make_payload, audit_repo):
    view = await lifecycle.create(make_payload(due_in_hours=100), actor=OPERATOR)

    assert len(audit_repo.audit) == 1
    entry = audit_repo.audit[0]
    assert entry.action == "create"
    assert entry.entity_type == "request"
    assert entry.request_id == view.id
    assert entry.user_id == OPERATOR.user_id
    assert entry.payload["citizen_name"] == "Jane Citizen"
    assert audit_repo.proceedings[0].notes == "Request created"


async def test_audit_failure_does_not_fail_create(lifecycle, make_payload, audit_repo, requests_repo):
    audit_repo.fail_audit = True
    view = await lifecycle.create(make_payload())
    assert view.id in requests_repo.rows
    assert len(audit_repo.proceedings) == 1


async def test_notification_failure_does_not_fail_create(lifecycle, make_payload, mailer, ledger):
    mailer.raising.add(EXECUTOR.email)
    view = await lifecycle.create(make_payload(due_in_hours=5))
    assert view.control_status == "approaching"
    assert ledger.count() == 0


# ========== update ==========

async def test_update_missing_request_returns_none(lifecycle):
    assert await lifecycle.update(404, RequestUpdateDTO(description="x")) is None


async def test_update_applies_only_sent_fields(lifecycle, make_payload):
    view = await lifecycle.create(make_payload(due_in_hours=100, address="1 Main St"))
    updated = await lifecycle.update(view.id, RequestUpdateDTO(description="Fixed wording"))

    assert updated.description == "Fixed wording"
    assert updated.address == "1 Main St"
    assert updated.due_date == view.due_date


async def test_update_due_date_into_window_notifies(lifecycle, make_payload, mailer, clock):
    view = await lifecycle.create(make_payload(due_in_hours=200))
    assert mailer.sent == []

    updated = await lifecycle.update(
        view.id, RequestUpdateDTO(due_date=clock.now + timedelta(hours=3))
    )

    assert updated.control_status == "approaching"
    assert mailer.recipients() == [EXECUTOR.email]


async def test_update_due_date_does_not_retrigger_due_soon(lifecycle, make_payload, mailer, ledger, clock):
    view = await lifecycle.create(make_payload(due_in_hours=24 * 30))
    assert view.control_status == "normal"

    first = await lifecycle.update(view.id, RequestUpdateDTO(due_date=clock.now + timedelta(hours=1)))
    assert first.control_status == "approaching"
    assert len(mailer.sent) == 1

    second = await lifecycle.update(view.id, RequestUpdateDTO(due_date=clock.now + timedelta(hours=10)))
    assert second.control_status == "approaching"
    assert len(mailer.sent) == 1
    assert ledger.count(NotificationType.DUE_SOON) == 1


async def test_update_due_date_keeps_removed_request_out_of_control(lifecycle, make_payload, mailer, clock):
    view = await lifecycle.create(make_payload(due_in_hours=100, status="in_progress", contact_email=None))
    await lifecycle.remove_from_control(view.id, None, OPERATOR)

    updated = await lifecycle.update(view.id, RequestUpdateDTO(due_date=clock.now - timedelta(hours=5)))

    assert updated.status == "removed"
    assert updated.control_status == "no"
    assert updated.due_date == clock.now - timedelta(hours=5)
    assert mailer.sent == []


async def test_update_due_date_on_completed_request_keeps_cached_status(lifecycle, make_payload, mailer, clock):
    view = await lifecycle.create(make_payload(due_in_hours=100, status="completed"))

    updated = await lifecycle.update(view.id, RequestUpdateDTO(due_date=clock.now + timedelta(hours=2)))

    assert updated.control_status == "normal"
    assert mailer.sent == []


async def test_update_clearing_due_date_removes_control(lifecycle, make_payload):
    view = await lifecycle.create(make_payload(due_in_hours=100))
    updated = await lifecycle.update(view.id, RequestUpdateDTO(due_date=None))
    assert updated.due_date is None
    assert updated.control_status == "no"


async def test_update_rejects_reopening_completed_request(lifecycle, make_payload):
    view = await lifecycle.create(make_payload(status="completed"))
    with pytest.raises(StateConflictException):
        await lifecycle.update(view.id, RequestUpdateDTO(status="in_progress"))

    archived = await lifecycle.update(view.id, RequestUpdateDTO(status="archived"))
    assert archived.status == "archived"


async def test_update_cannot_set_removed(lifecycle, make_payload):
    view = await lifecycle.create(make_payload())
    with pytest.raises(StateConflictException):
        await lifecycle.update(view.id, RequestUpdateDTO(status="removed"))


async def test_update_enforces_attachment_limit_across_calls(lifecycle, make_payload, attachments_repo):
    view = await lifecycle.create(make_payload(), attachments=_files(3))
    with pytest.raises(ResourceLimitException):
        await lifecycle.update(view.id, RequestUpdateDTO(), attachments=_files(3))
    assert await attachments_repo.count_for_request(view.id) == 3

    updated = await lifecycle.update(view.id, RequestUpdateDTO(), attachments=_files(2))
    assert len(updated.attachments) == 5


async def test_update_revalidates_changed_references(lifecycle, make_payload):
    view = await lifecycle.create(make_payload())
    with pytest.raises(InvalidReferenceException):
        await lifecycle.update(view.id, RequestUpdateDTO(request_type_id=42))


async def test_update_writes_one_audit_entry(lifecycle, make_payload, audit_repo):
    view = await lifecycle.create(make_payload())
    await lifecycle.update(view.id, RequestUpdateDTO(address="2 Side St", priority="urgent"))

    assert [e.action for e in audit_repo.audit] == ["create", "update"]
    assert audit_repo.audit[1].payload["changes"] == {"address": "2 Side St", "priority": "urgent"}
    assert audit_repo.proceedings[1].notes == "Request updated: address, priority"


# ========== get / list ==========

async def test_get_reconciles_lazily_and_notifies_once(lifecycle, make_payload, mailer, clock, requests_repo):
    view = await lifecycle.create(make_payload(due_in_hours=72))
    assert view.control_status == "normal"

    clock.advance(30)
    fresh = await lifecycle.get(view.id)

    assert fresh.control_status == "approaching"
    assert requests_repo.rows[view.id].control_status == ControlStatus.APPROACHING
    assert mailer.recipients() == [EXECUTOR.email]

    await lifecycle.get(view.id)
    assert len(mailer.sent) == 1


async def test_get_missing_returns_none(lifecycle):
    assert await lifecycle.get(12345) is None


async def test_terminal_requests_are_frozen(lifecycle, make_payload, mailer, clock, requests_repo):
    view = await lifecycle.create(make_payload(due_in_hours=100, status="completed"))
    clock.advance(24 * 10)

    fresh = await lifecycle.get(view.id)

    assert fresh.control_status == "normal"
    assert requests_repo.rows[view.id].control_status == ControlStatus.NORMAL
    assert mailer.sent == []


async def test_list_reconciles_rows_and_caps_page_size(lifecycle, make_payload, clock):
    for _ in range(3):
        await lifecycle.create(make_payload(due_in_hours=60))
    clock.advance(24)

    response = await lifecycle.list(RequestListQuery(limit=500))

    assert response.meta.limit == 100
    assert response.meta.total == 3
    assert response.meta.pages == 1
    assert {row.control_status for row in response.data} == {"approaching"}


async def test_list_filters_by_control_status(lifecycle, make_payload):
    await lifecycle.create(make_payload(due_in_hours=5))
    await lifecycle.create(make_payload(due_in_hours=500))

    response = await lifecycle.list(RequestListQuery(control_status="approaching"))
    assert response.meta.total == 1


# ========== remove_from_control ==========

async def test_remove_from_control(lifecycle, make_payload, audit_repo, mailer, clock):
    view = await lifecycle.create(make_payload(due_in_hours=100, status="in_progress"))

    removed = await lifecycle.remove_from_control(view.id, "  duplicate of #3 ", OPERATOR)

    assert removed.status == "removed"
    assert removed.control_status == "no"
    assert removed.is_removed_from_control
    assert removed.removed_from_control_at == clock.now
    assert removed.removed_from_control_by == OPERATOR.name
    assert removed.removed_from_control_by_user_id == OPERATOR.user_id

    entry = audit_repo.audit[-1]
    assert entry.action == "remove_from_control"
    assert entry.payload == {
        "note": "duplicate of #3",
        "previous_status": "in_progress",
        "removed_by": OPERATOR.name,
        "removed_by_user_id": OPERATOR.user_id,
    }
    assert audit_repo.proceedings[-1].notes == "Removed from control - duplicate of #3"
    assert mailer.recipients() == ["jane@example.org"]


async def test_remove_without_note(lifecycle, make_payload, audit_repo):
    view = await lifecycle.create(make_payload())
    await lifecycle.remove_from_control(view.id, "   ", OPERATOR)
    assert audit_repo.proceedings[-1].notes == "Removed from control"
    assert audit_repo.audit[-1].payload["note"] is None


async def test_remove_twice_conflicts(lifecycle, make_payload):
    view = await lifecycle.create(make_payload())
    await lifecycle.remove_from_control(view.id, None, OPERATOR)
    with pytest.raises(StateConflictException, match="already removed from control"):
        await lifecycle.remove_from_control(view.id, None, OPERATOR)


@pytest.mark.parametrize("status", ["completed", "archived"])
async def test_remove_finished_request_conflicts(lifecycle, requests_repo, status):
    seeded = requests_repo.seed(CitizenRequest(citizen_name="X", status=RequestStatus(status)))
    with pytest.raises(StateConflictException, match="Cannot remove completed or archived"):
        await lifecycle.remove_from_control(seeded.id, None, OPERATOR)


async def test_remove_cancelled_request_is_allowed(lifecycle, make_payload):
    view = await lifecycle.create(make_payload(status="cancelled"))
    removed = await lifecycle.remove_from_control(view.id, None, OPERATOR)
    assert removed.status == "removed"


async def test_remove_missing_request(lifecycle):
    with pytest.raises(ResourceNotFoundException):
        await lifecycle.remove_from_control(999, None, OPERATOR)


async def test_removed_request_gets_no_deadline_mail(lifecycle, make_payload, mailer, clock):
    view = await lifecycle.create(make_payload(due_in_hours=100, contact_email=None))
    await lifecycle.remove_from_control(view.id, None, OPERATOR)
    clock.advance(24 * 10)

    fresh = await lifecycle.get(view.id)

    assert fresh.control_status == "no"
    assert mailer.sent == []
