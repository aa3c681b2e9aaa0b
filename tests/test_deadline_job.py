"""Deadline refresh job and the scheduler that runs it."""

from datetime import timedelta

from civictrack.config import ControlStatus, NotificationType
from civictrack.control.application import run_deadline_refresh_once, run_notification_sweep_once
from civictrack.control.domain import CitizenRequest
from civictrack.control.infrastructure import DeadlineScheduler
from tests.conftest import EXECUTOR


def _seed(repo, clock, due_in_hours, control_status=ControlStatus.NORMAL):
    return repo.seed(CitizenRequest(
        citizen_name="Jane Citizen",
        executor_user_id=EXECUTOR.user_id,
        due_date=clock.now + timedelta(hours=due_in_hours),
        control_status=control_status,
    ))


async def test_refresh_updates_stale_statuses(scope, requests_repo, mailer, clock):
    soon = _seed(requests_repo, clock, 10)
    late = _seed(requests_repo, clock, -10)
    calm = _seed(requests_repo, clock, 300)

    summary = await run_deadline_refresh_once(scope, batch_size=2)

    assert summary == {"processed": 3, "changed": 2, "failed": 0}
    assert requests_repo.rows[soon.id].control_status == ControlStatus.APPROACHING
    assert requests_repo.rows[late.id].control_status == ControlStatus.OVERDUE
    assert requests_repo.rows[calm.id].control_status == ControlStatus.NORMAL
    assert len(mailer.sent) == 3


async def test_refresh_is_idempotent(scope, requests_repo, mailer, ledger, clock):
    _seed(requests_repo, clock, 10)
    _seed(requests_repo, clock, -10)

    await run_deadline_refresh_once(scope)
    sent = len(mailer.sent)
    second = await run_deadline_refresh_once(scope)

    assert second["changed"] == 0
    assert len(mailer.sent) == sent
    assert ledger.count(NotificationType.DUE_SOON) == 1


async def test_refresh_continues_past_a_broken_request(scope, requests_repo, clock):
    broken = _seed(requests_repo, clock, 10)
    healthy = _seed(requests_repo, clock, -10)
    requests_repo.broken_ids.add(broken.id)

    summary = await run_deadline_refresh_once(scope)

    assert summary["failed"] == 1
    assert summary["processed"] == 1
    assert requests_repo.rows[healthy.id].control_status == ControlStatus.OVERDUE


async def test_notification_sweep_retries_earlier_failure(scope, requests_repo, mailer, clock):
    _seed(requests_repo, clock, 10, control_status=ControlStatus.APPROACHING)
    mailer.failing.add(EXECUTOR.email)
    await run_notification_sweep_once(scope)
    assert mailer.sent == []

    mailer.failing.clear()
    result = await run_notification_sweep_once(scope)

    assert result["due_soon"]["sent"] == 1
    assert mailer.recipients() == [EXECUTOR.email]


async def test_scheduler_registers_both_jobs_once():
    async def job():
        return None

    scheduler = DeadlineScheduler(job, job, refresh_cron="0 3 * * *", notification_cron="*/15 * * * *")
    await scheduler.start()
    await scheduler.start()
    try:
        assert scheduler.is_running
        assert sorted(scheduler.job_ids()) == ["deadline_notifications", "deadline_refresh"]
    finally:
        await scheduler.stop()
    assert not scheduler.is_running
