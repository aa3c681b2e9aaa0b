"""
Deadline Jobs
=============

Background jobs run at startup and by the scheduler:
- deadline refresh: reconciles the control status of every request
- notification sweep: due-soon and overdue e-mails, retrying earlier failures

Each request is reconciled in its own unit of work so one bad row cannot
abort the sweep.
"""

from typing import AsyncContextManager, Callable, Optional

from civictrack.control.application.services import ControlServices
from civictrack.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

ServiceScope = Callable[[], AsyncContextManager[ControlServices]]


class DeadlineRefreshJob:
    """Streams requests in keyset batches and lazily reconciles each one."""

    def __init__(self, scope: ServiceScope, batch_size: int = 200):
        self.scope = scope
        self.batch_size = batch_size

    async def run(self) -> dict:
        summary = {"processed": 0, "changed": 0, "failed": 0}
        last_id: Optional[int] = None

        with log_latency(logger, "deadline_refresh", batch_size=self.batch_size):
            while True:
                async with self.scope() as services:
                    batch = await services.requests.list_ids_after(last_id, self.batch_size)
                if not batch:
                    break

                for request_id in batch:
                    await self._refresh_one(request_id, summary)
                last_id = batch[-1]

        logger.info("Deadline refresh finished", extra=summary)
        return summary

    async def _refresh_one(self, request_id: int, summary: dict) -> None:
        try:
            async with self.scope() as services:
                request = await services.requests.get_by_id(request_id)
                if request is None:
                    return
                before = request.control_status
                request = await services.reconciler.ensure_control_status(request)
                if request.control_status != before:
                    summary["changed"] += 1
            summary["processed"] += 1
        except Exception:
            summary["failed"] += 1
            logger.exception(
                "Deadline refresh failed for request",
                extra={"request_id": request_id}
            )


class NotificationSweepJob:
    """Runs both notification sweeps in one unit of work."""

    def __init__(self, scope: ServiceScope):
        self.scope = scope

    async def run(self) -> dict:
        with log_latency(logger, "notification_sweep"):
            async with self.scope() as services:
                return await services.notifications.run_sweeps()


async def run_deadline_refresh_once(scope: ServiceScope, batch_size: int = 200) -> dict:
    """Reconcile every request once."""
    return await DeadlineRefreshJob(scope, batch_size).run()


async def run_notification_sweep_once(scope: ServiceScope) -> dict:
    """Run the due-soon and overdue sweeps once."""
    return await NotificationSweepJob(scope).run()
