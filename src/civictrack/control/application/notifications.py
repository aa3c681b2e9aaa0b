"""
Deadline Notification Engine
============================

Decides who must hear about a deadline and makes sure they hear only once.

Two rules, both enforced through the notification ledger:
- due soon: the assigned executor, once per request
- overdue: every active supervisor/admin, once per (request, recipient)

A ledger slot is reserved atomically before the e-mail goes out and released
again if the send fails, so a failed delivery is retried by the next sweep.
"""

import html
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from civictrack.config import NotificationType
from civictrack.control.application.interfaces import (
    IMailer,
    INotificationLedger,
    IRequestRepository,
    IUserDirectory,
)
from civictrack.control.domain import (
    Actor,
    CitizenRequest,
    NotificationLedgerEntry,
    Recipient,
    ensure_aware,
)
from civictrack.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class NotificationMessage:
    subject: str
    body_text: str
    body_html: str


@dataclass
class SweepResult:
    """Counters of one notification sweep."""
    candidates: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {
            "candidates": self.candidates,
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": self.failed,
        }


class NotificationMessageBuilder:
    """Renders deadline e-mails as plain text and HTML."""

    _HEADLINES = {
        NotificationType.DUE_SOON: (
            "Due Date Approaching",
            "The deadline of a request assigned to you is approaching.",
        ),
        NotificationType.OVERDUE: (
            "OVERDUE - Escalation Required",
            "A request has passed its deadline and needs supervisor attention.",
        ),
    }

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def request_link(self, request_id: int) -> str:
        return f"{self.base_url}/requests/{request_id}"

    def build(self, request: CitizenRequest, notification_type: NotificationType) -> NotificationMessage:
        title, lead = self._HEADLINES[NotificationType(notification_type)]
        return self._render(request, f"Request #{request.id}: {title}", lead)

    def build_removed_from_control(
        self,
        request: CitizenRequest,
        removed_by: str,
        note: Optional[str] = None
    ) -> NotificationMessage:
        lead = f"Your request has been removed from control by {removed_by}."
        if note:
            lead += f" Note: {note}"
        return self._render(request, f"Request #{request.id}: Removed from Control", lead)

    def _render(self, request: CitizenRequest, subject: str, lead: str) -> NotificationMessage:
        due = request.due_date.isoformat() if request.due_date else "not set"
        link = self.request_link(request.id)
        description = request.description or ""

        body_text = "\n".join([
            lead,
            "",
            f"Request: #{request.id}",
            f"Citizen: {request.citizen_name}",
            f"Due date: {due}",
            f"Description: {description}",
            "",
            f"Open: {link}",
        ])

        esc = html.escape
        body_html = (
            f"<p>{esc(lead)}</p>"
            "<ul>"
            f"<li><strong>Request:</strong> #{request.id}</li>"
            f"<li><strong>Citizen:</strong> {esc(request.citizen_name)}</li>"
            f"<li><strong>Due date:</strong> {esc(due)}</li>"
            f"<li><strong>Description:</strong> {esc(description)}</li>"
            "</ul>"
            f'<p><a href="{esc(link, quote=True)}">Open request</a></p>'
        )
        return NotificationMessage(subject=subject, body_text=body_text, body_html=body_html)


class NotificationEngine:
    """
    Due-soon and overdue notification rules.

    Every public entry point swallows and logs delivery problems: a
    notification failure must never fail the mutation that triggered it.
    """

    def __init__(
        self,
        requests: IRequestRepository,
        ledger: INotificationLedger,
        users: IUserDirectory,
        mailer: IMailer,
        message_builder: NotificationMessageBuilder,
        due_soon_window_hours: int = 48,
        clock: Clock = utc_now
    ):
        self.requests = requests
        self.ledger = ledger
        self.users = users
        self.mailer = mailer
        self.message_builder = message_builder
        self.due_soon_window = timedelta(hours=due_soon_window_hours)
        self.clock = clock

    # ========== Sweeps ==========

    async def run_due_soon_sweep(self) -> SweepResult:
        """E-mail executors of open requests entering the due-soon window."""
        now = self.clock()
        result = SweepResult()
        candidates = await self.requests.list_due_soon_candidates(now, now + self.due_soon_window)
        result.candidates = len(candidates)

        for request in candidates:
            await self._send_due_soon(request, result)

        logger.info("Due-soon sweep finished", extra={"sweep": "due_soon", **result.to_dict()})
        return result

    async def run_overdue_sweep(self) -> SweepResult:
        """Escalate overdue open requests to every active supervisor/admin."""
        now = self.clock()
        result = SweepResult()
        recipients = await self._escalation_recipients()
        if not recipients:
            logger.warning("No active supervisors or admins to escalate overdue requests to")
            return result

        candidates = await self.requests.list_overdue_candidates(
            now, [r.user_id for r in recipients]
        )
        result.candidates = len(candidates)

        for request in candidates:
            await self._send_overdue(request, recipients, result)

        logger.info("Overdue sweep finished", extra={"sweep": "overdue", **result.to_dict()})
        return result

    async def run_sweeps(self) -> dict:
        due_soon = await self.run_due_soon_sweep()
        overdue = await self.run_overdue_sweep()
        return {"due_soon": due_soon.to_dict(), "overdue": overdue.to_dict()}

    # ========== Targeted trigger ==========

    async def notify_request(self, request: CitizenRequest) -> int:
        """
        Apply the due-soon and overdue rules to a single request.

        Returns the number of e-mails sent. Never raises.
        """
        if request.id is None or request.is_terminal or request.due_date is None:
            return 0

        result = SweepResult(candidates=1)
        try:
            now = self.clock()
            due = ensure_aware(request.due_date)
            if now < due <= now + self.due_soon_window:
                await self._send_due_soon(request, result)
            elif due < now:
                recipients = await self._escalation_recipients()
                await self._send_overdue(request, recipients, result)
        except Exception:
            logger.exception(
                "Targeted notification failed",
                extra={"request_id": request.id}
            )
            return 0
        return result.sent

    async def notify_removed_from_control(
        self,
        request: CitizenRequest,
        actor: Actor,
        note: Optional[str] = None
    ) -> bool:
        """Tell the citizen the request left control. Best effort, not ledgered."""
        if not request.contact_email:
            return False

        message = self.message_builder.build_removed_from_control(
            request, actor.display_name, note
        )
        try:
            sent = await self.mailer.send(
                request.contact_email, message.subject, message.body_text, message.body_html
            )
        except Exception:
            logger.exception(
                "Removal notice failed",
                extra={"request_id": request.id}
            )
            return False

        if not sent:
            logger.warning("Removal notice not delivered", extra={"request_id": request.id})
        return sent

    # ========== Internals ==========

    async def _escalation_recipients(self) -> List[Recipient]:
        return [r for r in await self.users.list_escalation_recipients() if r.is_active]

    async def _send_due_soon(self, request: CitizenRequest, result: SweepResult) -> None:
        if request.executor_user_id is None:
            logger.info("Due-soon skipped: no executor", extra={"request_id": request.id})
            result.skipped += 1
            return

        try:
            executor = await self.users.get_user(request.executor_user_id)
        except Exception:
            logger.exception("Executor lookup failed", extra={"request_id": request.id})
            result.failed += 1
            return

        if executor is None or not executor.email:
            logger.info(
                "Due-soon skipped: executor has no e-mail",
                extra={"request_id": request.id, "executor_user_id": request.executor_user_id}
            )
            result.skipped += 1
            return

        await self._deliver(request, NotificationType.DUE_SOON, executor, result)

    async def _send_overdue(
        self,
        request: CitizenRequest,
        recipients: List[Recipient],
        result: SweepResult
    ) -> None:
        for recipient in recipients:
            if not recipient.email:
                result.skipped += 1
                continue
            await self._deliver(request, NotificationType.OVERDUE, recipient, result)

    async def _deliver(
        self,
        request: CitizenRequest,
        notification_type: NotificationType,
        recipient: Recipient,
        result: SweepResult
    ) -> None:
        entry = NotificationLedgerEntry(
            request_id=request.id,
            notification_type=notification_type,
            target_user_id=recipient.user_id,
            created_at=self.clock(),
        )
        log_extra = {
            "request_id": request.id,
            "notification_type": notification_type.value,
            "recipient_user_id": recipient.user_id,
        }

        try:
            reservation = await self.ledger.reserve(entry)
        except Exception:
            logger.exception("Ledger reservation failed", extra=log_extra)
            result.failed += 1
            return

        if reservation is None:
            logger.debug("Already notified", extra=log_extra)
            result.skipped += 1
            return

        message = self.message_builder.build(request, notification_type)
        try:
            sent = await self.mailer.send(
                recipient.email, message.subject, message.body_text, message.body_html
            )
        except Exception:
            logger.exception("Notification send raised", extra=log_extra)
            sent = False

        if not sent:
            await reservation.release()
            logger.warning("Notification not delivered, will retry", extra=log_extra)
            result.failed += 1
            return

        await reservation.confirm()
        logger.info("Notification sent", extra=log_extra)
        result.sent += 1
