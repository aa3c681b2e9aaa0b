"""
Control External Service Integrations
=====================================

External services for deadline control:
- SMTP e-mail delivery (with circuit breaker and retry)
- Log-only mailer for environments without SMTP
- APScheduler for the recurring deadline jobs
"""

import asyncio
import smtplib
import time
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from civictrack.config import Settings, settings
from civictrack.control.application.interfaces import IMailer
from civictrack.core import ConfigurationException, NotificationDeliveryException
from civictrack.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

JobFunc = Callable[[], Awaitable[object]]


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, sends pass through
    - OPEN: After N failures, reject all sends for M seconds
    - HALF_OPEN: After timeout, allow one test send
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class SMTPMailer(IMailer):
    """
    SMTP mailer.

    smtplib is blocking, so each send runs in a worker thread. Failed sends
    are retried with exponential backoff; repeated failures open the circuit.
    """

    def __init__(self, config: Settings = settings):
        if not config.smtp_host:
            raise ConfigurationException("SMTPMailer requires SMTP_HOST")
        self.config = config
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)

    def _build_message(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: Optional[str]
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["To"] = recipient
        msg["From"] = self.config.smtp_from_email
        msg["Subject"] = subject
        msg.attach(MIMEText(body_text, "plain", "utf-8"))
        if body_html:
            msg.attach(MIMEText(body_html, "html", "utf-8"))
        return msg

    def _send_sync(self, msg: MIMEMultipart) -> None:
        try:
            with smtplib.SMTP(
                self.config.smtp_host,
                self.config.smtp_port,
                timeout=self.config.smtp_timeout_seconds
            ) as server:
                if self.config.smtp_use_tls:
                    server.starttls()
                if self.config.smtp_user and self.config.smtp_password:
                    server.login(self.config.smtp_user, self.config.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationDeliveryException(str(e), {"to": msg["To"]}) from e

    async def send(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: Optional[str] = None
    ) -> bool:
        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping e-mail",
                extra={"recipient": recipient}
            )
            return False

        msg = self._build_message(recipient, subject, body_text, body_html)
        max_retries = self.config.smtp_max_retries

        for attempt in range(max_retries):
            try:
                await asyncio.to_thread(self._send_sync, msg)
                self._circuit_breaker.record_success()
                logger.info(
                    "E-mail sent",
                    extra={"recipient": recipient, "subject": subject}
                )
                return True
            except NotificationDeliveryException as e:
                logger.error(
                    "E-mail delivery failed",
                    extra={
                        "error": str(e),
                        "attempt": attempt + 1,
                        "recipient": recipient
                    }
                )

            if attempt < max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        return False


class LoggingMailer(IMailer):
    """Writes messages to the log instead of sending them (no SMTP configured)."""

    async def send(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: Optional[str] = None
    ) -> bool:
        logger.info(
            "E-mail not sent: SMTP is not configured",
            extra={"recipient": recipient, "subject": subject}
        )
        return True


def build_mailer(config: Settings = settings) -> IMailer:
    if config.smtp_host:
        return SMTPMailer(config)
    logger.warning("SMTP_HOST not set, e-mails will only be logged")
    return LoggingMailer()


class DeadlineScheduler:
    """
    Wrapper for APScheduler running the recurring deadline jobs.

    Constructed once at startup; ``start`` is idempotent.
    """

    def __init__(
        self,
        refresh_job: JobFunc,
        notification_job: JobFunc,
        refresh_cron: str = settings.deadline_refresh_cron,
        notification_cron: str = settings.notification_cron,
        timezone: str = "UTC"
    ):
        self.refresh_job = refresh_job
        self.notification_job = notification_job
        self.refresh_cron = refresh_cron
        self.notification_cron = notification_cron
        self.timezone = timezone
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self) -> None:
        """Start the scheduler and register both jobs."""
        if self._running:
            logger.warning("Deadline scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(timezone=self.timezone)

        self._scheduler.add_job(
            self.refresh_job,
            CronTrigger.from_crontab(self.refresh_cron, timezone=self.timezone),
            id="deadline_refresh",
            name="Deadline Refresh Job",
            misfire_grace_time=300,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.add_job(
            self.notification_job,
            CronTrigger.from_crontab(self.notification_cron, timezone=self.timezone),
            id="deadline_notifications",
            name="Deadline Notification Job",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Deadline scheduler started",
            extra={
                "refresh_cron": self.refresh_cron,
                "notification_cron": self.notification_cron
            }
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Deadline scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def job_ids(self) -> list:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]
