"""
Control Service Factory
=======================

Wires repositories, the notification engine and the lifecycle service
around one database session.
"""

from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncGenerator, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.config import Settings, settings
from civictrack.control.application import (
    AuditLogger,
    ControlServices,
    ControlStatusReconciler,
    IMailer,
    NotificationEngine,
    NotificationMessageBuilder,
    RequestLifecycleService,
)
from civictrack.control.application.notifications import Clock, utc_now
from civictrack.control.domain import ControlStatusCalculator
from civictrack.control.infrastructure.repositories import (
    SQLAlchemyAttachmentRepository,
    SQLAlchemyAuditRepository,
    SQLAlchemyNomenclatureValidator,
    SQLAlchemyNotificationLedger,
    SQLAlchemyRequestRepository,
    SQLAlchemyUserDirectory,
)
from civictrack.infrastructure.database import get_session_context

SessionContext = Callable[[], AsyncContextManager[AsyncSession]]


class ControlServiceFactory:
    """Builds a ``ControlServices`` bundle per unit of work."""

    def __init__(
        self,
        mailer: IMailer,
        config: Settings = settings,
        session_context: SessionContext = get_session_context,
        clock: Clock = utc_now
    ):
        self.mailer = mailer
        self.config = config
        self.session_context = session_context
        self.clock = clock
        self.calculator = ControlStatusCalculator(config.deadline_approaching_threshold_hours)
        self.message_builder = NotificationMessageBuilder(config.public_base_url)

    def build(self, session: AsyncSession) -> ControlServices:
        requests = SQLAlchemyRequestRepository(session)
        users = SQLAlchemyUserDirectory(session)

        notifications = NotificationEngine(
            requests=requests,
            ledger=SQLAlchemyNotificationLedger(session),
            users=users,
            mailer=self.mailer,
            message_builder=self.message_builder,
            due_soon_window_hours=self.config.notification_hours_before_deadline,
            clock=self.clock,
        )
        reconciler = ControlStatusReconciler(
            requests, self.calculator, notifications, clock=self.clock
        )
        lifecycle = RequestLifecycleService(
            requests=requests,
            attachments=SQLAlchemyAttachmentRepository(session),
            nomenclature=SQLAlchemyNomenclatureValidator(session),
            users=users,
            audit_logger=AuditLogger.for_repository(SQLAlchemyAuditRepository(session)),
            notifier=notifications,
            reconciler=reconciler,
            calculator=self.calculator,
            max_attachments=self.config.max_attachments,
            max_page_size=self.config.list_max_page_size,
            clock=self.clock,
        )
        return ControlServices(
            requests=requests,
            lifecycle=lifecycle,
            reconciler=reconciler,
            notifications=notifications,
        )

    @asynccontextmanager
    async def scope(self) -> AsyncGenerator[ControlServices, None]:
        """One session, committed on success and rolled back on error."""
        async with self.session_context() as session:
            yield self.build(session)
