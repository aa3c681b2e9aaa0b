"""
Control Infrastructure Layer
============================

Infrastructure implementations for request control:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- External: SMTP mailer, scheduler
- Factory: per-session service wiring
"""

from civictrack.control.infrastructure.external import (
    CircuitBreaker,
    DeadlineScheduler,
    LoggingMailer,
    SMTPMailer,
    build_mailer,
)
from civictrack.control.infrastructure.factory import ControlServiceFactory
from civictrack.control.infrastructure.models import (
    AttachmentModel,
    AuditLogModel,
    NomenclatureModel,
    NotificationLedgerModel,
    ProceedingModel,
    RequestModel,
    UserModel,
)
from civictrack.control.infrastructure.repositories import (
    SQLAlchemyAttachmentRepository,
    SQLAlchemyAuditRepository,
    SQLAlchemyNomenclatureValidator,
    SQLAlchemyNotificationLedger,
    SQLAlchemyRequestRepository,
    SQLAlchemyUserDirectory,
)

__all__ = [
    "AttachmentModel",
    "AuditLogModel",
    "NomenclatureModel",
    "NotificationLedgerModel",
    "ProceedingModel",
    "RequestModel",
    "UserModel",
    "SQLAlchemyAttachmentRepository",
    "SQLAlchemyAuditRepository",
    "SQLAlchemyNomenclatureValidator",
    "SQLAlchemyNotificationLedger",
    "SQLAlchemyRequestRepository",
    "SQLAlchemyUserDirectory",
    "CircuitBreaker",
    "DeadlineScheduler",
    "LoggingMailer",
    "SMTPMailer",
    "build_mailer",
    "ControlServiceFactory",
]
