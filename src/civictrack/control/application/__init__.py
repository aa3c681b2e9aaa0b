"""
Control Application Layer
=========================

Application services, DTOs and background jobs for request control.
"""

from civictrack.control.application.audit import (
    AuditLogger,
    AuditTrailSink,
    IMutationSink,
    ProceedingsSink,
)
from civictrack.control.application.dto import (
    AttachmentDTO,
    AttachmentView,
    HealthResponse,
    PageMeta,
    RemoveFromControlDTO,
    RequestCreateDTO,
    RequestListQuery,
    RequestListResponse,
    RequestUpdateDTO,
    RequestView,
)
from civictrack.control.application.interfaces import (
    IAttachmentRepository,
    IAuditRepository,
    IMailer,
    INomenclatureValidator,
    INotificationLedger,
    IRequestRepository,
    IUserDirectory,
    LedgerReservation,
    RequestFilters,
)
from civictrack.control.application.jobs import (
    DeadlineRefreshJob,
    NotificationSweepJob,
    run_deadline_refresh_once,
    run_notification_sweep_once,
)
from civictrack.control.application.notifications import (
    NotificationEngine,
    NotificationMessage,
    NotificationMessageBuilder,
    SweepResult,
)
from civictrack.control.application.services import (
    ControlServices,
    ControlStatusReconciler,
    RequestLifecycleService,
)

__all__ = [
    # Services
    "ControlServices",
    "ControlStatusReconciler",
    "RequestLifecycleService",
    "NotificationEngine",
    "NotificationMessage",
    "NotificationMessageBuilder",
    "SweepResult",
    "AuditLogger",
    "AuditTrailSink",
    "IMutationSink",
    "ProceedingsSink",
    # Jobs
    "DeadlineRefreshJob",
    "NotificationSweepJob",
    "run_deadline_refresh_once",
    "run_notification_sweep_once",
    # Interfaces
    "IAttachmentRepository",
    "IAuditRepository",
    "IMailer",
    "INomenclatureValidator",
    "INotificationLedger",
    "IRequestRepository",
    "IUserDirectory",
    "LedgerReservation",
    "RequestFilters",
    # DTOs
    "AttachmentDTO",
    "AttachmentView",
    "HealthResponse",
    "PageMeta",
    "RemoveFromControlDTO",
    "RequestCreateDTO",
    "RequestListQuery",
    "RequestListResponse",
    "RequestUpdateDTO",
    "RequestView",
]
