"""
Control Application Interfaces
==============================

Abstractions the application layer depends on (Dependency Inversion).
Concrete SQLAlchemy/SMTP implementations live in the infrastructure layer.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from civictrack.config import ControlStatus, NomenclatureKind
from civictrack.control.domain import (
    Attachment,
    AuditEntry,
    CitizenRequest,
    NotificationLedgerEntry,
    ProceedingEntry,
    Recipient,
)


@dataclass
class RequestFilters:
    """Filter set for listing requests. ``None`` means "no constraint"."""
    citizen_name: Optional[str] = None
    request_type_id: Optional[int] = None
    request_topic_id: Optional[int] = None
    social_group_id: Optional[int] = None
    intake_form_id: Optional[int] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    control_status: Optional[str] = None
    executor_user_id: Optional[int] = None
    address: Optional[str] = None
    territory: Optional[str] = None
    due_from: Optional[datetime] = None
    due_to: Optional[datetime] = None
    search: Optional[str] = None


# ========== Repository Interfaces ==========

class IRequestRepository(ABC):
    """Interface for request data access."""

    @abstractmethod
    async def get_by_id(self, request_id: int) -> Optional[CitizenRequest]:
        """Get request by ID."""

    @abstractmethod
    async def create(self, request: CitizenRequest) -> CitizenRequest:
        """Persist a new request and return it with its generated ID."""

    @abstractmethod
    async def update(self, request_id: int, changes: Dict[str, Any]) -> CitizenRequest:
        """Apply field changes to an existing request."""

    @abstractmethod
    async def set_control_status(self, request_id: int, control_status: ControlStatus) -> None:
        """Overwrite only the cached control status."""

    @abstractmethod
    async def list(
        self,
        filters: RequestFilters,
        limit: int = 20,
        offset: int = 0,
        sort_by: str = "created_at",
        sort_order: str = "desc"
    ) -> Tuple[List[CitizenRequest], int]:
        """List requests with filters. Returns (rows, total)."""

    @abstractmethod
    async def list_ids_after(self, last_id: Optional[int], limit: int) -> List[int]:
        """Keyset page of request IDs in ascending order."""

    @abstractmethod
    async def list_due_soon_candidates(
        self,
        now: datetime,
        window_end: datetime
    ) -> List[CitizenRequest]:
        """Open requests due in (now, window_end] without a due_soon ledger entry."""

    @abstractmethod
    async def list_overdue_candidates(
        self,
        now: datetime,
        recipient_ids: Sequence[int]
    ) -> List[CitizenRequest]:
        """Open requests due before now missing an overdue entry for some recipient."""


class IAttachmentRepository(ABC):
    """Interface for attachment metadata."""

    @abstractmethod
    async def count_for_request(self, request_id: int) -> int:
        """Number of attachments stored for a request."""

    @abstractmethod
    async def add_many(self, request_id: int, attachments: List[Attachment]) -> List[Attachment]:
        """Persist attachment metadata."""

    @abstractmethod
    async def list_for_request(self, request_id: int) -> List[Attachment]:
        """Attachments of a request, oldest first."""


class LedgerReservation(ABC):
    """
    A claimed ledger slot that is not yet durable.

    ``confirm`` keeps the entry, ``release`` drops it so a later sweep can retry.
    """

    @abstractmethod
    async def confirm(self) -> None:
        """Keep the reserved entry."""

    @abstractmethod
    async def release(self) -> None:
        """Discard the reserved entry."""


class INotificationLedger(ABC):
    """Interface for the append-only notification dedup ledger."""

    @abstractmethod
    async def reserve(self, entry: NotificationLedgerEntry) -> Optional[LedgerReservation]:
        """
        Atomically check-and-insert ``entry``.

        Returns None when an entry with the same dedup key already exists.
        """


class IAuditRepository(ABC):
    """Interface for the audit trail and the proceedings timeline."""

    @abstractmethod
    async def add_audit_entry(self, entry: AuditEntry) -> None:
        """Append a structured audit record."""

    @abstractmethod
    async def add_proceeding(self, entry: ProceedingEntry) -> None:
        """Append a human-readable proceeding note."""


# ========== Collaborator Interfaces ==========

class INomenclatureValidator(ABC):
    """Reference-validation service for classification foreign keys."""

    @abstractmethod
    async def is_active_reference(self, kind: NomenclatureKind, reference_id: int) -> bool:
        """Does reference ``reference_id`` of ``kind`` exist and is it active."""


class IUserDirectory(ABC):
    """Lookup of users acting as executors and escalation recipients."""

    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[Recipient]:
        """Get user by ID."""

    @abstractmethod
    async def list_escalation_recipients(self) -> List[Recipient]:
        """Active supervisors and admins."""


class IMailer(ABC):
    """E-mail primitive."""

    @abstractmethod
    async def send(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: Optional[str] = None
    ) -> bool:
        """Send one message. Returns True on success, False on failure."""
