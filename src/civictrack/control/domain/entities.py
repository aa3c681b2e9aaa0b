"""
Control Domain Entities
=======================

Pure Python domain entities for request control.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from civictrack.config import (
    ControlStatus, NotificationType, Priority, RequestStatus, UserRole
)


@dataclass
class Attachment:
    """Metadata of a file attached to a request; bytes live elsewhere."""

    original_name: str
    stored_name: str
    mime_type: str
    size: int
    id: Optional[int] = None
    request_id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class CitizenRequest:
    """
    Citizen request entity.

    ``control_status`` is a cached derivation of ``due_date``; it is only
    guaranteed fresh as of the last reconciliation.
    """

    # Citizen identity and contact
    citizen_name: str
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    contact_channel: Optional[str] = None

    # Classification references
    request_type_id: Optional[int] = None
    request_topic_id: Optional[int] = None
    social_group_id: Optional[int] = None
    intake_form_id: Optional[int] = None

    # Content and location
    description: Optional[str] = None
    address: Optional[str] = None
    territory: Optional[str] = None

    # Workflow
    status: RequestStatus = RequestStatus.NEW
    priority: Priority = Priority.MEDIUM
    executor: Optional[str] = None
    executor_user_id: Optional[int] = None

    # Deadline control
    due_date: Optional[datetime] = None
    control_status: ControlStatus = ControlStatus.NO

    # Removal from control
    removed_from_control_at: Optional[datetime] = None
    removed_from_control_by: Optional[str] = None
    removed_from_control_by_user_id: Optional[int] = None

    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    attachments: List[Attachment] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        """Check if the request left deadline monitoring for good."""
        return RequestStatus(self.status).is_terminal

    @property
    def is_open(self) -> bool:
        return not self.is_terminal


@dataclass
class Actor:
    """Authenticated user performing an operation."""

    user_id: int
    email: str
    name: str
    role: UserRole

    @property
    def display_name(self) -> str:
        return self.name or self.email


@dataclass
class Recipient:
    """A user that can receive deadline notifications."""

    user_id: int
    email: Optional[str]
    name: str
    role: UserRole = UserRole.EXECUTOR
    is_active: bool = True


@dataclass
class NotificationLedgerEntry:
    """
    Append-only record of a delivered deadline notification.

    The dedup key makes (request, due_soon) and (request, overdue, recipient)
    unique across sweeps.
    """

    request_id: int
    notification_type: NotificationType
    target_user_id: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None

    @property
    def dedup_key(self) -> str:
        return build_dedup_key(self.request_id, self.notification_type, self.target_user_id)


def build_dedup_key(
    request_id: int,
    notification_type: NotificationType,
    target_user_id: Optional[int] = None
) -> str:
    notification_type = NotificationType(notification_type)
    if notification_type == NotificationType.DUE_SOON:
        return f"{request_id}:{notification_type.value}"
    return f"{request_id}:{notification_type.value}:{target_user_id}"


@dataclass(frozen=True)
class AuditEntry:
    """Machine-readable audit record; immutable once written."""

    request_id: int
    action: str
    payload: Dict[str, Any]
    created_at: datetime
    user_id: Optional[int] = None
    entity_type: str = "request"


@dataclass(frozen=True)
class ProceedingEntry:
    """Human-readable timeline note; immutable once written."""

    request_id: int
    action: str
    notes: str
    created_at: datetime
    user_id: Optional[int] = None
