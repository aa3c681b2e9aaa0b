"""
Control Infrastructure Models
=============================

SQLAlchemy ORM models for the control module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column

from civictrack.config import ControlStatus, Priority, RequestStatus, UserRole
from civictrack.infrastructure.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NomenclatureModel(Base):
    """
    Reference records: request types, topics, social groups, intake forms.

    Maps to the 'nomenclature' table.
    """
    __tablename__ = "nomenclature"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("kind", "code", name="uq_nomenclature_kind_code"),
    )


class UserModel(Base):
    """
    System users (executors, supervisors, admins, operators).

    Maps to the 'users' table.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(String(32), nullable=False, default=UserRole.EXECUTOR, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class RequestModel(Base):
    """
    Database model for CitizenRequest entity.

    Maps to the 'requests' table.
    """
    __tablename__ = "requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Citizen
    citizen_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_channel: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Classification
    request_type_id: Mapped[Optional[int]] = mapped_column(ForeignKey("nomenclature.id"), nullable=True)
    request_topic_id: Mapped[Optional[int]] = mapped_column(ForeignKey("nomenclature.id"), nullable=True)
    social_group_id: Mapped[Optional[int]] = mapped_column(ForeignKey("nomenclature.id"), nullable=True)
    intake_form_id: Mapped[Optional[int]] = mapped_column(ForeignKey("nomenclature.id"), nullable=True)

    # Content
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    territory: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Workflow
    status: Mapped[RequestStatus] = mapped_column(String(32), nullable=False, default=RequestStatus.NEW, index=True)
    priority: Mapped[Priority] = mapped_column(String(16), nullable=False, default=Priority.MEDIUM)
    executor: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    executor_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    # Deadline control
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    control_status: Mapped[ControlStatus] = mapped_column(String(16), nullable=False, default=ControlStatus.NO, index=True)

    # Removal from control
    removed_from_control_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    removed_from_control_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    removed_from_control_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AttachmentModel(Base):
    """
    Attachment metadata; file bytes are stored outside the database.

    Maps to the 'request_attachments' table.
    """
    __tablename__ = "request_attachments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[int] = mapped_column(ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    stored_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(127), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class NotificationLedgerModel(Base):
    """
    Append-only ledger of delivered deadline notifications.

    Maps to the 'deadline_notifications' table. ``dedup_key`` is unique:
    '<request>:due_soon' or '<request>:overdue:<recipient>'.
    """
    __tablename__ = "deadline_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[int] = mapped_column(ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    notification_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    dedup_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AuditLogModel(Base):
    """
    Structured audit trail.

    Maps to the 'audit_log' table.
    """
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False, default="request")
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ProceedingModel(Base):
    """
    Human-readable timeline of a request.

    Maps to the 'request_proceedings' table.
    """
    __tablename__ = "request_proceedings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[int] = mapped_column(ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
