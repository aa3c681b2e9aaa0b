"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="civictrack", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)
    public_base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL used for links in notification e-mails"
    )

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/civictrack",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Deadline control ==========
    deadline_approaching_threshold_hours: int = Field(
        default=48,
        description="Hours before the due date at which a request becomes 'approaching'",
        ge=1
    )
    notification_hours_before_deadline: int = Field(
        default=48,
        description="Width of the due-soon notification window in hours",
        ge=1
    )
    max_attachments: int = Field(default=5, description="Attachment ceiling per request", ge=0)
    max_note_length: int = Field(default=1000, description="Max remove-from-control note length", ge=1)
    list_max_page_size: int = Field(default=100, description="Upper bound for list page size", ge=1)

    # ========== Scheduler ==========
    scheduler_enabled: bool = Field(default=True, description="Run recurring background jobs")
    deadline_refresh_cron: str = Field(
        default="0 3 * * *",
        description="Crontab expression for the control status reconciliation sweep"
    )
    notification_cron: str = Field(
        default="*/15 * * * *",
        description="Crontab expression for the due-soon/overdue notification sweeps"
    )
    reconciliation_batch_size: int = Field(
        default=200,
        description="Rows fetched per batch while streaming requests",
        ge=1
    )

    # ========== SMTP ==========
    smtp_host: Optional[str] = Field(default=None, description="SMTP server host")
    smtp_port: int = Field(default=587, description="SMTP server port", ge=1, le=65535)
    smtp_user: Optional[str] = Field(default=None, description="SMTP username")
    smtp_password: Optional[str] = Field(default=None, description="SMTP password")
    smtp_use_tls: bool = Field(default=True, description="Use STARTTLS")
    smtp_from_email: str = Field(
        default="no-reply@civictrack.local",
        description="Sender address for notifications"
    )
    smtp_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for SMTP calls",
        ge=0.1,
        le=120
    )
    smtp_max_retries: int = Field(default=2, description="Send attempts per message", ge=1, le=10)

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "test", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class RequestStatus(str, Enum):
    """Workflow statuses of a citizen request."""
    NEW = "new"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"
    REMOVED = "removed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class Priority(str, Enum):
    """Request priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ControlStatus(str, Enum):
    """Deadline health derived from the due date."""
    NO = "no"
    NORMAL = "normal"
    APPROACHING = "approaching"
    OVERDUE = "overdue"


class NotificationType(str, Enum):
    """Ledgered deadline notification kinds."""
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"


class UserRole(str, Enum):
    """Roles of system users."""
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    OPERATOR = "operator"
    EXECUTOR = "executor"
    CITIZEN = "citizen"


class NomenclatureKind(str, Enum):
    """Reference tables a request may point into."""
    REQUEST_TYPE = "request_type"
    TOPIC = "topic"
    SOCIAL_GROUP = "social_group"
    INTAKE_FORM = "intake_form"


class AuditAction(str, Enum):
    """Action tags written to the audit trail and proceedings."""
    CREATE = "create"
    UPDATE = "update"
    REMOVE_FROM_CONTROL = "remove_from_control"


# ========== Lists for validation ==========

TERMINAL_STATUSES = frozenset({
    RequestStatus.COMPLETED, RequestStatus.ARCHIVED,
    RequestStatus.CANCELLED, RequestStatus.REMOVED
})
OPEN_STATUSES = [s for s in RequestStatus if s not in TERMINAL_STATUSES]
ALERTING_CONTROL_STATUSES = frozenset({ControlStatus.APPROACHING, ControlStatus.OVERDUE})
ESCALATION_ROLES = [UserRole.SUPERVISOR, UserRole.ADMIN]
CONTROL_MANAGER_ROLES = [UserRole.ADMIN, UserRole.SUPERVISOR, UserRole.OPERATOR]
