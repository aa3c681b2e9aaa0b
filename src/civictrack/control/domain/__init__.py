"""
Control Domain Layer
====================

Domain layer for request control.

Contains:
- Entities: CitizenRequest, Attachment, Actor, Recipient, ledger and audit records
- Value Objects & Domain Services: ControlStatusCalculator, WorkflowPolicy, MutationEvent

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from civictrack.control.domain.entities import (
    Actor,
    Attachment,
    AuditEntry,
    CitizenRequest,
    NotificationLedgerEntry,
    ProceedingEntry,
    Recipient,
    build_dedup_key,
)
from civictrack.control.domain.value_objects import (
    ControlStatusCalculator,
    MutationEvent,
    WorkflowPolicy,
    ensure_aware,
    parse_due_date,
)

__all__ = [
    # Entities
    "Actor",
    "Attachment",
    "AuditEntry",
    "CitizenRequest",
    "NotificationLedgerEntry",
    "ProceedingEntry",
    "Recipient",
    "build_dedup_key",
    # Value Objects & Services
    "ControlStatusCalculator",
    "MutationEvent",
    "WorkflowPolicy",
    "ensure_aware",
    "parse_due_date",
]
