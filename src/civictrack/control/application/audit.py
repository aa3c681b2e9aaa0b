"""
Audit and Proceedings Logging
=============================

One mutation event fans out to two independent sinks:
- the audit trail (structured payload)
- the proceedings timeline (human-readable note)

A sink failure is logged and never unwinds the mutation it describes.
"""

from abc import ABC, abstractmethod
from typing import List

from civictrack.control.application.interfaces import IAuditRepository
from civictrack.control.domain import AuditEntry, MutationEvent, ProceedingEntry
from civictrack.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class IMutationSink(ABC):
    """Destination for mutation events."""

    name: str = "sink"

    @abstractmethod
    async def write(self, event: MutationEvent) -> None:
        """Persist the event."""


class AuditTrailSink(IMutationSink):
    name = "audit_log"

    def __init__(self, repository: IAuditRepository):
        self.repository = repository

    async def write(self, event: MutationEvent) -> None:
        await self.repository.add_audit_entry(AuditEntry(
            request_id=event.request_id,
            action=event.action,
            payload=event.payload,
            created_at=event.occurred_at,
            user_id=event.actor_id,
        ))


class ProceedingsSink(IMutationSink):
    name = "proceedings"

    def __init__(self, repository: IAuditRepository):
        self.repository = repository

    async def write(self, event: MutationEvent) -> None:
        await self.repository.add_proceeding(ProceedingEntry(
            request_id=event.request_id,
            action=event.action,
            notes=event.summary,
            created_at=event.occurred_at,
            user_id=event.actor_id,
        ))


class AuditLogger:
    """Delivers mutation events to every configured sink."""

    def __init__(self, sinks: List[IMutationSink]):
        self.sinks = sinks

    @classmethod
    def for_repository(cls, repository: IAuditRepository) -> "AuditLogger":
        return cls([AuditTrailSink(repository), ProceedingsSink(repository)])

    async def log_mutation(self, event: MutationEvent) -> bool:
        """
        Write ``event`` to all sinks.

        Returns:
            True if every sink succeeded
        """
        ok = True
        for sink in self.sinks:
            try:
                await sink.write(event)
            except Exception:
                ok = False
                logger.exception(
                    "Mutation sink failed",
                    extra={
                        "sink": sink.name,
                        "request_id": event.request_id,
                        "action": event.action,
                    }
                )
        return ok
