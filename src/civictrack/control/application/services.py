"""
Control Application Services
============================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: lifecycle mutations, lazy reconciliation and
  notifications live in separate services
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic_core import to_jsonable_python

from civictrack.config import (
    ALERTING_CONTROL_STATUSES,
    AuditAction,
    ControlStatus,
    NomenclatureKind,
    Priority,
    RequestStatus,
    settings,
)
from civictrack.control.application.audit import AuditLogger
from civictrack.control.application.dto import (
    AttachmentDTO,
    PageMeta,
    RequestCreateDTO,
    RequestListQuery,
    RequestListResponse,
    RequestUpdateDTO,
    RequestView,
)
from civictrack.control.application.interfaces import (
    IAttachmentRepository,
    INomenclatureValidator,
    IRequestRepository,
    IUserDirectory,
    RequestFilters,
)
from civictrack.control.application.notifications import (
    Clock,
    NotificationEngine,
    utc_now,
)
from civictrack.control.domain import (
    Actor,
    CitizenRequest,
    ControlStatusCalculator,
    MutationEvent,
    Recipient,
    WorkflowPolicy,
    parse_due_date,
)
from civictrack.core import (
    InvalidReferenceException,
    ResourceLimitException,
    ResourceNotFoundException,
    ValidationException,
)
from civictrack.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

_REFERENCE_FIELDS = {
    "request_type_id": NomenclatureKind.REQUEST_TYPE,
    "request_topic_id": NomenclatureKind.TOPIC,
    "social_group_id": NomenclatureKind.SOCIAL_GROUP,
    "intake_form_id": NomenclatureKind.INTAKE_FORM,
}

# Fields that cannot be cleared through a patch
_NON_NULLABLE_FIELDS = ("status", "priority")


class ControlStatusReconciler:
    """
    Lazy write-on-read reconciliation of the cached control status.

    Terminal requests are frozen and left untouched.
    """

    def __init__(
        self,
        requests: IRequestRepository,
        calculator: ControlStatusCalculator,
        notifier: NotificationEngine,
        clock: Clock = utc_now
    ):
        self.requests = requests
        self.calculator = calculator
        self.notifier = notifier
        self.clock = clock

    async def ensure_control_status(self, request: CitizenRequest) -> CitizenRequest:
        if request.id is None or request.is_terminal:
            return request

        fresh = self.calculator.calculate(request.due_date, self.clock())
        if fresh == request.control_status:
            return request

        previous = request.control_status
        await self.requests.set_control_status(request.id, fresh)
        request.control_status = fresh
        logger.info(
            "Control status changed",
            extra={
                "request_id": request.id,
                "previous_control_status": ControlStatus(previous).value,
                "control_status": fresh.value,
            }
        )

        if fresh in ALERTING_CONTROL_STATUSES:
            await self.notifier.notify_request(request)
        return request


class RequestLifecycleService:
    """
    Create, update, read and remove-from-control operations on requests.

    Every successful mutation writes one audit/proceedings event.
    """

    def __init__(
        self,
        requests: IRequestRepository,
        attachments: IAttachmentRepository,
        nomenclature: INomenclatureValidator,
        users: IUserDirectory,
        audit_logger: AuditLogger,
        notifier: NotificationEngine,
        reconciler: ControlStatusReconciler,
        calculator: ControlStatusCalculator,
        max_attachments: int = settings.max_attachments,
        max_page_size: int = settings.list_max_page_size,
        clock: Clock = utc_now
    ):
        self.requests = requests
        self.attachments = attachments
        self.nomenclature = nomenclature
        self.users = users
        self.audit_logger = audit_logger
        self.notifier = notifier
        self.reconciler = reconciler
        self.calculator = calculator
        self.max_attachments = max_attachments
        self.max_page_size = max_page_size
        self.clock = clock

    # ========== Commands ==========

    async def create(
        self,
        payload: RequestCreateDTO,
        attachments: Optional[List[AttachmentDTO]] = None,
        actor: Optional[Actor] = None
    ) -> RequestView:
        """
        Register a new request.

        Raises:
            ValidationException: On a bad status or due date
            InvalidReferenceException: On a missing or inactive reference
            ResourceLimitException: On too many attachments
        """
        files = payload.attachments if attachments is None else attachments
        fields = payload.model_dump(exclude={"attachments"})

        status = WorkflowPolicy.parse_status(fields["status"])
        WorkflowPolicy.ensure_valid_initial_status(status)
        due_date = parse_due_date(fields["due_date"])

        executor = await self._validate_references(fields)
        if executor is not None and not fields.get("executor"):
            fields["executor"] = executor.name

        if len(files) > self.max_attachments:
            raise ResourceLimitException("Attachment", self.max_attachments)

        now = self.clock()
        request = CitizenRequest(
            **{
                **fields,
                "status": status,
                "priority": Priority(fields["priority"]),
                "due_date": due_date,
                "control_status": self.calculator.calculate(due_date, now),
                "created_at": now,
                "updated_at": now,
            }
        )
        created = await self.requests.create(request)

        if files:
            created.attachments = await self.attachments.add_many(
                created.id, [f.to_domain() for f in files]
            )

        await self.audit_logger.log_mutation(MutationEvent(
            request_id=created.id,
            action=AuditAction.CREATE.value,
            summary="Request created",
            payload=to_jsonable_python({
                **fields,
                "status": status,
                "due_date": due_date,
                "control_status": created.control_status,
                "attachments": len(files),
            }),
            actor_id=actor.user_id if actor else None,
            occurred_at=now,
        ))

        logger.info(
            "Request created",
            extra={
                "request_id": created.id,
                "status": status.value,
                "control_status": ControlStatus(created.control_status).value,
            }
        )

        if created.is_open and created.control_status in ALERTING_CONTROL_STATUSES:
            await self.notifier.notify_request(created)

        return RequestView.from_entity(created)

    async def update(
        self,
        request_id: int,
        patch: RequestUpdateDTO,
        attachments: Optional[List[AttachmentDTO]] = None,
        actor: Optional[Actor] = None
    ) -> Optional[RequestView]:
        """
        Patch an existing request.

        Returns:
            The updated view, or None if the request does not exist
        """
        existing = await self.requests.get_by_id(request_id)
        if existing is None:
            return None

        files = patch.attachments if attachments is None else attachments
        changes = patch.changes()

        for name in _NON_NULLABLE_FIELDS:
            if name in changes and changes[name] is None:
                del changes[name]
        if "citizen_name" in changes and not changes["citizen_name"]:
            raise ValidationException("citizen_name cannot be empty", {"field": "citizen_name"})

        if "status" in changes:
            target = WorkflowPolicy.parse_status(changes["status"])
            WorkflowPolicy.ensure_transition(existing.status, target)
            changes["status"] = target
        if "priority" in changes:
            changes["priority"] = Priority(changes["priority"])

        executor = await self._validate_references(changes)
        if executor is not None and "executor" not in changes:
            changes["executor"] = executor.name

        if files:
            current = await self.attachments.count_for_request(request_id)
            if current + len(files) > self.max_attachments:
                raise ResourceLimitException("Attachment", self.max_attachments)

        now = self.clock()
        control_changed = False
        if "due_date" in changes:
            changes["due_date"] = parse_due_date(changes["due_date"])
            # terminal requests keep their cached control status
            next_control = (
                existing.control_status
                if existing.is_terminal
                else self.calculator.calculate(changes["due_date"], now)
            )
            if next_control != existing.control_status:
                changes["control_status"] = next_control
                control_changed = True

        changed_fields = sorted(changes)
        if changes:
            changes["updated_at"] = now
            updated = await self.requests.update(request_id, changes)
        else:
            updated = existing

        if files:
            await self.attachments.add_many(request_id, [f.to_domain() for f in files])

        await self.audit_logger.log_mutation(MutationEvent(
            request_id=request_id,
            action=AuditAction.UPDATE.value,
            summary=self._update_summary(changed_fields, len(files)),
            payload=to_jsonable_python({
                "changes": {k: v for k, v in changes.items() if k != "updated_at"},
                "attachments_added": len(files),
            }),
            actor_id=actor.user_id if actor else None,
            occurred_at=now,
        ))

        logger.info(
            "Request updated",
            extra={"request_id": request_id, "fields": changed_fields}
        )

        if control_changed and updated.is_open:
            await self.notifier.notify_request(updated)

        return await self._to_view(updated)

    async def remove_from_control(
        self,
        request_id: int,
        note: Optional[str],
        actor: Actor
    ) -> RequestView:
        """
        Take a request out of deadline control.

        Raises:
            ResourceNotFoundException: If the request does not exist
            StateConflictException: If already removed, completed or archived
        """
        existing = await self.requests.get_by_id(request_id)
        if existing is None:
            raise ResourceNotFoundException("Request", str(request_id))

        WorkflowPolicy.ensure_can_remove_from_control(existing.status)

        note = note.strip() if note else None
        note = note or None
        now = self.clock()

        updated = await self.requests.update(request_id, {
            "status": RequestStatus.REMOVED,
            "control_status": ControlStatus.NO,
            "removed_from_control_at": now,
            "removed_from_control_by": actor.display_name,
            "removed_from_control_by_user_id": actor.user_id,
            "updated_at": now,
        })

        summary = "Removed from control"
        if note:
            summary = f"{summary} - {note}"

        await self.audit_logger.log_mutation(MutationEvent(
            request_id=request_id,
            action=AuditAction.REMOVE_FROM_CONTROL.value,
            summary=summary,
            payload={
                "note": note,
                "previous_status": RequestStatus(existing.status).value,
                "removed_by": actor.display_name,
                "removed_by_user_id": actor.user_id,
            },
            actor_id=actor.user_id,
            occurred_at=now,
        ))

        logger.info(
            "Request removed from control",
            extra={
                "request_id": request_id,
                "previous_status": RequestStatus(existing.status).value,
                "removed_by_user_id": actor.user_id,
            }
        )

        await self.notifier.notify_removed_from_control(updated, actor, note)
        return await self._to_view(updated)

    # ========== Queries ==========

    async def get(self, request_id: int) -> Optional[RequestView]:
        request = await self.requests.get_by_id(request_id)
        if request is None:
            return None
        request = await self.reconciler.ensure_control_status(request)
        return await self._to_view(request)

    async def list(self, query: RequestListQuery) -> RequestListResponse:
        limit = min(query.limit, self.max_page_size)
        offset = (query.page - 1) * limit
        filters = RequestFilters(
            **query.model_dump(exclude={"page", "limit", "sort_by", "sort_order"})
        )

        rows, total = await self.requests.list(
            filters,
            limit=limit,
            offset=offset,
            sort_by=query.sort_by,
            sort_order=query.sort_order,
        )

        data = []
        for row in rows:
            row = await self.reconciler.ensure_control_status(row)
            data.append(await self._to_view(row))

        return RequestListResponse(
            data=data,
            meta=PageMeta(
                total=total,
                page=query.page,
                limit=limit,
                pages=math.ceil(total / limit) if total else 0,
            ),
        )

    # ========== Helpers ==========

    async def _validate_references(self, fields: Dict[str, Any]) -> Optional[Recipient]:
        """Check every non-null reference in ``fields``. Returns the executor, if any."""
        for name, kind in _REFERENCE_FIELDS.items():
            value = fields.get(name)
            if value is None:
                continue
            if not await self.nomenclature.is_active_reference(kind, value):
                raise InvalidReferenceException(kind.value, value)

        executor_id = fields.get("executor_user_id")
        if executor_id is None:
            return None
        executor = await self.users.get_user(executor_id)
        if executor is None or not executor.is_active:
            raise InvalidReferenceException("executor", executor_id)
        return executor

    async def _to_view(self, request: CitizenRequest) -> RequestView:
        request.attachments = await self.attachments.list_for_request(request.id)
        return RequestView.from_entity(request)

    @staticmethod
    def _update_summary(fields: List[str], attachments_added: int) -> str:
        parts = [f for f in fields if f != "control_status"]
        summary = "Request updated"
        if parts:
            summary += ": " + ", ".join(parts)
        if attachments_added:
            summary += f" (+{attachments_added} attachments)"
        return summary


@dataclass
class ControlServices:
    """Services sharing one unit of work (one session)."""
    requests: IRequestRepository
    lifecycle: RequestLifecycleService
    reconciler: ControlStatusReconciler
    notifications: NotificationEngine
