"""
Control Infrastructure Repositories
===================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, case, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from civictrack.config import (
    ESCALATION_ROLES,
    OPEN_STATUSES,
    ControlStatus,
    NomenclatureKind,
    NotificationType,
    Priority,
    RequestStatus,
    UserRole,
)
from civictrack.control.application.interfaces import (
    IAttachmentRepository,
    IAuditRepository,
    INomenclatureValidator,
    INotificationLedger,
    IRequestRepository,
    IUserDirectory,
    LedgerReservation,
    RequestFilters,
)
from civictrack.control.domain import (
    Attachment,
    AuditEntry,
    CitizenRequest,
    NotificationLedgerEntry,
    ProceedingEntry,
    Recipient,
)
from civictrack.control.infrastructure.models import (
    AttachmentModel,
    AuditLogModel,
    NomenclatureModel,
    NotificationLedgerModel,
    ProceedingModel,
    RequestModel,
    UserModel,
)
from civictrack.core import RepositoryException

_OPEN_STATUS_VALUES = [s.value for s in OPEN_STATUSES]

_PRIORITY_RANK = case(
    {
        Priority.LOW.value: 1,
        Priority.MEDIUM.value: 2,
        Priority.HIGH.value: 3,
        Priority.URGENT.value: 4,
    },
    value=RequestModel.priority,
    else_=0,
)

_SORT_COLUMNS = {
    "created_at": RequestModel.created_at,
    "due_date": RequestModel.due_date,
    "priority": _PRIORITY_RANK,
    "status": RequestModel.status,
    "control_status": RequestModel.control_status,
    "citizen_name": RequestModel.citizen_name,
}

_REQUEST_FIELDS = (
    "citizen_name", "contact_phone", "contact_email", "contact_channel",
    "request_type_id", "request_topic_id", "social_group_id", "intake_form_id",
    "description", "address", "territory", "status", "priority", "executor",
    "executor_user_id", "due_date", "control_status", "removed_from_control_at",
    "removed_from_control_by", "removed_from_control_by_user_id",
    "created_at", "updated_at",
)


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _to_entity(model: RequestModel) -> CitizenRequest:
    return CitizenRequest(
        id=model.id,
        citizen_name=model.citizen_name,
        contact_phone=model.contact_phone,
        contact_email=model.contact_email,
        contact_channel=model.contact_channel,
        request_type_id=model.request_type_id,
        request_topic_id=model.request_topic_id,
        social_group_id=model.social_group_id,
        intake_form_id=model.intake_form_id,
        description=model.description,
        address=model.address,
        territory=model.territory,
        status=RequestStatus(model.status),
        priority=Priority(model.priority),
        executor=model.executor,
        executor_user_id=model.executor_user_id,
        due_date=model.due_date,
        control_status=ControlStatus(model.control_status),
        removed_from_control_at=model.removed_from_control_at,
        removed_from_control_by=model.removed_from_control_by,
        removed_from_control_by_user_id=model.removed_from_control_by_user_id,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _to_recipient(model: UserModel) -> Recipient:
    return Recipient(
        user_id=model.id,
        email=model.email,
        name=model.name,
        role=UserRole(model.role),
        is_active=model.is_active,
    )


class SQLAlchemyRequestRepository(IRequestRepository):
    """
    SQLAlchemy implementation of request repository.

    Handles persistence of CitizenRequest entities using async SQLAlchemy.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, request_id: int) -> Optional[CitizenRequest]:
        model = await self._session.get(RequestModel, request_id)
        return _to_entity(model) if model else None

    async def create(self, request: CitizenRequest) -> CitizenRequest:
        model = RequestModel(**{
            name: _enum_value(getattr(request, name)) for name in _REQUEST_FIELDS
        })
        self._session.add(model)
        await self._session.flush()
        return _to_entity(model)

    async def update(self, request_id: int, changes: Dict[str, Any]) -> CitizenRequest:
        model = await self._session.get(RequestModel, request_id)
        if not model:
            raise RepositoryException(f"Request {request_id} not found")

        for name, value in changes.items():
            if name not in _REQUEST_FIELDS:
                raise RepositoryException(f"Unknown request field: {name}")
            setattr(model, name, _enum_value(value))

        await self._session.flush()
        return _to_entity(model)

    async def set_control_status(self, request_id: int, control_status: ControlStatus) -> None:
        stmt = (
            update(RequestModel)
            .where(RequestModel.id == request_id)
            .values(control_status=_enum_value(control_status))
        )
        await self._session.execute(stmt)

    async def list(
        self,
        filters: RequestFilters,
        limit: int = 20,
        offset: int = 0,
        sort_by: str = "created_at",
        sort_order: str = "desc"
    ) -> Tuple[List[CitizenRequest], int]:
        conditions = self._build_conditions(filters)

        count_stmt = select(func.count()).select_from(RequestModel)
        if conditions:
            count_stmt = count_stmt.where(and_(*conditions))
        total = (await self._session.execute(count_stmt)).scalar_one()

        column = _SORT_COLUMNS.get(sort_by, RequestModel.created_at)
        order = column.asc() if sort_order == "asc" else column.desc()

        stmt = select(RequestModel)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(order.nulls_last(), RequestModel.id.desc()).limit(limit).offset(offset)

        result = await self._session.execute(stmt)
        return [_to_entity(m) for m in result.scalars().all()], total

    @staticmethod
    def _build_conditions(filters: RequestFilters) -> list:
        conditions = []
        exact = {
            "request_type_id": RequestModel.request_type_id,
            "request_topic_id": RequestModel.request_topic_id,
            "social_group_id": RequestModel.social_group_id,
            "intake_form_id": RequestModel.intake_form_id,
            "status": RequestModel.status,
            "priority": RequestModel.priority,
            "control_status": RequestModel.control_status,
            "executor_user_id": RequestModel.executor_user_id,
        }
        for name, column in exact.items():
            value = getattr(filters, name)
            if value is not None:
                conditions.append(column == _enum_value(value))

        partial = {
            "citizen_name": RequestModel.citizen_name,
            "address": RequestModel.address,
            "territory": RequestModel.territory,
        }
        for name, column in partial.items():
            value = getattr(filters, name)
            if value:
                conditions.append(column.ilike(f"%{value}%"))

        if filters.due_from is not None:
            conditions.append(RequestModel.due_date >= filters.due_from)
        if filters.due_to is not None:
            conditions.append(RequestModel.due_date <= filters.due_to)

        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(or_(
                RequestModel.description.ilike(pattern),
                RequestModel.citizen_name.ilike(pattern),
                RequestModel.contact_email.ilike(pattern),
                RequestModel.contact_phone.ilike(pattern),
                RequestModel.address.ilike(pattern),
            ))
        return conditions

    async def list_ids_after(self, last_id: Optional[int], limit: int) -> List[int]:
        stmt = select(RequestModel.id).order_by(RequestModel.id.asc()).limit(limit)
        if last_id is not None:
            stmt = stmt.where(RequestModel.id > last_id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_due_soon_candidates(
        self,
        now: datetime,
        window_end: datetime
    ) -> List[CitizenRequest]:
        already_sent = exists().where(
            NotificationLedgerModel.request_id == RequestModel.id,
            NotificationLedgerModel.notification_type == NotificationType.DUE_SOON.value,
        )
        stmt = (
            select(RequestModel)
            .where(
                RequestModel.due_date.is_not(None),
                RequestModel.due_date > now,
                RequestModel.due_date <= window_end,
                RequestModel.status.in_(_OPEN_STATUS_VALUES),
                ~already_sent,
            )
            .order_by(RequestModel.due_date.asc())
        )
        result = await self._session.execute(stmt)
        return [_to_entity(m) for m in result.scalars().all()]

    async def list_overdue_candidates(
        self,
        now: datetime,
        recipient_ids: Sequence[int]
    ) -> List[CitizenRequest]:
        if not recipient_ids:
            return []

        notified = (
            select(func.count(NotificationLedgerModel.id))
            .where(
                NotificationLedgerModel.request_id == RequestModel.id,
                NotificationLedgerModel.notification_type == NotificationType.OVERDUE.value,
                NotificationLedgerModel.target_user_id.in_(list(recipient_ids)),
            )
            .correlate(RequestModel)
            .scalar_subquery()
        )
        stmt = (
            select(RequestModel)
            .where(
                RequestModel.due_date.is_not(None),
                RequestModel.due_date < now,
                RequestModel.status.in_(_OPEN_STATUS_VALUES),
                notified < len(recipient_ids),
            )
            .order_by(RequestModel.due_date.asc())
        )
        result = await self._session.execute(stmt)
        return [_to_entity(m) for m in result.scalars().all()]


class SQLAlchemyAttachmentRepository(IAttachmentRepository):
    """SQLAlchemy implementation of attachment metadata storage."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def count_for_request(self, request_id: int) -> int:
        stmt = select(func.count(AttachmentModel.id)).where(AttachmentModel.request_id == request_id)
        return (await self._session.execute(stmt)).scalar_one()

    async def add_many(self, request_id: int, attachments: List[Attachment]) -> List[Attachment]:
        models = [
            AttachmentModel(
                request_id=request_id,
                original_name=a.original_name,
                stored_name=a.stored_name,
                mime_type=a.mime_type,
                size=a.size,
            )
            for a in attachments
        ]
        self._session.add_all(models)
        await self._session.flush()
        return [self._to_entity(m) for m in models]

    async def list_for_request(self, request_id: int) -> List[Attachment]:
        stmt = (
            select(AttachmentModel)
            .where(AttachmentModel.request_id == request_id)
            .order_by(AttachmentModel.id.asc())
        )
        result = await self._session.execute(stmt)
        return [self._to_entity(m) for m in result.scalars().all()]

    @staticmethod
    def _to_entity(model: AttachmentModel) -> Attachment:
        return Attachment(
            id=model.id,
            request_id=model.request_id,
            original_name=model.original_name,
            stored_name=model.stored_name,
            mime_type=model.mime_type,
            size=model.size,
            created_at=model.created_at,
        )


class SQLAlchemyLedgerReservation(LedgerReservation):
    """A ledger row inserted inside a savepoint that is still open."""

    def __init__(self, savepoint: AsyncSessionTransaction):
        self._savepoint = savepoint

    async def confirm(self) -> None:
        await self._savepoint.commit()

    async def release(self) -> None:
        await self._savepoint.rollback()


class SQLAlchemyNotificationLedger(INotificationLedger):
    """
    Notification ledger backed by the unique ``dedup_key`` column.

    The unique constraint turns check-then-insert into a single atomic step:
    a concurrent duplicate fails the insert instead of sending twice.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def reserve(self, entry: NotificationLedgerEntry) -> Optional[LedgerReservation]:
        savepoint = await self._session.begin_nested()
        self._session.add(NotificationLedgerModel(
            request_id=entry.request_id,
            notification_type=NotificationType(entry.notification_type).value,
            target_user_id=entry.target_user_id,
            dedup_key=entry.dedup_key,
            created_at=entry.created_at,
        ))
        try:
            await self._session.flush()
        except IntegrityError:
            await savepoint.rollback()
            return None
        return SQLAlchemyLedgerReservation(savepoint)


class SQLAlchemyAuditRepository(IAuditRepository):
    """Audit trail and proceedings, each write isolated in a savepoint."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add_audit_entry(self, entry: AuditEntry) -> None:
        async with self._session.begin_nested():
            self._session.add(AuditLogModel(
                user_id=entry.user_id,
                action=entry.action,
                entity_type=entry.entity_type,
                entity_id=entry.request_id,
                payload=entry.payload,
                created_at=entry.created_at,
            ))
            await self._session.flush()

    async def add_proceeding(self, entry: ProceedingEntry) -> None:
        async with self._session.begin_nested():
            self._session.add(ProceedingModel(
                request_id=entry.request_id,
                user_id=entry.user_id,
                action=entry.action,
                notes=entry.notes,
                created_at=entry.created_at,
            ))
            await self._session.flush()


class SQLAlchemyNomenclatureValidator(INomenclatureValidator):
    """Checks classification references against the nomenclature table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def is_active_reference(self, kind: NomenclatureKind, reference_id: int) -> bool:
        stmt = select(NomenclatureModel.id).where(
            NomenclatureModel.id == reference_id,
            NomenclatureModel.kind == NomenclatureKind(kind).value,
            NomenclatureModel.is_active.is_(True),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None


class SQLAlchemyUserDirectory(IUserDirectory):
    """User lookups for executors and escalation recipients."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_user(self, user_id: int) -> Optional[Recipient]:
        model = await self._session.get(UserModel, user_id)
        return _to_recipient(model) if model else None

    async def list_escalation_recipients(self) -> List[Recipient]:
        stmt = (
            select(UserModel)
            .where(
                UserModel.role.in_([r.value for r in ESCALATION_ROLES]),
                UserModel.is_active.is_(True),
            )
            .order_by(UserModel.id.asc())
        )
        result = await self._session.execute(stmt)
        return [_to_recipient(m) for m in result.scalars().all()]
