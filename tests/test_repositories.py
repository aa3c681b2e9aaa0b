"""SQLAlchemy adapters against an in-memory SQLite database."""

from datetime import timedelta

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from civictrack.config import NomenclatureKind, NotificationType, RequestStatus, UserRole
from civictrack.control.application import RequestFilters
from civictrack.control.domain import AuditEntry, CitizenRequest, NotificationLedgerEntry
from civictrack.control.infrastructure.models import (
    AuditLogModel,
    NomenclatureModel,
    NotificationLedgerModel,
    UserModel,
)
from civictrack.control.infrastructure.repositories import (
    SQLAlchemyAuditRepository,
    SQLAlchemyNomenclatureValidator,
    SQLAlchemyNotificationLedger,
    SQLAlchemyRequestRepository,
    SQLAlchemyUserDirectory,
)
from civictrack.infrastructure.database import Base
from tests.conftest import ADMIN, EXECUTOR, SUPERVISOR
from tests.fakes import NOW

RECIPIENT_IDS = [ADMIN.user_id, SUPERVISOR.user_id]


@pytest.fixture
async def session():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)

    # let SQLAlchemy issue BEGIN itself so SAVEPOINT works on sqlite
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        session.add_all([
            UserModel(id=ADMIN.user_id, email=ADMIN.email, name=ADMIN.name, role=UserRole.ADMIN.value),
            UserModel(id=SUPERVISOR.user_id, email=SUPERVISOR.email, name=SUPERVISOR.name, role=UserRole.SUPERVISOR.value),
            UserModel(id=EXECUTOR.user_id, email=EXECUTOR.email, name=EXECUTOR.name, role=UserRole.EXECUTOR.value),
            UserModel(id=20, email="retired@city.gov", name="Retired", role=UserRole.ADMIN.value, is_active=False),
        ])
        await session.flush()
        yield session

    await engine.dispose()


@pytest.fixture
def repo(session):
    return SQLAlchemyRequestRepository(session)


@pytest.fixture
def sql_ledger(session):
    return SQLAlchemyNotificationLedger(session)


async def _create(repo, due_in_hours, status=RequestStatus.IN_PROGRESS, **kwargs):
    return await repo.create(CitizenRequest(
        citizen_name=kwargs.pop("citizen_name", "Jane Citizen"),
        status=status,
        executor_user_id=EXECUTOR.user_id,
        due_date=NOW + timedelta(hours=due_in_hours) if due_in_hours is not None else None,
        created_at=NOW,
        updated_at=NOW,
        **kwargs
    ))


async def _ledger_rows(session) -> int:
    return (await session.execute(select(func.count(NotificationLedgerModel.id)))).scalar_one()


async def _deliver(ledger, request_id, notification_type, target_user_id=None):
    reservation = await ledger.reserve(NotificationLedgerEntry(
        request_id=request_id,
        notification_type=notification_type,
        target_user_id=target_user_id,
        created_at=NOW,
    ))
    assert reservation is not None
    await reservation.confirm()


# ========== notification ledger ==========

async def test_reserve_rejects_duplicate_key(repo, sql_ledger, session):
    request = await _create(repo, 5)
    entry = NotificationLedgerEntry(request_id=request.id, notification_type=NotificationType.DUE_SOON, created_at=NOW)

    reservation = await sql_ledger.reserve(entry)
    assert reservation is not None
    await reservation.confirm()

    assert await sql_ledger.reserve(entry) is None
    assert await _ledger_rows(session) == 1


async def test_reserve_rejects_duplicate_while_first_is_pending(repo, sql_ledger, session):
    request = await _create(repo, -3)
    entry = NotificationLedgerEntry(
        request_id=request.id,
        notification_type=NotificationType.OVERDUE,
        target_user_id=SUPERVISOR.user_id,
        created_at=NOW,
    )

    first = await sql_ledger.reserve(entry)
    assert await sql_ledger.reserve(entry) is None
    await first.confirm()

    assert await _ledger_rows(session) == 1


async def test_released_slot_can_be_reserved_again(repo, sql_ledger, session):
    request = await _create(repo, 5)
    entry = NotificationLedgerEntry(request_id=request.id, notification_type=NotificationType.DUE_SOON, created_at=NOW)

    reservation = await sql_ledger.reserve(entry)
    await reservation.release()
    assert await _ledger_rows(session) == 0

    again = await sql_ledger.reserve(entry)
    assert again is not None
    await again.confirm()

    row = (await session.execute(select(NotificationLedgerModel))).scalar_one()
    assert row.dedup_key == f"{request.id}:due_soon"
    assert row.notification_type == "due_soon"


async def test_overdue_keys_are_per_recipient(repo, sql_ledger, session):
    request = await _create(repo, -3)
    await _deliver(sql_ledger, request.id, NotificationType.OVERDUE, SUPERVISOR.user_id)
    await _deliver(sql_ledger, request.id, NotificationType.OVERDUE, ADMIN.user_id)

    assert await _ledger_rows(session) == 2


# ========== candidate queries ==========

async def test_due_soon_candidates(repo, sql_ledger):
    inside = await _create(repo, 10)
    await _create(repo, 100)
    await _create(repo, -1)
    await _create(repo, None)
    for status in (RequestStatus.COMPLETED, RequestStatus.ARCHIVED, RequestStatus.CANCELLED, RequestStatus.REMOVED):
        await _create(repo, 10, status=status)

    window_end = NOW + timedelta(hours=48)
    candidates = await repo.list_due_soon_candidates(NOW, window_end)
    assert [r.id for r in candidates] == [inside.id]

    await _deliver(sql_ledger, inside.id, NotificationType.DUE_SOON)
    assert await repo.list_due_soon_candidates(NOW, window_end) == []


async def test_overdue_candidate_dropped_once_every_recipient_notified(repo, sql_ledger):
    late = await _create(repo, -3)
    await _create(repo, 5)
    for status in (RequestStatus.COMPLETED, RequestStatus.ARCHIVED, RequestStatus.CANCELLED, RequestStatus.REMOVED):
        await _create(repo, -3, status=status)

    assert [r.id for r in await repo.list_overdue_candidates(NOW, RECIPIENT_IDS)] == [late.id]

    await _deliver(sql_ledger, late.id, NotificationType.OVERDUE, SUPERVISOR.user_id)
    assert [r.id for r in await repo.list_overdue_candidates(NOW, RECIPIENT_IDS)] == [late.id]

    await _deliver(sql_ledger, late.id, NotificationType.OVERDUE, ADMIN.user_id)
    assert await repo.list_overdue_candidates(NOW, RECIPIENT_IDS) == []

    newcomer_ids = RECIPIENT_IDS + [EXECUTOR.user_id]
    assert [r.id for r in await repo.list_overdue_candidates(NOW, newcomer_ids)] == [late.id]


async def test_overdue_candidates_need_recipients(repo):
    await _create(repo, -3)
    assert await repo.list_overdue_candidates(NOW, []) == []


# ========== requests ==========

async def test_update_and_set_control_status(repo):
    request = await _create(repo, 100, citizen_name="John Doe")

    updated = await repo.update(request.id, {"address": "2 Side St", "status": RequestStatus.PAUSED})
    assert updated.address == "2 Side St"
    assert updated.status == RequestStatus.PAUSED

    await repo.set_control_status(request.id, "overdue")
    assert (await repo.get_by_id(request.id)).control_status == "overdue"


async def test_list_filters_and_ids_after(repo):
    first = await _create(repo, 100, citizen_name="Jane Citizen", territory="North")
    second = await _create(repo, 10, citizen_name="John Doe", territory="South")
    third = await _create(repo, None, citizen_name="janet Roe", territory="North")

    rows, total = await repo.list(RequestFilters(citizen_name="jan"), sort_by="due_date", sort_order="asc")
    assert total == 2
    assert [r.id for r in rows] == [first.id, third.id]

    rows, total = await repo.list(RequestFilters(territory="sou"))
    assert [r.id for r in rows] == [second.id]

    rows, total = await repo.list(RequestFilters(search="DOE"))
    assert [r.id for r in rows] == [second.id]

    assert await repo.list_ids_after(None, 2) == [first.id, second.id]
    assert await repo.list_ids_after(second.id, 2) == [third.id]


# ========== collaborators ==========

async def test_escalation_recipients_are_active_supervisors_and_admins(session):
    directory = SQLAlchemyUserDirectory(session)

    recipients = await directory.list_escalation_recipients()

    assert [r.user_id for r in recipients] == [ADMIN.user_id, SUPERVISOR.user_id]
    assert (await directory.get_user(EXECUTOR.user_id)).email == EXECUTOR.email
    assert await directory.get_user(999) is None


async def test_nomenclature_validator_checks_kind_and_activity(session):
    session.add_all([
        NomenclatureModel(id=3, kind=NomenclatureKind.TOPIC.value, code="roads", name="Roads"),
        NomenclatureModel(id=9, kind=NomenclatureKind.TOPIC.value, code="old", name="Old", is_active=False),
    ])
    await session.flush()
    validator = SQLAlchemyNomenclatureValidator(session)

    assert await validator.is_active_reference(NomenclatureKind.TOPIC, 3)
    assert not await validator.is_active_reference(NomenclatureKind.REQUEST_TYPE, 3)
    assert not await validator.is_active_reference(NomenclatureKind.TOPIC, 9)


async def test_audit_entry_is_stored(repo, session):
    request = await _create(repo, 100)
    audit = SQLAlchemyAuditRepository(session)

    await audit.add_audit_entry(AuditEntry(
        request_id=request.id,
        action="update",
        payload={"changes": {"priority": "urgent"}},
        user_id=11,
        created_at=NOW,
    ))

    row = (await session.execute(select(AuditLogModel))).scalar_one()
    assert row.entity_id == request.id
    assert row.payload == {"changes": {"priority": "urgent"}}
