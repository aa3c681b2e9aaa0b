"""Shared fixtures: control services wired to in-memory fakes."""

from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from civictrack.config import NomenclatureKind, UserRole
from civictrack.control.application import (
    AuditLogger,
    ControlServices,
    ControlStatusReconciler,
    NotificationEngine,
    NotificationMessageBuilder,
    RequestCreateDTO,
    RequestLifecycleService,
)
from civictrack.control.domain import ControlStatusCalculator, Recipient
from tests.fakes import (
    FakeClock,
    FakeNomenclature,
    FakeUserDirectory,
    InMemoryAttachmentRepository,
    InMemoryAuditRepository,
    InMemoryNotificationLedger,
    InMemoryRequestRepository,
    RecordingMailer,
)

EXECUTOR = Recipient(user_id=7, email="executor@city.gov", name="Ivan Executor", role=UserRole.EXECUTOR)
SUPERVISOR = Recipient(user_id=2, email="supervisor@city.gov", name="Sam Supervisor", role=UserRole.SUPERVISOR)
ADMIN = Recipient(user_id=1, email="admin@city.gov", name="Ada Admin", role=UserRole.ADMIN)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    return InMemoryNotificationLedger()


@pytest.fixture
def requests_repo(ledger):
    return InMemoryRequestRepository(ledger)


@pytest.fixture
def attachments_repo():
    return InMemoryAttachmentRepository()


@pytest.fixture
def audit_repo():
    return InMemoryAuditRepository()


@pytest.fixture
def nomenclature():
    return FakeNomenclature({
        (NomenclatureKind.REQUEST_TYPE, 1),
        (NomenclatureKind.TOPIC, 3),
        (NomenclatureKind.SOCIAL_GROUP, 4),
        (NomenclatureKind.INTAKE_FORM, 5),
    })


@pytest.fixture
def users():
    return FakeUserDirectory([EXECUTOR, SUPERVISOR, ADMIN])


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def services(requests_repo, attachments_repo, audit_repo, nomenclature, users, mailer, ledger, clock):
    calculator = ControlStatusCalculator(48)
    engine = NotificationEngine(
        requests=requests_repo,
        ledger=ledger,
        users=users,
        mailer=mailer,
        message_builder=NotificationMessageBuilder("https://civic.example.org"),
        due_soon_window_hours=48,
        clock=clock,
    )
    reconciler = ControlStatusReconciler(requests_repo, calculator, engine, clock=clock)
    lifecycle = RequestLifecycleService(
        requests=requests_repo,
        attachments=attachments_repo,
        nomenclature=nomenclature,
        users=users,
        audit_logger=AuditLogger.for_repository(audit_repo),
        notifier=engine,
        reconciler=reconciler,
        calculator=calculator,
        max_attachments=5,
        max_page_size=100,
        clock=clock,
    )
    return ControlServices(
        requests=requests_repo,
        lifecycle=lifecycle,
        reconciler=reconciler,
        notifications=engine,
    )


@pytest.fixture
def lifecycle(services):
    return services.lifecycle


@pytest.fixture
def engine(services):
    return services.notifications


@pytest.fixture
def scope(services):
    @asynccontextmanager
    async def _scope():
        yield services
    return _scope


@pytest.fixture
def make_payload(clock):
    def _make(due_in_hours=None, **overrides):
        data = {
            "citizen_name": "Jane Citizen",
            "contact_email": "jane@example.org",
            "request_type_id": 1,
            "description": "Street light is out",
            "executor_user_id": EXECUTOR.user_id,
        }
        if due_in_hours is not None:
            data["due_date"] = clock.now + timedelta(hours=due_in_hours)
        data.update(overrides)
        return RequestCreateDTO(**data)
    return _make
