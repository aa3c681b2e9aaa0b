"""Mutation events fan out to the audit trail and the proceedings."""

from civictrack.control.application import AuditLogger, IMutationSink
from civictrack.control.domain import MutationEvent
from tests.fakes import NOW, InMemoryAuditRepository


class ExplodingSink(IMutationSink):
    name = "exploding"

    async def write(self, event):
        raise RuntimeError("boom")


def _event():
    return MutationEvent(
        request_id=9,
        action="update",
        summary="Request updated: address",
        payload={"changes": {"address": "1 Main St"}},
        actor_id=4,
        occurred_at=NOW,
    )


async def test_event_reaches_both_sinks():
    repo = InMemoryAuditRepository()
    assert await AuditLogger.for_repository(repo).log_mutation(_event())

    audit = repo.audit[0]
    assert (audit.request_id, audit.action, audit.user_id, audit.entity_type) == (9, "update", 4, "request")
    assert audit.payload == {"changes": {"address": "1 Main St"}}

    proceeding = repo.proceedings[0]
    assert proceeding.notes == "Request updated: address"
    assert proceeding.created_at == NOW


async def test_sink_failure_is_contained(caplog):
    repo = InMemoryAuditRepository()
    logger = AuditLogger([ExplodingSink(), *AuditLogger.for_repository(repo).sinks])

    assert await logger.log_mutation(_event()) is False
    assert len(repo.audit) == 1
    assert len(repo.proceedings) == 1
    assert "Mutation sink failed" in caplog.text
