"""
Tests for the audit logger and its storage backends.
"""

import asyncio
from uuid import uuid4

from finance_engine.audit import AuditLogger, create_correlation_id
from finance_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finance_engine.services.storage import InMemoryAuditStorage

from helpers import USER


class BrokenAuditStorage(InMemoryAuditStorage):
    async def append_event(self, event):
        raise RuntimeError("audit sheet unavailable")


class TestAuditLogger:
    """Local logging plus persistence."""

    def test_persists_events(self):
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)
        bill_id = uuid4()

        asyncio.run(logger.log_bill_created(bill_id, USER, "30.00", create_correlation_id()))

        assert len(storage.events) == 1
        event = storage.events[0]
        assert event.event_type == AuditEventType.BILL_CREATED
        assert event.entity_id == bill_id
        assert event.details == {"total": "30.00"}

    def test_storage_failure_does_not_raise(self):
        """Test a broken audit store never breaks the caller."""
        logger = AuditLogger(BrokenAuditStorage())
        event = AuditEventBuilder.system_error("boom", "it broke")
        assert asyncio.run(logger.log(event)) is False

    def test_without_storage_only_logs_locally(self):
        logger = AuditLogger()
        event = AuditEventBuilder.system_error("boom", "it broke")
        assert asyncio.run(logger.log(event)) is True

    def test_secondary_failure_writes_marker(self):
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)
        asyncio.run(logger.log_secondary_step_failed(
            step="mirror_bill_payment",
            user_id=USER,
            error_message="store down",
            attempts=1,
            details={"bill_id": "b-1"},
            correlation_id=None,
        ))
        assert [e.severity for e in storage.events] == [
            AuditSeverity.ERROR,
            AuditSeverity.ERROR,
        ]
        assert storage.events[1].details["bill_id"] == "b-1"


class TestAuditQueries:
    """Reading the trail back."""

    def test_by_correlation_id(self):
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)
        correlation_id = create_correlation_id()
        asyncio.run(logger.log_error("a", "first", correlation_id=correlation_id))
        asyncio.run(logger.log_error("b", "unrelated"))
        asyncio.run(logger.log_error("c", "second", correlation_id=correlation_id))

        events = asyncio.run(storage.get_events_by_correlation_id(correlation_id))
        assert [e.error_message for e in events] == ["first", "second"]

    def test_by_entity(self):
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)
        goal_id = uuid4()
        asyncio.run(logger.log_entity_event(
            AuditEventType.GOAL_CREATED, "goal", goal_id, USER, "Goal created", None
        ))
        asyncio.run(logger.log_entity_event(
            AuditEventType.GOAL_CREATED, "goal", uuid4(), USER, "Other goal", None
        ))
        events = asyncio.run(storage.get_events_by_entity("goal", goal_id))
        assert [e.description for e in events] == ["Goal created"]


class TestAuditEvent:
    """Serialization of events."""

    def test_sheets_row_has_every_column(self):
        event = AuditEvent(
            event_type=AuditEventType.BUDGET_SYNCED,
            description="synced",
            details={"delta": "10.00"},
        )
        row = event.to_sheets_row()
        assert len(row) == 11
        assert row[2] == "budget_synced"
        assert row[9] == '{"delta": "10.00"}'

    def test_log_dict_is_json_friendly(self):
        event = AuditEventBuilder.mirrors_removed(USER, {"billId": "b"}, 2, None)
        log = event.to_log_dict()
        assert log["event_type"] == "mirrors_removed"
        assert log["correlation_id"] is None
        assert log["details"] == {"match": {"billId": "b"}, "removed_count": 2}
