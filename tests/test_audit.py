"""
Tests for the audit logger.

Audit logging must never break the operation that triggered it.
"""

from uuid import UUID

import pytest

from hisabkitab.audit import AuditLogger, create_correlation_id
from hisabkitab.models.audit import AuditEventBuilder, AuditEventType
from hisabkitab.services.storage import (
    BackendUnavailableError,
    InMemoryAuditStore,
    InMemoryDatabase,
)

from helpers import run_async


class FailingAuditStore(InMemoryAuditStore):
    """Audit store whose writes always fail."""

    async def append_event(self, event):
        raise BackendUnavailableError("audit log unreachable")


class TestAuditLogger:
    """Tests for AuditLogger persistence and failure handling."""

    def test_events_are_persisted(self):
        """Test a logged event reaches the store."""
        store = InMemoryAuditStore(InMemoryDatabase())
        logger = AuditLogger(store)

        async def scenario():
            await logger.log_category_created("user-1", "cat-1", "Pets")
            return await store.get_recent_events("user-1")

        events = run_async(scenario())

        assert len(events) == 1
        assert events[0].event_type == AuditEventType.CATEGORY_CREATED
        assert events[0].details == {"name": "Pets"}

    def test_storage_failure_does_not_raise(self):
        """Test a failing store makes log() return False instead of raising."""
        logger = AuditLogger(FailingAuditStore(InMemoryDatabase()))
        event = AuditEventBuilder.wallet_created("user-1", "wallet-1")

        assert run_async(logger.log(event)) is False

    def test_no_storage_logs_locally(self):
        """Test a logger without storage still reports success."""
        logger = AuditLogger()
        event = AuditEventBuilder.wallet_created("user-1", "wallet-1")

        assert run_async(logger.log(event)) is True

    def test_correlated_events(self):
        """Test the events of one action can be fetched together."""
        store = InMemoryAuditStore(InMemoryDatabase())
        logger = AuditLogger(store)
        correlation_id = create_correlation_id()

        async def scenario():
            await logger.log_expense_created(
                "user-1", "exp-1", "50.00", "Food", True, correlation_id
            )
            await logger.log_wallet_adjusted(
                "user-1", "wallet-1", "100.00", "50.00", "expense", correlation_id
            )
            await logger.log_wallet_created("user-1", "wallet-1")
            return await store.get_events_by_correlation_id(correlation_id)

        events = run_async(scenario())

        assert [e.event_type for e in events] == [
            AuditEventType.EXPENSE_CREATED,
            AuditEventType.WALLET_ADJUSTED,
        ]

    def test_recent_events_newest_first(self):
        """Test recent events are returned newest first and limited."""
        store = InMemoryAuditStore(InMemoryDatabase())
        logger = AuditLogger(store)

        async def scenario():
            for name in ("A", "B", "C"):
                await logger.log_category_created("user-1", f"cat-{name}", name)
            await logger.log_category_created("user-2", "cat-x", "X")
            return await store.get_recent_events("user-1", limit=2)

        events = run_async(scenario())

        assert len(events) == 2
        assert all(e.user_id == "user-1" for e in events)
        assert events[0].timestamp >= events[1].timestamp


class TestCorrelationId:
    """Tests for correlation ids."""

    def test_unique(self):
        """Test each call produces a fresh UUID."""
        first, second = create_correlation_id(), create_correlation_id()

        assert isinstance(first, UUID)
        assert first != second


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
