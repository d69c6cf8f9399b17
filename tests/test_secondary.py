"""
Tests for the best-effort secondary step runner.
"""

import asyncio

from finance_engine.audit import AuditLogger, create_correlation_id
from finance_engine.engine.secondary import SecondaryStepRunner
from finance_engine.errors import StorageError
from finance_engine.models.audit import AuditEventType
from finance_engine.services.storage import InMemoryAuditStorage

from helpers import USER


class Flaky:
    """Coroutine factory that fails a fixed number of times."""

    def __init__(self, failures: int, result="done"):
        self.failures = failures
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise StorageError(f"failure {self.calls}")
        return self.result


def make_runner(attempts=3):
    storage = InMemoryAuditStorage()
    runner = SecondaryStepRunner(
        AuditLogger(storage), attempts=attempts, min_wait=0, max_wait=0
    )
    return storage, runner


def event_types(storage):
    return [e.event_type for e in storage.events]


class TestSecondaryStepRunner:
    """Retry policy and failure reporting."""

    def test_success_returns_result(self):
        storage, runner = make_runner()
        action = Flaky(failures=0)
        result = asyncio.run(runner.run("step", action, USER, None))
        assert result == "done"
        assert action.calls == 1
        assert storage.events == []

    def test_idempotent_step_is_retried(self):
        """Test a transient failure on an idempotent step is absorbed by retries."""
        storage, runner = make_runner(attempts=3)
        action = Flaky(failures=2)
        result = asyncio.run(runner.run("cleanup", action, USER, None, idempotent=True))
        assert result == "done"
        assert action.calls == 3
        assert storage.events == []

    def test_non_idempotent_step_runs_once(self):
        """Test a create is never retried, even when attempts are configured."""
        storage, runner = make_runner(attempts=3)
        action = Flaky(failures=1)
        result = asyncio.run(runner.run("create", action, USER, None))
        assert result is None
        assert action.calls == 1

    def test_failure_is_swallowed_and_audited(self):
        """Test an exhausted step returns None and leaves a reconciliation marker."""
        storage, runner = make_runner(attempts=2)
        correlation_id = create_correlation_id()
        action = Flaky(failures=5)

        result = asyncio.run(runner.run(
            "budget_sync",
            action,
            USER,
            correlation_id,
            details={"category": "Food", "delta": "10.00"},
            idempotent=True,
        ))

        assert result is None
        assert action.calls == 2
        assert event_types(storage) == [
            AuditEventType.SECONDARY_STEP_FAILED,
            AuditEventType.RECONCILIATION_REQUIRED,
        ]
        failed, marker = storage.events
        assert failed.details == {"step": "budget_sync", "attempts": 2}
        assert failed.error_message == "failure 2"
        assert marker.user_id == USER
        assert marker.correlation_id == correlation_id
        assert marker.details == {
            "step": "budget_sync",
            "category": "Food",
            "delta": "10.00",
        }

    def test_works_without_audit_logger(self):
        runner = SecondaryStepRunner(attempts=1, min_wait=0, max_wait=0)
        assert asyncio.run(runner.run("step", Flaky(failures=1), USER, None)) is None

    def test_defaults_come_from_settings(self, monkeypatch):
        monkeypatch.setenv("SECONDARY_STEP_ATTEMPTS", "5")
        runner = SecondaryStepRunner()
        assert runner._attempts == 5
