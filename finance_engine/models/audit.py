"""
Audit trail models.

Each orchestrator call leaves a trail of events sharing one correlation id.
A derived write that could not be completed is recorded as a
RECONCILIATION_REQUIRED event whose details say how to redo it, which makes
the trail the work queue for repair jobs. Events are only ever appended.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """What happened."""
    # Bills
    BILL_CREATED = "bill_created"
    BILL_FINALIZED = "bill_finalized"
    BILL_DELETED = "bill_deleted"
    PAYMENT_STATUS_UPDATED = "payment_status_updated"

    # Transactions
    TRANSACTION_RECORDED = "transaction_recorded"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    MIRROR_CREATED = "mirror_created"
    MIRRORS_REMOVED = "mirrors_removed"

    # Budgets
    BUDGET_CREATED = "budget_created"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_DELETED = "budget_deleted"
    BUDGET_SYNCED = "budget_synced"
    BUDGET_RECONCILED = "budget_reconciled"

    # Goals
    GOAL_CREATED = "goal_created"
    GOAL_UPDATED = "goal_updated"
    GOAL_DELETED = "goal_deleted"
    GOAL_CONTRIBUTION_ADDED = "goal_contribution_added"
    GOAL_WITHDRAWAL_MADE = "goal_withdrawal_made"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    SECONDARY_STEP_FAILED = "secondary_step_failed"
    RECONCILIATION_REQUIRED = "reconciliation_required"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _text(value: Any) -> str:
    return "" if value is None else str(value)


class AuditEvent(BaseModel):
    """One entry of the audit trail."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="UTC")

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Subject of the event: 'bill', 'transaction', 'budget' or 'goal'
    entity_type: Optional[str] = None
    entity_id: Optional[UUID] = None
    user_id: Optional[str] = None

    # Shared by every event written during one orchestrator call
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Flat, JSON-safe view handed to structlog."""
        return self.model_dump(mode="json")

    def to_sheets_row(self) -> list:
        """
        Worksheet row, in AUDIT_COLUMNS order.

        Empty cells stand for None and details are stored as a JSON string.
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            _text(self.entity_type),
            _text(self.entity_id),
            _text(self.user_id),
            _text(self.correlation_id),
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            _text(self.error_message),
        ]


class AuditEventBuilder:
    """
    Factories for the events the orchestrators write.

        AuditEventBuilder.bill_created(bill_id, user_id, "30.00", correlation_id)
    """

    @staticmethod
    def entity_event(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: Optional[UUID],
        user_id: Optional[str],
        description: str,
        correlation_id: Optional[UUID],
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
        )

    @staticmethod
    def bill_created(
        bill_id: UUID,
        user_id: str,
        total: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_CREATED,
            entity_type="bill",
            entity_id=bill_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Bill created for {total}",
            details={"total": total},
        )

    @staticmethod
    def payment_status_updated(
        bill_id: UUID,
        user_id: str,
        participant_id: str,
        previous: str,
        current: str,
        bill_status: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_STATUS_UPDATED,
            entity_type="bill",
            entity_id=bill_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Participant {participant_id}: {previous} -> {current}",
            details={
                "participant_id": participant_id,
                "previous": previous,
                "current": current,
                "bill_status": bill_status,
            },
        )

    @staticmethod
    def mirror_created(
        transaction_id: UUID,
        user_id: str,
        payment_type: str,
        amount: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIRROR_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Mirrored {payment_type} transaction for {amount}",
            details={"payment_type": payment_type, "amount": amount},
        )

    @staticmethod
    def mirrors_removed(
        user_id: str,
        match: dict,
        removed_count: int,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIRRORS_REMOVED,
            entity_type="transaction",
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Removed {removed_count} mirrored transaction(s)",
            details={"match": match, "removed_count": removed_count},
        )

    @staticmethod
    def budget_synced(
        user_id: str,
        category: str,
        on_date: str,
        delta: str,
        budget_ids: list[str],
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_SYNCED,
            entity_type="budget",
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Applied {delta} to {len(budget_ids)} budget(s) in {category}",
            details={
                "category": category,
                "date": on_date,
                "delta": delta,
                "budget_ids": budget_ids,
            },
        )

    @staticmethod
    def validation_failed(
        entity_type: str,
        user_id: Optional[str],
        issues: list[dict],
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"{entity_type} rejected: {len(issues)} issue(s)",
            details={"issues": issues},
        )

    @staticmethod
    def secondary_step_failed(
        step: str,
        error_message: str,
        attempts: int,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SECONDARY_STEP_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"Gave up on {step} after {attempts} attempt(s)",
            error_message=error_message,
            details={"step": step, "attempts": attempts},
        )

    @staticmethod
    def reconciliation_required(
        step: str,
        user_id: Optional[str],
        error_message: str,
        details: dict,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        """
        Marker for a derived write that did not happen.

        ``details`` must hold everything needed to re-apply the step.
        """
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_REQUIRED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"{step} must be re-applied",
            error_message=error_message,
            details={"step": step, **details},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Unexpected failure ({error_type})",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
