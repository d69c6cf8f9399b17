"""
Audit logging.

Every orchestrator step reports here. Each event goes to the structured
process log, and to an audit store when one is configured, so a lost derived
write can be traced by correlation id and later re-applied from its
reconciliation marker. Writing the audit trail never raises into the
operation being audited.
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_engine.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from finance_engine.services.storage import AuditStorageInterface


structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

_LOG_METHOD = {
    "debug": "debug",
    "info": "info",
    "warning": "warning",
    "error": "error",
    "critical": "error",
}


class AuditLogger:
    """
    Writes audit events to the process log and, optionally, an audit store.

    Without a store the logger still emits every event locally, which is
    what tests and one-off scripts use.
    """

    def __init__(self, storage: Optional[AuditStorageInterface] = None):
        self._storage = storage
        self._logger = structlog.get_logger("finance_engine.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Record one event.

        Returns False only when the audit store rejected the event; the
        failure itself is logged locally instead of raised.
        """
        emit = getattr(self._logger, _LOG_METHOD[event.severity.value])
        emit("audit_event", **event.to_log_dict())

        if self._storage is None:
            return True
        try:
            return await self._storage.append_event(event)
        except Exception as e:
            self._logger.error(
                "audit_storage_failed",
                event_id=str(event.event_id),
                error=str(e),
            )
            return False

    async def log_entity_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: Optional[UUID],
        user_id: str,
        description: str,
        correlation_id: Optional[UUID],
        details: Optional[dict] = None,
    ) -> None:
        """Log a create/update/delete of any aggregate."""
        await self.log(AuditEventBuilder.entity_event(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            description=description,
            correlation_id=correlation_id,
            details=details,
        ))

    async def log_bill_created(
        self,
        bill_id: UUID,
        user_id: str,
        total: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.bill_created(
            bill_id=bill_id,
            user_id=user_id,
            total=total,
            correlation_id=correlation_id,
        ))

    async def log_payment_status_updated(
        self,
        bill_id: UUID,
        user_id: str,
        participant_id: str,
        previous: str,
        current: str,
        bill_status: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.payment_status_updated(
            bill_id=bill_id,
            user_id=user_id,
            participant_id=participant_id,
            previous=previous,
            current=current,
            bill_status=bill_status,
            correlation_id=correlation_id,
        ))

    async def log_mirror_created(
        self,
        transaction_id: UUID,
        user_id: str,
        payment_type: str,
        amount: str,
        correlation_id: Optional[UUID],
    ) -> None:
        await self.log(AuditEventBuilder.mirror_created(
            transaction_id=transaction_id,
            user_id=user_id,
            payment_type=payment_type,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_mirrors_removed(
        self,
        user_id: str,
        match: dict,
        removed_count: int,
        correlation_id: Optional[UUID],
    ) -> None:
        await self.log(AuditEventBuilder.mirrors_removed(
            user_id=user_id,
            match=match,
            removed_count=removed_count,
            correlation_id=correlation_id,
        ))

    async def log_budget_synced(
        self,
        user_id: str,
        category: str,
        on_date: str,
        delta: str,
        budget_ids: list[str],
        correlation_id: Optional[UUID],
    ) -> None:
        await self.log(AuditEventBuilder.budget_synced(
            user_id=user_id,
            category=category,
            on_date=on_date,
            delta=delta,
            budget_ids=budget_ids,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        entity_type: str,
        user_id: Optional[str],
        issues: list[dict],
        correlation_id: Optional[UUID],
    ) -> None:
        await self.log(AuditEventBuilder.validation_failed(
            entity_type=entity_type,
            user_id=user_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_secondary_step_failed(
        self,
        step: str,
        user_id: Optional[str],
        error_message: str,
        attempts: int,
        details: dict,
        correlation_id: Optional[UUID],
    ) -> None:
        """
        Log a derived write that was given up on.

        Two events are written: the failure itself, and a reconciliation
        marker carrying what a repair job needs to re-apply the step.
        """
        await self.log(AuditEventBuilder.secondary_step_failed(
            step=step,
            error_message=error_message,
            attempts=attempts,
            correlation_id=correlation_id,
        ))
        await self.log(AuditEventBuilder.reconciliation_required(
            step=step,
            user_id=user_id,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Record an unexpected failure that is not tied to one step."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """Fresh id for one orchestrator call; every event it writes carries it."""
    return uuid4()
