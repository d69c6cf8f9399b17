"""
Best-effort secondary steps

Once an orchestrator has persisted the primary aggregate, the operation has
succeeded as far as the caller is concerned. Mirroring and budget
synchronization run afterwards through ``SecondaryStepRunner``:

1. Idempotent steps (metadata deletes) are retried with exponential backoff
2. Non-idempotent steps (creates, spend deltas) run exactly once, since a
   retry after an ambiguous failure could double-apply them
3. A step that still fails is NOT raised. It is logged, and two audit events
   are written: ``secondary_step_failed`` and ``reconciliation_required``.
   The latter carries everything needed to re-apply the step later.
"""

from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import structlog
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from finance_engine.audit import AuditLogger
from finance_engine.config import get_settings


logger = structlog.get_logger("finance_engine.secondary")

T = TypeVar("T")


class SecondaryStepRunner:
    """Runs derived-consistency writes without letting them fail the caller."""

    def __init__(
        self,
        audit_logger: Optional[AuditLogger] = None,
        attempts: Optional[int] = None,
        min_wait: Optional[float] = None,
        max_wait: Optional[float] = None,
    ):
        app = get_settings().app
        self._audit_logger = audit_logger
        self._attempts = attempts if attempts is not None else app.secondary_step_attempts
        self._min_wait = min_wait if min_wait is not None else app.secondary_retry_min_wait_seconds
        self._max_wait = max_wait if max_wait is not None else app.secondary_retry_max_wait_seconds

    async def run(
        self,
        step: str,
        action: Callable[[], Awaitable[T]],
        user_id: Optional[str],
        correlation_id: Optional[UUID],
        details: Optional[dict[str, Any]] = None,
        idempotent: bool = False,
    ) -> Optional[T]:
        """
        Run ``action`` and return its result, or None if it ultimately failed.

        Args:
            step: Name of the step, used in logs and audit events
            action: Zero-argument coroutine factory; called once per attempt
            details: What a repair job needs to re-apply the step
            idempotent: Only idempotent steps are retried
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._attempts if idempotent else 1),
            wait=wait_exponential(
                multiplier=self._min_wait,
                min=self._min_wait,
                max=self._max_wait,
            ),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await action()
        except Exception as e:
            attempts = retrying.statistics.get("attempt_number", 1)
            await self.report_failure(
                step=step,
                user_id=user_id,
                error_message=str(e),
                attempts=attempts,
                details=details or {},
                correlation_id=correlation_id,
            )
        return None

    async def report_failure(
        self,
        step: str,
        user_id: Optional[str],
        error_message: str,
        attempts: int,
        details: dict[str, Any],
        correlation_id: Optional[UUID],
    ) -> None:
        """Record a lost derived write so it can be reconciled."""
        logger.error(
            "secondary_step_failed",
            step=step,
            user_id=user_id,
            error=error_message,
            attempts=attempts,
            correlation_id=str(correlation_id) if correlation_id else None,
            details=details,
        )
        if self._audit_logger:
            await self._audit_logger.log_secondary_step_failed(
                step=step,
                user_id=user_id,
                error_message=error_message,
                attempts=attempts,
                details=details,
                correlation_id=correlation_id,
            )
