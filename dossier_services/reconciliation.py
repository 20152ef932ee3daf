"""
dossier_services.reconciliation -- Pull-based payment reconciliation.

Responsibility:
    Scans orders whose payment may have completed without a push signal
    reaching us (PENDING/FAILED with a checkout session, or PAID but never
    linked to a dossier), asks the processor for the session state, and
    provisions paid orders through the same idempotent pipeline as the
    push path.  Expired sessions are marked FAILED.

Architecture position:
    Services -- orchestration.  Owns one transaction per order, so a bad
    order never rolls back the others.

Invariants enforced:
    - Never writes without a processor verification.
    - Conflicts and transient store errors are retried once; anything else
      is recorded in the report and the pass continues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from dossier_kernel.db.engine import session_scope
from dossier_kernel.domain.clock import Clock, SystemClock
from dossier_kernel.domain.identity import Caller
from dossier_kernel.domain.ports import PaymentProcessor, PaymentSessionStatus
from dossier_kernel.domain.workflow import EventType, OrderStatus
from dossier_kernel.exceptions import ConflictError, DossierKernelError
from dossier_kernel.logging_config import LogContext, get_logger
from dossier_kernel.models.order import Order
from dossier_kernel.services.event_log import EventLogService
from dossier_services.provisioning import (
    PaymentSignal,
    ProvisioningOutcome,
    ProvisioningPipeline,
    ProvisioningResult,
)

logger = get_logger("services.reconciliation")

_RETRYABLE = (ConflictError, OperationalError)


@dataclass
class ReconciliationReport:
    scanned: int = 0
    provisioned: list[ProvisioningResult] = field(default_factory=list)
    marked_failed: list[str] = field(default_factory=list)
    still_pending: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def created(self) -> int:
        return sum(1 for r in self.provisioned if r.outcome is ProvisioningOutcome.CREATED)


class PaymentReconciler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        processor: PaymentProcessor,
        clock: Clock | None = None,
        max_attempts: int = 2,
    ):
        self._session_factory = session_factory
        self._processor = processor
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts

    def reconcile(self, client_id: UUID | None = None) -> ReconciliationReport:
        """Run one pass, optionally restricted to one client's orders."""
        report = ReconciliationReport()
        candidates = self._candidates(client_id)
        report.scanned = len(candidates)
        logger.info("reconciliation_started", extra={"candidates": len(candidates)})

        for order_id, session_id in candidates:
            with LogContext.bind(order_id=order_id, correlation_id=session_id):
                try:
                    status = self._processor.verify_session(session_id)
                except Exception as exc:
                    logger.warning("payment_verification_failed", exc_info=True)
                    report.errors[session_id] = f"verification failed: {exc}"
                    continue

                if status.paid:
                    result = self._provision_with_retry(status, report)
                    if result is not None:
                        report.provisioned.append(result)
                elif status.expired:
                    if self._mark_failed(order_id, status):
                        report.marked_failed.append(session_id)
                else:
                    report.still_pending.append(session_id)

        logger.info(
            "reconciliation_completed",
            extra={
                "scanned": report.scanned,
                "provisioned": len(report.provisioned),
                "marked_failed": len(report.marked_failed),
                "errors": len(report.errors),
            },
        )
        return report

    def _candidates(self, client_id: UUID | None) -> list[tuple[UUID, str]]:
        with session_scope(self._session_factory) as session:
            stmt = (
                select(Order.id, Order.checkout_session_id)
                .where(
                    Order.checkout_session_id.is_not(None),
                    or_(
                        Order.status.in_([OrderStatus.PENDING, OrderStatus.FAILED]),
                        and_(Order.status == OrderStatus.PAID, Order.dossier_id.is_(None)),
                    ),
                )
                .order_by(Order.created_at)
            )
            if client_id is not None:
                stmt = stmt.where(Order.client_id == client_id)
            return [(row.id, row.checkout_session_id) for row in session.execute(stmt)]

    def _provision_with_retry(
        self, status: PaymentSessionStatus, report: ReconciliationReport
    ) -> ProvisioningResult | None:
        signal = PaymentSignal.from_session(status, source="pull")
        for attempt in range(1, self._max_attempts + 1):
            try:
                with session_scope(self._session_factory) as session:
                    return ProvisioningPipeline(session, self._clock).provision(signal)
            except _RETRYABLE as exc:
                if attempt == self._max_attempts:
                    logger.error("reconciliation_retry_exhausted", extra={"attempts": attempt})
                    report.errors[status.session_id] = str(exc)
                    return None
                logger.warning(
                    "reconciliation_retrying",
                    extra={"attempt": attempt, "error_type": type(exc).__name__},
                )
            except DossierKernelError as exc:
                logger.error("reconciliation_order_failed", extra={"error_code": exc.code})
                report.errors[status.session_id] = str(exc)
                return None
        return None

    def _mark_failed(self, order_id: UUID, status: PaymentSessionStatus) -> bool:
        caller = Caller.system()
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == OrderStatus.PENDING)
                .values(status=OrderStatus.FAILED, updated_by_id=caller.id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False
            EventLogService(session, self._clock).record(
                entity_type="Order",
                entity_id=order_id,
                event_type=EventType.PAYMENT_FAILED,
                caller=caller,
                payload={"checkout_session_id": status.session_id, "reason": "session_expired"},
            )
        logger.info("order_marked_failed", extra={"checkout_session_id": status.session_id})
        return True
