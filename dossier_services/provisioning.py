"""
dossier_services.provisioning -- Dossier provisioning on confirmed payment.

Responsibility:
    Turns a confirmed payment signal into exactly one dossier (with one
    step instance per template step) for the order's (client, product),
    whether the signal arrives once, twice, or from the push and pull
    paths at the same time.

Architecture position:
    Services -- orchestration over the kernel.  ProvisioningPipeline is
    flush-only and runs inside the caller's transaction, so the order
    update, client activation, dossier creation and linking commit or roll
    back together.  PaymentNotificationHandler is the push entry point
    and owns its own transaction.

Invariants enforced:
    - The PENDING/FAILED -> PAID transition is a single conditional UPDATE
      (``WHERE status <> 'PAID'``) that also records the amount and
      currency the processor confirmed.  A zero rowcount means another
      caller won; the loser re-reads and reports ALREADY_PROCESSED.
    - At most one dossier per (client, product): the insert runs inside a
      SAVEPOINT, and a uniqueness violation rolls back only the savepoint
      and links the order to the winner's dossier.
    - An order that is PAID but not yet linked (an earlier run died between
      the two) resumes at client activation.
    - Provisioning runs as the SYSTEM role through the same role check as
      every other operation.

Failure modes:
    - OrderNotFoundError: unknown checkout session.
    - DuplicateDossierError: uniqueness violation but the winning row is
      not visible yet; safe to retry.
    - ClientNotFoundError / ProductNotFoundError: broken order references.

Audit relevance:
    DOSSIER_CREATED and PAYMENT_RECEIVED events (best effort).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dossier_kernel.db.engine import session_scope
from dossier_kernel.domain.clock import Clock, SystemClock
from dossier_kernel.domain.identity import Caller, require_role
from dossier_kernel.domain.ports import PaymentProcessor, PaymentSessionStatus
from dossier_kernel.domain.workflow import ClientStatus, EventType, OrderStatus, StepStatus
from dossier_kernel.exceptions import (
    ClientNotFoundError,
    DuplicateDossierError,
    OrderNotFoundError,
    ProductNotFoundError,
)
from dossier_kernel.logging_config import LogContext, get_logger
from dossier_kernel.models.client import ClientProfile
from dossier_kernel.models.dossier import Dossier
from dossier_kernel.models.order import Order
from dossier_kernel.models.step_instance import StepInstance
from dossier_kernel.models.template import Product
from dossier_kernel.services.event_log import EventLogService
from dossier_kernel.services.templates import ordered_steps

logger = get_logger("services.provisioning")


@dataclass(frozen=True)
class PaymentSignal:
    """A verified 'checkout completed' signal, independent of processor format."""

    checkout_session_id: str
    amount: Decimal | None = None
    currency: str | None = None
    payment_intent_id: str | None = None
    processor_customer_id: str | None = None
    source: str = "push"

    @classmethod
    def from_session(cls, status: PaymentSessionStatus, source: str) -> PaymentSignal:
        return cls(
            checkout_session_id=status.session_id,
            amount=status.amount,
            currency=status.currency,
            payment_intent_id=status.payment_intent_id,
            processor_customer_id=status.customer_id,
            source=source,
        )


class ProvisioningOutcome(str, Enum):
    CREATED = "CREATED"
    LINKED_EXISTING = "LINKED_EXISTING"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"


@dataclass(frozen=True)
class ProvisioningResult:
    outcome: ProvisioningOutcome
    order_id: UUID
    dossier_id: UUID | None
    checkout_session_id: str

    @property
    def created(self) -> bool:
        return self.outcome is ProvisioningOutcome.CREATED


class ProvisioningPipeline:
    """
    Idempotent provisioning of one order.

    Contract:
        ``provision`` only flushes; the caller commits.  Calling it again
        with the same signal, in the same or a later transaction, has no
        further side effects.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        events: EventLogService | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.events = events or EventLogService(session, self.clock)

    def provision(self, signal: PaymentSignal, caller: Caller | None = None) -> ProvisioningResult:
        caller = caller or Caller.system()
        require_role(caller, "provision_dossier")

        with LogContext.bind(correlation_id=signal.checkout_session_id):
            order = self._load_order(signal.checkout_session_id)
            with LogContext.bind(order_id=order.id):
                return self._provision(order, signal, caller)

    def _load_order(self, checkout_session_id: str) -> Order:
        order = self.session.execute(
            select(Order)
            .where(Order.checkout_session_id == checkout_session_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(checkout_session_id)
        return order

    def _result(self, outcome: ProvisioningOutcome, order: Order) -> ProvisioningResult:
        return ProvisioningResult(
            outcome=outcome,
            order_id=order.id,
            dossier_id=order.dossier_id,
            checkout_session_id=order.checkout_session_id,
        )

    def _provision(self, order: Order, signal: PaymentSignal, caller: Caller) -> ProvisioningResult:
        if order.is_paid and order.dossier_id is not None:
            logger.info("provisioning_already_processed", extra={"source": signal.source})
            return self._result(ProvisioningOutcome.ALREADY_PROCESSED, order)

        if signal.amount is not None and signal.amount != order.amount:
            logger.warning(
                "payment_amount_mismatch",
                extra={"order_amount": order.amount, "signal_amount": signal.amount},
            )

        if not order.is_paid:
            won = self._mark_paid(order, signal, caller)
            self.session.refresh(order)
            if not won and order.dossier_id is not None:
                logger.info(
                    "provisioning_lost_race",
                    extra={"source": signal.source, "dossier_id": str(order.dossier_id)},
                )
                return self._result(ProvisioningOutcome.ALREADY_PROCESSED, order)
        else:
            logger.info("provisioning_resumed", extra={"source": signal.source})

        self._activate_client(order, signal, caller)
        product = self.session.get(Product, order.product_id)
        if product is None:
            raise ProductNotFoundError(order.product_id)

        dossier = self._find_dossier(order.client_id, product.id)
        if dossier is not None:
            outcome = ProvisioningOutcome.LINKED_EXISTING
        else:
            dossier, created = self._insert_dossier(order, product, signal, caller)
            if created:
                outcome = ProvisioningOutcome.CREATED
                self._create_step_instances(dossier, caller)
            else:
                outcome = ProvisioningOutcome.LINKED_EXISTING

        order.dossier_id = dossier.id
        order.updated_by_id = caller.id
        self.session.flush()

        if outcome is ProvisioningOutcome.CREATED:
            self.events.record(
                entity_type="Dossier",
                entity_id=dossier.id,
                event_type=EventType.DOSSIER_CREATED,
                caller=caller,
                dossier_id=dossier.id,
                payload={
                    "order_id": order.id,
                    "product_code": product.code,
                    "status": dossier.status,
                    "source": signal.source,
                },
            )
        self.events.record(
            entity_type="Order",
            entity_id=order.id,
            event_type=EventType.PAYMENT_RECEIVED,
            caller=caller,
            dossier_id=dossier.id,
            payload={
                "checkout_session_id": order.checkout_session_id,
                "amount": order.amount,
                "currency": order.currency,
                "payment_intent_id": order.payment_intent_id,
                "source": signal.source,
            },
        )
        logger.info(
            "provisioning_completed",
            extra={
                "outcome": outcome.value,
                "dossier_id": str(dossier.id),
                "source": signal.source,
            },
        )
        return self._result(outcome, order)

    def _mark_paid(self, order: Order, signal: PaymentSignal, caller: Caller) -> bool:
        """
        Conditional PENDING/FAILED -> PAID, recording the amount the processor
        confirmed.  False if another caller got there first.
        """
        values = {
            "status": OrderStatus.PAID,
            "paid_at": self.clock.now(),
            "updated_by_id": caller.id,
        }
        if signal.amount is not None:
            values["amount"] = signal.amount
        if signal.currency:
            values["currency"] = signal.currency
        if signal.payment_intent_id:
            values["payment_intent_id"] = signal.payment_intent_id
        if signal.processor_customer_id:
            values["processor_customer_id"] = signal.processor_customer_id
        result = self.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status != OrderStatus.PAID)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        logger.info("order_mark_paid", extra={"won": won, "source": signal.source})
        return won

    def _activate_client(self, order: Order, signal: PaymentSignal, caller: Caller) -> None:
        client = self.session.get(ClientProfile, order.client_id)
        if client is None:
            raise ClientNotFoundError(order.client_id)
        changed = False
        if client.status != ClientStatus.ACTIVE:
            client.status = ClientStatus.ACTIVE
            changed = True
        if signal.processor_customer_id and not client.processor_customer_id:
            client.processor_customer_id = signal.processor_customer_id
            changed = True
        if changed:
            client.updated_by_id = caller.id
            self.session.flush()
            logger.info("client_activated", extra={"client_id": str(client.id)})

    def _find_dossier(self, client_id: UUID, product_id: UUID) -> Dossier | None:
        return self.session.execute(
            select(Dossier)
            .where(Dossier.client_id == client_id, Dossier.product_id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _insert_dossier(
        self,
        order: Order,
        product: Product,
        signal: PaymentSignal,
        caller: Caller,
    ) -> tuple[Dossier, bool]:
        savepoint = self.session.begin_nested()
        try:
            dossier = Dossier(
                client_id=order.client_id,
                product_id=product.id,
                dossier_type=product.dossier_type,
                status=product.initial_status,
                meta={"order_id": str(order.id), "source": signal.source},
                created_by_id=caller.id,
            )
            self.session.add(dossier)
            self.session.flush()
            savepoint.commit()
            return dossier, True
        except IntegrityError:
            savepoint.rollback()
            logger.info(
                "dossier_insert_race",
                extra={"client_id": str(order.client_id), "product_id": str(product.id)},
            )
            existing = self._find_dossier(order.client_id, product.id)
            if existing is None:
                raise DuplicateDossierError(order.client_id, product.id)
            return existing, False

    def _create_step_instances(self, dossier: Dossier, caller: Caller) -> None:
        template = ordered_steps(self.session, dossier.product_id)
        now = self.clock.now()
        instances = [
            StepInstance(
                dossier_id=dossier.id,
                step_id=step.step_id,
                validation_status=StepStatus.DRAFT,
                started_at=now if i == 0 else None,
                created_by_id=caller.id,
            )
            for i, step in enumerate(template)
        ]
        self.session.add_all(instances)
        self.session.flush()
        if instances:
            dossier.current_step_instance_id = instances[0].id
            self.session.flush()
        logger.info(
            "step_instances_created",
            extra={"dossier_id": str(dossier.id), "count": len(instances)},
        )


class PaymentNotificationHandler:
    """
    Push path: the processor reports a completed checkout session.

    The session is verified with the processor before anything is written;
    the pipeline then runs in a transaction of its own.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        processor: PaymentProcessor,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._processor = processor
        self._clock = clock or SystemClock()

    def handle_checkout_completed(self, session_id: str) -> ProvisioningResult | None:
        status = self._processor.verify_session(session_id)
        if not status.paid:
            logger.info("checkout_not_paid", extra={"checkout_session_id": session_id})
            return None
        signal = PaymentSignal.from_session(status, source="push")
        with session_scope(self._session_factory) as session:
            return ProvisioningPipeline(session, self._clock).provision(signal)
