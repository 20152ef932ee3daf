"""
Tests for ProvisioningPipeline and the push-path PaymentNotificationHandler.

Verifies:
- A confirmed payment creates one dossier with one step instance per
  template step, starts the first step and activates the client
- Replayed signals and second orders never create a second dossier
- An order left PAID but unlinked is resumed
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from dossier_kernel.domain.workflow import ClientStatus, EventType, OrderStatus
from dossier_kernel.exceptions import OrderNotFoundError, RoleNotPermittedError
from dossier_kernel.models.client import ClientProfile
from dossier_kernel.models.dossier import Dossier
from dossier_kernel.models.event import Event
from dossier_kernel.models.order import Order
from dossier_kernel.models.step_instance import StepInstance
from dossier_services.provisioning import (
    PaymentNotificationHandler,
    PaymentSignal,
    ProvisioningOutcome,
    ProvisioningPipeline,
)


@pytest.fixture
def pipeline(session, deterministic_clock):
    return ProvisioningPipeline(session, deterministic_clock)


def dossier_count(session) -> int:
    return session.execute(select(func.count()).select_from(Dossier)).scalar_one()


def instances_in_order(session, dossier_id, workflow):
    by_step = {
        si.step_id: si
        for si in session.execute(
            select(StepInstance).where(StepInstance.dossier_id == dossier_id)
        ).scalars()
    }
    return [by_step[workflow.steps[code].id] for code in ("intake", "identity", "filing")]


class TestProvision:
    def test_creates_dossier_with_step_instances(
        self, session, pipeline, make_order, client_profile, workflow, deterministic_clock
    ):
        order = make_order(client_profile)

        result = pipeline.provision(
            PaymentSignal(
                order.checkout_session_id,
                amount=Decimal("499.00"),
                payment_intent_id="pi_123",
                processor_customer_id="cus_42",
            )
        )

        assert result.outcome is ProvisioningOutcome.CREATED
        assert result.created
        dossier = session.get(Dossier, result.dossier_id)
        assert dossier.client_id == client_profile.id
        assert dossier.product_id == workflow.product.id
        assert dossier.meta["order_id"] == str(order.id)

        intake, identity, filing = instances_in_order(session, dossier.id, workflow)
        assert intake.started_at == deterministic_clock.now()
        assert identity.started_at is None and filing.started_at is None
        assert dossier.current_step_instance_id == intake.id

        session.refresh(order)
        assert order.status == OrderStatus.PAID
        assert order.paid_at == deterministic_clock.now()
        assert order.payment_intent_id == "pi_123"
        assert order.dossier_id == dossier.id

        assert client_profile.status == ClientStatus.ACTIVE
        assert client_profile.processor_customer_id == "cus_42"

        types = [
            e.event_type
            for e in session.execute(
                select(Event).where(Event.dossier_id == dossier.id).order_by(Event.seq)
            ).scalars()
        ]
        assert types == [EventType.DOSSIER_CREATED, EventType.PAYMENT_RECEIVED]

    def test_replayed_signal_is_already_processed(self, session, pipeline, make_order, client_profile):
        order = make_order(client_profile)
        first = pipeline.provision(PaymentSignal(order.checkout_session_id))
        second = pipeline.provision(PaymentSignal(order.checkout_session_id, source="pull"))

        assert second.outcome is ProvisioningOutcome.ALREADY_PROCESSED
        assert second.dossier_id == first.dossier_id
        assert dossier_count(session) == 1

    def test_second_order_links_existing_dossier(
        self, session, pipeline, make_order, client_profile, workflow
    ):
        first = pipeline.provision(PaymentSignal(make_order(client_profile).checkout_session_id))
        order = make_order(client_profile)

        result = pipeline.provision(PaymentSignal(order.checkout_session_id))

        assert result.outcome is ProvisioningOutcome.LINKED_EXISTING
        assert result.dossier_id == first.dossier_id
        assert dossier_count(session) == 1
        assert len(instances_in_order(session, first.dossier_id, workflow)) == 3
        session.refresh(order)
        assert order.status == OrderStatus.PAID

    def test_paid_unlinked_order_is_resumed(
        self, session, pipeline, make_order, client_profile, captured_logs
    ):
        order = make_order(client_profile, status=OrderStatus.PAID)

        result = pipeline.provision(PaymentSignal(order.checkout_session_id))

        assert result.outcome is ProvisioningOutcome.CREATED
        assert any(r["message"] == "provisioning_resumed" for r in captured_logs())

    def test_failed_order_can_still_be_paid(self, session, pipeline, make_order, client_profile):
        order = make_order(client_profile, status=OrderStatus.FAILED)
        result = pipeline.provision(PaymentSignal(order.checkout_session_id))

        assert result.created
        session.refresh(order)
        assert order.status == OrderStatus.PAID

    def test_amount_mismatch_is_logged_not_refused(
        self, session, pipeline, make_order, client_profile, captured_logs
    ):
        order = make_order(client_profile)
        result = pipeline.provision(
            PaymentSignal(order.checkout_session_id, amount=Decimal("1.00"), currency="EUR")
        )

        assert result.created
        mismatch = next(r for r in captured_logs() if r["message"] == "payment_amount_mismatch")
        assert mismatch["order_amount"] == "499.00"
        assert mismatch["signal_amount"] == "1.00"

    def test_confirmed_amount_is_recorded_on_the_order(
        self, session, pipeline, make_order, client_profile
    ):
        order = make_order(client_profile)
        pipeline.provision(
            PaymentSignal(order.checkout_session_id, amount=Decimal("449.00"), currency="EUR")
        )

        session.refresh(order)
        assert order.amount == Decimal("449.00")
        assert order.currency == "EUR"

    def test_order_price_kept_without_confirmed_amount(
        self, session, pipeline, make_order, client_profile
    ):
        order = make_order(client_profile)
        pipeline.provision(PaymentSignal(order.checkout_session_id))

        session.refresh(order)
        assert order.amount == Decimal("499.00")
        assert order.currency == "USD"

    def test_unknown_checkout_session(self, pipeline, workflow):
        with pytest.raises(OrderNotFoundError) as exc_info:
            pipeline.provision(PaymentSignal("cs_unknown"))
        assert exc_info.value.checkout_session_id == "cs_unknown"

    def test_only_system_may_provision(self, pipeline, make_order, client_profile, agent_caller):
        order = make_order(client_profile)
        with pytest.raises(RoleNotPermittedError):
            pipeline.provision(PaymentSignal(order.checkout_session_id), caller=agent_caller)


class TestPaymentNotificationHandler:
    def test_paid_session_is_provisioned_and_committed(
        self, session, session_factory, payment_processor, make_order, client_profile,
        deterministic_clock,
    ):
        order = make_order(client_profile)
        order_id, cs = order.id, order.checkout_session_id
        session.commit()
        payment_processor.mark_paid(cs, amount=Decimal("499.00"), customer_id="cus_9")

        handler = PaymentNotificationHandler(session_factory, payment_processor, deterministic_clock)
        result = handler.handle_checkout_completed(cs)

        assert result.outcome is ProvisioningOutcome.CREATED
        fresh = session_factory()
        try:
            stored = fresh.get(Order, order_id)
            assert stored.status == OrderStatus.PAID
            assert stored.dossier_id == result.dossier_id
            assert stored.payment_intent_id == f"pi_{cs}"
            assert fresh.get(ClientProfile, stored.client_id).status == ClientStatus.ACTIVE
        finally:
            fresh.close()

    def test_unpaid_session_writes_nothing(
        self, session, session_factory, payment_processor, make_order, client_profile
    ):
        order = make_order(client_profile)
        order_id, cs = order.id, order.checkout_session_id
        session.commit()

        handler = PaymentNotificationHandler(session_factory, payment_processor)

        assert handler.handle_checkout_completed(cs) is None
        assert payment_processor.verified == [cs]
        fresh = session_factory()
        try:
            assert fresh.get(Order, order_id).status == OrderStatus.PENDING
        finally:
            fresh.close()
