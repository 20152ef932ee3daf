"""
Push and pull provisioning racing on the same payment.

Each worker runs the pipeline in its own transaction.  On SQLite the
transactions serialize on the database write lock; on PostgreSQL the
conditional PAID update and the (client, product) unique index decide the
winner.  Either way exactly one dossier exists afterwards.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest
from sqlalchemy import func, select

from dossier_kernel.db.engine import session_scope
from dossier_kernel.models.dossier import Dossier
from dossier_kernel.models.step_instance import StepInstance
from dossier_services.provisioning import PaymentSignal, ProvisioningOutcome, ProvisioningPipeline

pytestmark = pytest.mark.slow_locks


def race(session_factory, clock, signals):
    barrier = Barrier(len(signals))

    def worker(signal):
        barrier.wait()
        with session_scope(session_factory) as s:
            return ProvisioningPipeline(s, clock).provision(signal)

    with ThreadPoolExecutor(max_workers=len(signals)) as pool:
        return list(pool.map(worker, signals))


def counts(session_factory):
    with session_scope(session_factory) as s:
        dossiers = s.execute(select(func.count()).select_from(Dossier)).scalar_one()
        instances = s.execute(select(func.count()).select_from(StepInstance)).scalar_one()
    return dossiers, instances


class TestProvisioningRace:
    def test_push_and_pull_same_session(
        self, session, session_factory, deterministic_clock, make_order, client_profile
    ):
        cs = make_order(client_profile).checkout_session_id
        session.commit()

        results = race(
            session_factory,
            deterministic_clock,
            [PaymentSignal(cs, source="push"), PaymentSignal(cs, source="pull")],
        )

        assert sorted(r.outcome.value for r in results) == ["ALREADY_PROCESSED", "CREATED"]
        assert results[0].dossier_id == results[1].dossier_id
        assert counts(session_factory) == (1, 3)

    def test_two_orders_same_client_and_product(
        self, session, session_factory, deterministic_clock, make_order, client_profile
    ):
        first = make_order(client_profile).checkout_session_id
        second = make_order(client_profile).checkout_session_id
        session.commit()

        results = race(
            session_factory,
            deterministic_clock,
            [PaymentSignal(first), PaymentSignal(second)],
        )

        outcomes = {r.outcome for r in results}
        assert outcomes == {ProvisioningOutcome.CREATED, ProvisioningOutcome.LINKED_EXISTING}
        assert results[0].dossier_id == results[1].dossier_id
        assert counts(session_factory) == (1, 3)
