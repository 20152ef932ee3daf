"""
Field rejection racing step approval on the same step instance.

Both operations lock the step instance row first, so one of them sees the
other's committed result: either the step is approved and the rejection
is refused as locked, or the field is rejected and the approval gate
reports it as a blocker.  An APPROVED step never carries a rejected field.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest
from sqlalchemy import select

from dossier_kernel.db.engine import session_scope
from dossier_kernel.domain.workflow import FieldStatus, ReviewDecision, StepStatus
from dossier_kernel.exceptions import StepApprovalBlockedError, StepLockedError
from dossier_kernel.models.step_instance import StepFieldValue, StepInstance
from dossier_kernel.services.field_validation import FieldValidationTracker
from dossier_kernel.services.step_instance_service import StepInstanceService

pytestmark = pytest.mark.slow_locks

INTAKE = {"company_name": "Acme Holdings", "email": "owner@acme.test"}
REASON = "Mailbox does not exist"


def race(session_factory, operations):
    barrier = Barrier(len(operations))

    def worker(operation):
        barrier.wait()
        try:
            with session_scope(session_factory) as s:
                operation(s)
            return "ok"
        except (StepLockedError, StepApprovalBlockedError) as exc:
            return type(exc).__name__

    with ThreadPoolExecutor(max_workers=len(operations)) as pool:
        return list(pool.map(worker, operations))


class TestReviewApprovalRace:
    def test_rejection_and_approval_never_both_win(
        self, session, session_factory, deterministic_clock, step_service, field_tracker,
        dossier, instance_of, value_of, agent_caller, client_caller,
    ):
        intake = step_service.submit_step(instance_of(dossier, "intake").id, dict(INTAKE), client_caller)
        for key in ("company_name", "email"):
            field_tracker.review_field(value_of(intake, key).id, ReviewDecision.APPROVE, agent_caller)
        intake_id, email_id = intake.id, value_of(intake, "email").id
        session.commit()

        def approve(s):
            StepInstanceService(s, deterministic_clock).approve_step(intake_id, agent_caller)

        def reject(s):
            FieldValidationTracker(s, deterministic_clock).review_field(
                email_id, ReviewDecision.REJECT, agent_caller, reason=REASON
            )

        approved, rejected = race(session_factory, [approve, reject])

        assert [approved, rejected].count("ok") == 1
        with session_scope(session_factory) as s:
            step = s.get(StepInstance, intake_id)
            statuses = {
                v.id: v.status
                for v in s.execute(
                    select(StepFieldValue).where(StepFieldValue.step_instance_id == intake_id)
                ).scalars()
            }
            if step.status is StepStatus.APPROVED:
                assert rejected == "StepLockedError"
                assert set(statuses.values()) == {FieldStatus.APPROVED}
            else:
                assert approved == "StepApprovalBlockedError"
                assert statuses[email_id] is FieldStatus.REJECTED
