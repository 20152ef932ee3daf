"""
StepInstanceService -- step instance lifecycle.

Responsibility:
    Starts step instances (lazily creating them), accepts client
    submissions and resubmissions, and carries out staff decisions:
    under-review, approve (behind the approval gate), reject and
    force-complete.  After a completion it asks DossierService to advance
    the dossier's current pointer.

Architecture position:
    Kernel > Services -- imperative shell.  Pure rules live in
    domain/workflow.py (transition table, sequencing, approval gate);
    this class does the I/O around them.

Invariants enforced:
    - One instance per (dossier, step); lazy creation runs in a SAVEPOINT
      and re-reads on a uniqueness violation.
    - A step other than the first can only start once its predecessor has
      left DRAFT.
    - APPROVED is terminal.  A resubmission after REJECTED only rewrites
      fields that are REJECTED or have no value yet; APPROVED fields are
      never reopened by a submission.
    - approve_step locks the step instance row and re-reads field values
      and documents under that lock before evaluating the gate.  Field and
      document reviews lock the same row, so no decision can slip in
      between the gate check and the status write.
    - completed_at is set iff APPROVED or force-completed; REJECTED never
      sets it.

Failure modes:
    - StepNotFoundError: step not in the dossier's product template.
    - StepNotStartableError: predecessor still DRAFT (or never started).
    - UnknownFieldKeyError / MissingRequiredFieldsError / InvalidFieldValueError.
    - InvalidStepTransitionError: decision not valid from current status.
    - StepApprovalBlockedError: gate blockers (listed in the exception).
    - StepAlreadyCompletedError: force-completing a completed step.
    - DossierClosedError: writing to a CLOSED dossier.

Audit relevance:
    STEP_STARTED, STEP_SUBMITTED, STEP_STATUS_CHANGED, STEP_COMPLETED and
    STEP_REJECTED events; completion and rejection notify the client.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dossier_kernel.domain.clock import Clock
from dossier_kernel.domain.identity import Caller
from dossier_kernel.domain.review_policy import ReviewPolicy
from dossier_kernel.domain.workflow import (
    REVIEWABLE_STEP_STATUSES,
    DocumentGateInput,
    DocumentStatus,
    DossierStatus,
    EventType,
    FieldGateInput,
    FieldStatus,
    StepStatus,
    can_start_after,
    can_transition,
    evaluate_approval_gate,
)
from dossier_kernel.exceptions import (
    DossierClosedError,
    InvalidStepTransitionError,
    MissingRequiredFieldsError,
    StepAlreadyCompletedError,
    StepApprovalBlockedError,
    StepNotFoundError,
    StepNotStartableError,
    UnknownFieldKeyError,
)
from dossier_kernel.logging_config import LogContext, get_logger
from dossier_kernel.models.document import Document
from dossier_kernel.models.dossier import Dossier
from dossier_kernel.models.step_instance import StepFieldValue, StepInstance
from dossier_kernel.services.access import DossierAccess
from dossier_kernel.services.base import BaseService
from dossier_kernel.services.dossier_service import DossierService
from dossier_kernel.services.event_log import EventLogService
from dossier_kernel.services.field_validation import FieldValidationTracker
from dossier_kernel.services.notifications import NotificationDispatcher, NotificationTemplate
from dossier_kernel.services.templates import (
    TemplateStep,
    ordered_steps,
    required_document_types,
    step_fields,
)

logger = get_logger("services.step_instance")


class StepInstanceService(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: ReviewPolicy | None = None,
        events: EventLogService | None = None,
        notifications: NotificationDispatcher | None = None,
    ):
        super().__init__(session, clock)
        self.policy = policy or ReviewPolicy()
        self.access = DossierAccess(session)
        self.events = events or EventLogService(session, self.clock)
        self.notifications = notifications or NotificationDispatcher()
        self.fields = FieldValidationTracker(session, self.clock, self.policy, self.events)
        self.dossiers = DossierService(session, self.clock, self.events, self.notifications)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find_instance(self, dossier_id: UUID, step_id: UUID) -> StepInstance | None:
        return self.session.execute(
            select(StepInstance)
            .where(StepInstance.dossier_id == dossier_id, StepInstance.step_id == step_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _check_sequencing(
        self, dossier: Dossier, template: list[TemplateStep], step_id: UUID
    ) -> None:
        position = next((i for i, t in enumerate(template) if t.step_id == step_id), None)
        if position is None:
            raise StepNotFoundError(step_id, dossier.product_id)
        if position == 0:
            return
        previous = template[position - 1]
        prev_instance = self._find_instance(dossier.id, previous.step_id)
        prev_status = prev_instance.status if prev_instance is not None else None
        if not can_start_after(prev_status):
            raise StepNotStartableError(
                step_id, previous.step_id, prev_status.value if prev_status else None
            )

    @staticmethod
    def _require_open(dossier: Dossier) -> None:
        if DossierStatus(dossier.status) is DossierStatus.CLOSED:
            raise DossierClosedError(dossier.id, dossier.status)

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start_step(self, dossier_id: UUID, step_id: UUID, caller: Caller) -> StepInstance:
        """
        Return the instance of ``step_id`` in the dossier, started.

        Creates the instance if needed.  Starting an already started step
        returns it unchanged.
        """
        dossier = self.access.dossier(dossier_id, caller, "start_step")
        self._require_open(dossier)
        template = ordered_steps(self.session, dossier.product_id)
        if not any(t.step_id == step_id for t in template):
            raise StepNotFoundError(step_id, dossier.product_id)

        instance = self._find_instance(dossier.id, step_id)
        if instance is not None and instance.started_at is not None:
            return instance

        self._check_sequencing(dossier, template, step_id)

        if instance is None:
            instance = self._create_instance(dossier, step_id, caller)

        instance, _ = self.access.step_instance(
            instance.id, caller, "start_step", dossier_id=dossier.id, lock=True
        )
        if instance.started_at is not None:
            return instance

        instance.started_at = self.clock.now()
        instance.updated_by_id = caller.id
        self.session.flush()

        self.events.record(
            entity_type="StepInstance",
            entity_id=instance.id,
            event_type=EventType.STEP_STARTED,
            caller=caller,
            dossier_id=dossier.id,
            payload={"step_id": step_id},
        )
        logger.info(
            "step_started",
            extra={"step_instance_id": str(instance.id), "step_id": str(step_id)},
        )
        return instance

    def _create_instance(self, dossier: Dossier, step_id: UUID, caller: Caller) -> StepInstance:
        savepoint = self.session.begin_nested()
        try:
            instance = StepInstance(
                dossier_id=dossier.id,
                step_id=step_id,
                validation_status=StepStatus.DRAFT,
                created_by_id=caller.id,
            )
            self.session.add(instance)
            self.session.flush()
            savepoint.commit()
            return instance
        except IntegrityError:
            savepoint.rollback()
            logger.info(
                "step_instance_create_race",
                extra={"dossier_id": str(dossier.id), "step_id": str(step_id)},
            )
            existing = self._find_instance(dossier.id, step_id)
            if existing is None:
                raise
            return existing

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    def submit_step(
        self,
        step_instance_id: UUID,
        field_values: dict[str, Any],
        caller: Caller,
    ) -> StepInstance:
        """
        Submit (or resubmit) a step with its field values.

        On a resubmission after REJECTED, only REJECTED or never-submitted
        fields are rewritten; other keys are skipped and logged.
        """
        instance, dossier = self.access.step_instance(
            step_instance_id, caller, "submit_step", lock=True
        )
        self._require_open(dossier)

        current = instance.status
        if not can_transition(current, StepStatus.SUBMITTED):
            raise InvalidStepTransitionError(
                instance.id, current.value, StepStatus.SUBMITTED.value
            )
        if current is StepStatus.DRAFT:
            template = ordered_steps(self.session, dossier.product_id)
            self._check_sequencing(dossier, template, instance.step_id)

        fields = step_fields(self.session, instance.step_id)
        by_key = {f.field_key: f for f in fields}
        unknown = sorted(k for k in field_values if k not in by_key)
        if unknown:
            raise UnknownFieldKeyError(instance.id, unknown)

        existing = {
            v.step_field_id: v
            for v in self.session.execute(
                select(StepFieldValue)
                .where(StepFieldValue.step_instance_id == instance.id)
                .execution_options(populate_existing=True)
            ).scalars()
        }
        missing = [
            f.field_key
            for f in fields
            if f.is_required and f.field_key not in field_values and f.id not in existing
        ]
        if missing:
            raise MissingRequiredFieldsError(instance.id, missing)

        resubmission = current is StepStatus.REJECTED
        updated: list[str] = []
        skipped: list[str] = []
        with LogContext.bind(step_instance_id=instance.id, dossier_id=dossier.id):
            for key, value in field_values.items():
                field = by_key[key]
                prior = existing.get(field.id)
                if prior is not None and prior.status is FieldStatus.APPROVED:
                    skipped.append(key)
                    logger.warning("approved_field_not_overwritten", extra={"field_key": key})
                    continue
                if resubmission and prior is not None and prior.status is not FieldStatus.REJECTED:
                    skipped.append(key)
                    logger.warning("resubmission_field_skipped", extra={"field_key": key})
                    continue
                self.fields.upsert_value(instance, field, value, caller)
                updated.append(key)

        now = self.clock.now()
        instance.validation_status = StepStatus.SUBMITTED
        instance.completed_at = None
        instance.force_completed = False
        instance.rejection_reason = None
        instance.validated_by = None
        instance.validated_at = None
        if instance.started_at is None:
            instance.started_at = now
        instance.updated_by_id = caller.id
        self.session.flush()

        self.dossiers.point_to(dossier, instance)

        self.events.record(
            entity_type="StepInstance",
            entity_id=instance.id,
            event_type=EventType.STEP_SUBMITTED,
            caller=caller,
            dossier_id=dossier.id,
            payload={
                "resubmission": resubmission,
                "updated_fields": updated,
                "skipped_fields": skipped,
            },
        )
        logger.info(
            "step_submitted",
            extra={
                "step_instance_id": str(instance.id),
                "from_status": current.value,
                "resubmission": resubmission,
                "updated_count": len(updated),
                "skipped_count": len(skipped),
            },
        )
        return instance

    # ------------------------------------------------------------------
    # Staff decisions
    # ------------------------------------------------------------------

    def mark_under_review(
        self, step_instance_id: UUID, caller: Caller, dossier_id: UUID | None = None
    ) -> StepInstance:
        instance, dossier = self.access.step_instance(
            step_instance_id, caller, "mark_under_review", dossier_id=dossier_id, lock=True
        )
        if instance.status is not StepStatus.SUBMITTED:
            raise InvalidStepTransitionError(
                instance.id, instance.status.value, StepStatus.UNDER_REVIEW.value
            )
        instance.validation_status = StepStatus.UNDER_REVIEW
        if instance.assigned_to is None:
            instance.assigned_to = caller.id
        instance.updated_by_id = caller.id
        self.session.flush()

        self.events.record(
            entity_type="StepInstance",
            entity_id=instance.id,
            event_type=EventType.STEP_STATUS_CHANGED,
            caller=caller,
            dossier_id=dossier.id,
            payload={"from": StepStatus.SUBMITTED.value, "to": StepStatus.UNDER_REVIEW.value},
        )
        return instance

    def assign_reviewer(
        self,
        step_instance_id: UUID,
        reviewer_id: UUID,
        caller: Caller,
        dossier_id: UUID | None = None,
    ) -> StepInstance:
        instance, _ = self.access.step_instance(
            step_instance_id, caller, "assign_reviewer", dossier_id=dossier_id, lock=True
        )
        instance.assigned_to = reviewer_id
        instance.updated_by_id = caller.id
        self.session.flush()
        logger.info(
            "step_reviewer_assigned",
            extra={"step_instance_id": str(instance.id), "reviewer_id": str(reviewer_id)},
        )
        return instance

    def gate_blockers(self, instance: StepInstance, dossier: Dossier) -> list[str]:
        """Evaluate the approval gate from freshly read rows."""
        fields = step_fields(self.session, instance.step_id)
        values = {
            v.step_field_id: v
            for v in self.session.execute(
                select(StepFieldValue)
                .where(StepFieldValue.step_instance_id == instance.id)
                .execution_options(populate_existing=True)
            ).scalars()
        }
        field_inputs = [
            FieldGateInput(
                field_key=f.field_key,
                is_required=f.is_required,
                status=values[f.id].status if f.id in values else None,
            )
            for f in fields
        ]

        document_inputs = []
        for doc_type in required_document_types(self.session, dossier.product_id, instance.step_id):
            statuses = self.session.execute(
                select(Document.status)
                .where(
                    Document.step_instance_id == instance.id,
                    Document.document_type_id == doc_type.id,
                    Document.status != DocumentStatus.OUTDATED,
                )
                .execution_options(populate_existing=True)
            ).scalars()
            document_inputs.append(
                DocumentGateInput(
                    document_type_code=doc_type.code,
                    live_statuses=tuple(DocumentStatus(s) for s in statuses),
                )
            )
        return evaluate_approval_gate(field_inputs, document_inputs)

    def approve_step(
        self, step_instance_id: UUID, caller: Caller, dossier_id: UUID | None = None
    ) -> StepInstance:
        """Approve a submitted step once every field and required document is approved."""
        instance, dossier = self.access.step_instance(
            step_instance_id, caller, "approve_step", dossier_id=dossier_id, lock=True
        )
        current = instance.status
        if current not in REVIEWABLE_STEP_STATUSES:
            raise InvalidStepTransitionError(
                instance.id, current.value, StepStatus.APPROVED.value
            )

        blockers = self.gate_blockers(instance, dossier)
        if blockers:
            logger.info(
                "step_approval_blocked",
                extra={"step_instance_id": str(instance.id), "blockers": blockers},
            )
            raise StepApprovalBlockedError(instance.id, blockers)

        now = self.clock.now()
        instance.validation_status = StepStatus.APPROVED
        instance.rejection_reason = None
        instance.validated_by = caller.id
        instance.validated_at = now
        if instance.completed_at is None:
            instance.completed_at = now
        instance.updated_by_id = caller.id
        self.session.flush()

        self.record_completion(instance, dossier, caller, manual=False)
        return instance

    def reject_step(
        self,
        step_instance_id: UUID,
        caller: Caller,
        reason: str,
        dossier_id: UUID | None = None,
    ) -> StepInstance:
        cleaned = self.policy.validate_rejection_reason(reason)
        instance, dossier = self.access.step_instance(
            step_instance_id, caller, "reject_step", dossier_id=dossier_id, lock=True
        )
        current = instance.status
        if current not in REVIEWABLE_STEP_STATUSES:
            raise InvalidStepTransitionError(
                instance.id, current.value, StepStatus.REJECTED.value
            )

        instance.validation_status = StepStatus.REJECTED
        instance.rejection_reason = cleaned
        instance.validated_by = None
        instance.validated_at = None
        instance.updated_by_id = caller.id
        self.session.flush()

        self.events.record(
            entity_type="StepInstance",
            entity_id=instance.id,
            event_type=EventType.STEP_REJECTED,
            caller=caller,
            dossier_id=dossier.id,
            payload={"from": current.value, "reason": cleaned},
        )
        self.notifications.notify(
            dossier.client_id,
            NotificationTemplate.STEP_REJECTED,
            {"dossier_id": dossier.id, "step_instance_id": instance.id, "reason": cleaned},
        )
        logger.info(
            "step_rejected",
            extra={"step_instance_id": str(instance.id), "reviewer_id": str(caller.id)},
        )
        return instance

    def force_complete_step(
        self,
        step_instance_id: UUID,
        caller: Caller,
        note: str | None = None,
        dossier_id: UUID | None = None,
    ) -> StepInstance:
        """Mark a step complete without approval (validation status unchanged)."""
        instance, dossier = self.access.step_instance(
            step_instance_id, caller, "force_complete_step", dossier_id=dossier_id, lock=True
        )
        if instance.is_completed:
            raise StepAlreadyCompletedError(instance.id)

        now = self.clock.now()
        instance.completed_at = now
        instance.force_completed = True
        if instance.started_at is None:
            instance.started_at = now
        instance.updated_by_id = caller.id
        self.session.flush()

        self.record_completion(instance, dossier, caller, manual=True, note=note)
        return instance

    def record_completion(
        self,
        instance: StepInstance,
        dossier: Dossier,
        caller: Caller,
        manual: bool,
        note: str | None = None,
        notify: bool = True,
    ) -> None:
        """Event, client notification and dossier advance after a completion."""
        self.events.record(
            entity_type="StepInstance",
            entity_id=instance.id,
            event_type=EventType.STEP_COMPLETED,
            caller=caller,
            dossier_id=dossier.id,
            payload={"manual": manual, "note": note, "status": instance.status.value},
        )
        if notify:
            self.notifications.notify(
                dossier.client_id,
                NotificationTemplate.STEP_COMPLETED,
                {"dossier_id": dossier.id, "step_instance_id": instance.id},
            )
        logger.info(
            "step_completed",
            extra={
                "step_instance_id": str(instance.id),
                "manual": manual,
                "completed_by": str(caller.id),
            },
        )
        locked = self.session.execute(
            select(Dossier)
            .where(Dossier.id == dossier.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        self.dossiers.on_step_completed(locked, instance, caller)
