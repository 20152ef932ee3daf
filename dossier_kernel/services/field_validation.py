"""
FieldValidationTracker -- per-field submit and review state.

Responsibility:
    Upserts submitted custom-field values for a step instance and records
    staff approve/reject decisions on them.

Architecture position:
    Kernel > Services -- imperative shell.  Used directly by staff tooling
    (``review_field``) and by StepInstanceService.submit_step.

Invariants enforced:
    - Exactly one value per (step instance, field): insert inside a
      SAVEPOINT, and on a uniqueness violation re-read and update.
    - A submitted value is always PENDING, with reason/reviewer cleared.
    - REJECT requires a reason meeting the ReviewPolicy minimum.
    - Decisions lock the parent step instance row first, so they serialize
      with StepInstanceService.approve_step; the approval gate therefore
      always sees the latest decision.
    - Fields of an APPROVED step are frozen (StepLockedError).

Failure modes:
    - FieldNotFoundError: field is not part of the instance's template step.
    - InvalidFieldValueError: value breaks the field rules.
    - RejectionReasonError: missing/short reason.
    - RoleNotPermittedError / OwnershipMismatchError: caller checks.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dossier_kernel.domain.clock import Clock
from dossier_kernel.domain.field_rules import to_storage, validate_field_value
from dossier_kernel.domain.identity import Caller
from dossier_kernel.domain.review_policy import ReviewPolicy
from dossier_kernel.domain.workflow import EventType, FieldStatus, ReviewDecision, StepStatus
from dossier_kernel.exceptions import FieldNotFoundError, InvalidFieldValueError, StepLockedError
from dossier_kernel.logging_config import get_logger
from dossier_kernel.models.step_instance import StepFieldValue, StepInstance
from dossier_kernel.models.template import StepField
from dossier_kernel.services.access import DossierAccess
from dossier_kernel.services.base import BaseService
from dossier_kernel.services.event_log import EventLogService

logger = get_logger("services.field_validation")


class FieldValidationTracker(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: ReviewPolicy | None = None,
        events: EventLogService | None = None,
    ):
        super().__init__(session, clock)
        self.policy = policy or ReviewPolicy()
        self.access = DossierAccess(session)
        self.events = events or EventLogService(session, self.clock)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_field_value(
        self,
        step_instance_id: UUID,
        field_id: UUID,
        value: Any,
        caller: Caller,
    ) -> StepFieldValue:
        """Upsert one value; status resets to PENDING."""
        instance, _ = self.access.step_instance(
            step_instance_id, caller, "submit_field_value", lock=True
        )
        if instance.status is StepStatus.APPROVED:
            raise StepLockedError(instance.id)

        field = self.session.execute(
            select(StepField).where(
                StepField.id == field_id,
                StepField.step_id == instance.step_id,
            )
        ).scalar_one_or_none()
        if field is None:
            raise FieldNotFoundError(field_id, step_instance_id)

        return self.upsert_value(instance, field, value, caller)

    def upsert_value(
        self,
        instance: StepInstance,
        field: StepField,
        value: Any,
        caller: Caller,
    ) -> StepFieldValue:
        """
        Validate and write a value for an already-authorized instance.

        Callers must have resolved ``instance`` through DossierAccess.
        """
        errors = validate_field_value(field.to_rule(), value)
        if errors:
            raise InvalidFieldValueError(field.field_key, errors)

        text, json_value = to_storage(value)
        existing = self._find(instance.id, field.id)

        if existing is None:
            savepoint = self.session.begin_nested()
            try:
                existing = StepFieldValue(
                    step_instance_id=instance.id,
                    step_field_id=field.id,
                    value=text,
                    value_json=json_value,
                    validation_status=FieldStatus.PENDING,
                    submitted_by_type=caller.actor_type,
                    submitted_by_id=caller.id,
                    created_by_id=caller.id,
                )
                self.session.add(existing)
                self.session.flush()
                savepoint.commit()
                logger.debug(
                    "field_value_created",
                    extra={"field_key": field.field_key, "step_instance_id": str(instance.id)},
                )
                return existing
            except IntegrityError:
                savepoint.rollback()
                logger.info(
                    "field_value_insert_race",
                    extra={"field_key": field.field_key, "step_instance_id": str(instance.id)},
                )
                existing = self._find(instance.id, field.id)
                if existing is None:
                    raise

        existing.value = text
        existing.value_json = json_value
        existing.validation_status = FieldStatus.PENDING
        existing.rejection_reason = None
        existing.reviewed_by = None
        existing.reviewed_at = None
        existing.submitted_by_type = caller.actor_type
        existing.submitted_by_id = caller.id
        existing.updated_by_id = caller.id
        self.session.flush()
        logger.debug(
            "field_value_updated",
            extra={"field_key": field.field_key, "step_instance_id": str(instance.id)},
        )
        return existing

    def _find(self, step_instance_id: UUID, field_id: UUID) -> StepFieldValue | None:
        return self.session.execute(
            select(StepFieldValue)
            .where(
                StepFieldValue.step_instance_id == step_instance_id,
                StepFieldValue.step_field_id == field_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def review_field(
        self,
        field_value_id: UUID,
        decision: ReviewDecision,
        caller: Caller,
        reason: str | None = None,
        dossier_id: UUID | None = None,
    ) -> StepFieldValue:
        """Approve or reject one submitted value (staff only)."""
        decision = ReviewDecision(decision)
        value, instance, dossier = self.access.field_value(
            field_value_id, caller, "review_field", dossier_id=dossier_id, lock_step=True
        )
        if instance.status is StepStatus.APPROVED:
            raise StepLockedError(instance.id)

        if decision is ReviewDecision.REJECT:
            cleaned_reason = self.policy.validate_rejection_reason(reason)
        else:
            cleaned_reason = None

        now = self.clock.now()
        value.validation_status = decision.field_status
        value.rejection_reason = cleaned_reason
        value.reviewed_by = caller.id
        value.reviewed_at = now
        value.updated_by_id = caller.id
        self.session.flush()

        field_key = self.session.execute(
            select(StepField.field_key).where(StepField.id == value.step_field_id)
        ).scalar_one()

        self.events.record(
            entity_type="StepFieldValue",
            entity_id=value.id,
            event_type=EventType.FIELD_REVIEWED,
            caller=caller,
            dossier_id=dossier.id,
            payload={
                "step_instance_id": instance.id,
                "field_key": field_key,
                "decision": decision.value,
                "rejection_reason": cleaned_reason,
            },
        )
        logger.info(
            "field_reviewed",
            extra={
                "field_value_id": str(value.id),
                "field_key": field_key,
                "decision": decision.value,
                "reviewer_id": str(caller.id),
            },
        )
        return value
