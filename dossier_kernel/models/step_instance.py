"""
Module: dossier_kernel.models.step_instance
Responsibility: ORM persistence for step instances (one execution of one
    template step within a dossier) and their submitted field values.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ enums only.

Invariants enforced:
    - One instance per (dossier, step): uq_step_instance_dossier_step.
    - One field value per (step instance, field): uq_field_value_instance_field.
      Submission is an upsert against this constraint.
    - (id, dossier_id) is unique so that Dossier.current_step_instance_id can
      reference it with a composite foreign key.
    - completed_at is set iff validation_status is APPROVED or
      force_completed is true.  Maintained by StepInstanceService; see
      StepInstance.completion_consistent.

Failure modes:
    - IntegrityError on concurrent lazy creation of the same instance or
      concurrent first submission of the same field (callers re-read).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dossier_kernel.db.base import TrackedBase, UUIDString
from dossier_kernel.domain.workflow import ActorType, FieldStatus, StepStatus


class StepInstance(TrackedBase):
    __tablename__ = "step_instances"
    __table_args__ = (
        UniqueConstraint("dossier_id", "step_id", name="uq_step_instance_dossier_step"),
        UniqueConstraint("id", "dossier_id", name="uq_step_instance_id_dossier"),
        Index("idx_step_instance_status", "validation_status"),
    )

    dossier_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("dossiers.id"), nullable=False, index=True
    )
    step_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("steps.id"), nullable=False
    )
    validation_status: Mapped[StepStatus] = mapped_column(
        String(20), nullable=False, default=StepStatus.DRAFT
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    force_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assigned_to: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    validated_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def status(self) -> StepStatus:
        return StepStatus(self.validation_status)

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def completion_consistent(self) -> bool:
        """completed_at is set iff APPROVED or force-completed."""
        expected = self.status is StepStatus.APPROVED or bool(self.force_completed)
        return (self.completed_at is not None) == expected

    def __repr__(self) -> str:
        return f"<StepInstance {self.id} ({self.validation_status})>"


class StepFieldValue(TrackedBase):
    __tablename__ = "step_field_values"
    __table_args__ = (
        UniqueConstraint(
            "step_instance_id", "step_field_id", name="uq_field_value_instance_field"
        ),
    )

    step_instance_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("step_instances.id"), nullable=False, index=True
    )
    step_field_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("step_fields.id"), nullable=False
    )
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    value_json: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    validation_status: Mapped[FieldStatus] = mapped_column(
        String(20), nullable=False, default=FieldStatus.PENDING
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    submitted_by_type: Mapped[ActorType] = mapped_column(
        String(10), nullable=False, default=ActorType.USER
    )
    submitted_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    @property
    def status(self) -> FieldStatus:
        return FieldStatus(self.validation_status)

    def __repr__(self) -> str:
        return f"<StepFieldValue {self.step_field_id} ({self.validation_status})>"
