"""
Template lookups shared by the workflow services.

Read helpers over the product template tables (steps in position order,
fields of a step, required document types of a product step).  Template
rows are configuration; nothing here writes.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dossier_kernel.models.template import (
    DocumentType,
    ProductStep,
    StepDocumentType,
    StepField,
    StepTemplate,
)


@dataclass(frozen=True)
class TemplateStep:
    product_step_id: UUID
    step_id: UUID
    code: str
    label: str
    actor_type: str
    position: int
    is_required: bool


def ordered_steps(session: Session, product_id: UUID) -> list[TemplateStep]:
    """Template steps of a product, ordered by position."""
    rows = session.execute(
        select(ProductStep, StepTemplate)
        .join(StepTemplate, StepTemplate.id == ProductStep.step_id)
        .where(ProductStep.product_id == product_id)
        .order_by(ProductStep.position)
    ).all()
    return [
        TemplateStep(
            product_step_id=ps.id,
            step_id=st.id,
            code=st.code,
            label=st.label,
            actor_type=st.actor_type,
            position=ps.position,
            is_required=ps.is_required,
        )
        for ps, st in rows
    ]


def step_fields(session: Session, step_id: UUID) -> list[StepField]:
    return list(
        session.execute(
            select(StepField)
            .where(StepField.step_id == step_id)
            .order_by(StepField.position, StepField.field_key)
        ).scalars()
    )


def required_document_types(
    session: Session, product_id: UUID, step_id: UUID
) -> list[DocumentType]:
    return list(
        session.execute(
            select(DocumentType)
            .join(StepDocumentType, StepDocumentType.document_type_id == DocumentType.id)
            .join(ProductStep, ProductStep.id == StepDocumentType.product_step_id)
            .where(ProductStep.product_id == product_id, ProductStep.step_id == step_id)
            .order_by(DocumentType.code)
        ).scalars()
    )
