"""
Module: dossier_kernel.selectors.dossier_selector
Responsibility: Read-only views of one dossier: its step instances with
    field values and review counts, its audit trail, and the documents
    delivered to the client by staff.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Step instances come back in template position order.
    - The audit trail is newest first, ordered by (created_at, seq) so that
      events written within the same instant keep their append order.
    - OUTDATED documents are excluded from document counts.

Failure modes:
    - DossierNotFoundError, RoleNotPermittedError, OwnershipMismatchError
      from the caller check.  Absence of data returns empty lists.
"""

from collections import defaultdict
from uuid import UUID

from sqlalchemy import select

from dossier_kernel.domain.dtos import (
    DocumentInfo,
    DocumentVersionInfo,
    EventInfo,
    FieldValueInfo,
    StepInstanceInfo,
)
from dossier_kernel.domain.identity import Caller
from dossier_kernel.domain.workflow import ActorType, DocumentStatus, FieldStatus
from dossier_kernel.models.document import Document, DocumentVersion
from dossier_kernel.models.event import Event
from dossier_kernel.models.step_instance import StepFieldValue, StepInstance
from dossier_kernel.models.template import DocumentType, ProductStep, StepField, StepTemplate
from dossier_kernel.selectors.base import BaseSelector


def _version_info(version: DocumentVersion) -> DocumentVersionInfo:
    return DocumentVersionInfo(
        id=version.id,
        document_id=version.document_id,
        version_number=version.version_number,
        file_url=version.file_url,
        file_name=version.file_name,
        file_size_bytes=version.file_size_bytes,
        mime_type=version.mime_type,
        uploaded_by_type=version.uploaded_by_type,
        uploaded_by_id=version.uploaded_by_id,
        uploaded_at=version.uploaded_at,
    )


class DossierSelector(BaseSelector):
    """
    Selector for dossier read models.

    Contract:
        Every method takes the dossier id and the Caller; results are frozen
        DTOs from domain/dtos.py.
    """

    def step_instances_with_fields(
        self, dossier_id: UUID, caller: Caller
    ) -> list[StepInstanceInfo]:
        """Step instances in template order, with field values and counts."""
        dossier = self._readable_dossier(dossier_id, caller)

        rows = self.session.execute(
            select(StepInstance, StepTemplate, ProductStep.position)
            .join(StepTemplate, StepTemplate.id == StepInstance.step_id)
            .join(
                ProductStep,
                (ProductStep.step_id == StepInstance.step_id)
                & (ProductStep.product_id == dossier.product_id),
            )
            .where(StepInstance.dossier_id == dossier.id)
            .order_by(ProductStep.position)
        ).all()
        if not rows:
            return []
        instance_ids = [si.id for si, _, _ in rows]

        values_by_instance: dict[UUID, list[FieldValueInfo]] = defaultdict(list)
        value_rows = self.session.execute(
            select(StepFieldValue, StepField)
            .join(StepField, StepField.id == StepFieldValue.step_field_id)
            .where(StepFieldValue.step_instance_id.in_(instance_ids))
            .order_by(StepField.position, StepField.field_key)
        ).all()
        for value, field in value_rows:
            values_by_instance[value.step_instance_id].append(
                FieldValueInfo(
                    id=value.id,
                    step_field_id=field.id,
                    field_key=field.field_key,
                    label=field.label,
                    value=value.value,
                    value_json=value.value_json,
                    status=value.validation_status,
                    rejection_reason=value.rejection_reason,
                    reviewed_by=value.reviewed_by,
                    reviewed_at=value.reviewed_at,
                )
            )

        doc_statuses: dict[UUID, list[str]] = defaultdict(list)
        for step_instance_id, status in self.session.execute(
            select(Document.step_instance_id, Document.status).where(
                Document.step_instance_id.in_(instance_ids),
                Document.status != DocumentStatus.OUTDATED,
            )
        ):
            doc_statuses[step_instance_id].append(status)

        result = []
        for instance, step, position in rows:
            values = values_by_instance.get(instance.id, [])
            statuses = [FieldStatus(v.status) for v in values]
            docs = doc_statuses.get(instance.id, [])
            result.append(
                StepInstanceInfo(
                    id=instance.id,
                    dossier_id=instance.dossier_id,
                    step_id=step.id,
                    step_code=step.code,
                    label=step.label,
                    position=position,
                    actor_type=step.actor_type,
                    status=instance.validation_status,
                    rejection_reason=instance.rejection_reason,
                    started_at=instance.started_at,
                    completed_at=instance.completed_at,
                    force_completed=instance.force_completed,
                    assigned_to=instance.assigned_to,
                    validated_by=instance.validated_by,
                    validated_at=instance.validated_at,
                    fields=tuple(values),
                    approved_fields=statuses.count(FieldStatus.APPROVED),
                    rejected_fields=statuses.count(FieldStatus.REJECTED),
                    pending_fields=statuses.count(FieldStatus.PENDING),
                    documents=len(docs),
                    approved_documents=sum(
                        1 for s in docs if DocumentStatus(s) is DocumentStatus.APPROVED
                    ),
                )
            )
        return result

    def audit_trail(self, dossier_id: UUID, caller: Caller, limit: int | None = None) -> list[EventInfo]:
        """Events of the dossier, newest first."""
        dossier = self._readable_dossier(dossier_id, caller)
        stmt = (
            select(Event)
            .where(Event.dossier_id == dossier.id)
            .order_by(Event.created_at.desc(), Event.seq.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [
            EventInfo(
                id=e.id,
                seq=e.seq,
                entity_type=e.entity_type,
                entity_id=e.entity_id,
                dossier_id=e.dossier_id,
                event_type=e.event_type,
                actor_type=e.actor_type,
                actor_id=e.actor_id,
                payload=e.payload or {},
                created_at=e.created_at,
            )
            for e in self.session.execute(stmt).scalars()
        ]

    def delivery_history(self, dossier_id: UUID, caller: Caller) -> list[DocumentInfo]:
        """Documents whose current version was uploaded by staff, newest first."""
        dossier = self._readable_dossier(dossier_id, caller)
        rows = self.session.execute(
            select(Document, DocumentVersion, DocumentType.code)
            .join(DocumentVersion, DocumentVersion.id == Document.current_version_id)
            .join(DocumentType, DocumentType.id == Document.document_type_id)
            .where(
                Document.dossier_id == dossier.id,
                DocumentVersion.uploaded_by_type == ActorType.AGENT,
            )
            .order_by(DocumentVersion.uploaded_at.desc(), DocumentVersion.id)
        ).all()
        return [
            DocumentInfo(
                id=document.id,
                dossier_id=document.dossier_id,
                document_type_code=code,
                step_instance_id=document.step_instance_id,
                status=document.status,
                current_version=_version_info(version),
            )
            for document, version, code in rows
        ]
