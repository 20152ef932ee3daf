"""
DocumentDeliveryService -- staff delivery of documents to a client.

Staff upload one or more files for a dossier (formation certificate, EIN
letter, ...).  Staff uploads are auto-APPROVED.  When an ADMIN step is
given, it is completed once the files are stored.  The client is notified
once per delivery.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dossier_kernel.domain.clock import Clock
from dossier_kernel.domain.identity import Caller
from dossier_kernel.domain.ports import ObjectStore
from dossier_kernel.domain.workflow import DossierStatus, EventType, StepActorType
from dossier_kernel.exceptions import (
    DossierClosedError,
    InvalidArgumentError,
    NotAdminStepError,
    StepAlreadyCompletedError,
)
from dossier_kernel.logging_config import get_logger
from dossier_kernel.models.document import DocumentVersion
from dossier_kernel.models.template import DocumentType, StepTemplate
from dossier_kernel.services.access import DossierAccess
from dossier_kernel.services.base import BaseService
from dossier_kernel.services.document_review import DocumentReviewTracker, UploadedFile
from dossier_kernel.services.event_log import EventLogService
from dossier_kernel.services.notifications import NotificationDispatcher, NotificationTemplate
from dossier_kernel.services.step_instance_service import StepInstanceService

logger = get_logger("services.document_delivery")

ADMIN_DELIVERED_TYPE_CODE = "ADMIN_DELIVERED"


@dataclass(frozen=True)
class DeliveryFile:
    file: UploadedFile
    document_type_id: UUID | None = None


class DocumentDeliveryService(BaseService):
    def __init__(
        self,
        session: Session,
        object_store: ObjectStore,
        clock: Clock | None = None,
        events: EventLogService | None = None,
        notifications: NotificationDispatcher | None = None,
    ):
        super().__init__(session, clock)
        self.access = DossierAccess(session)
        self.events = events or EventLogService(session, self.clock)
        self.notifications = notifications or NotificationDispatcher()
        self.documents = DocumentReviewTracker(
            session, object_store, self.clock, events=self.events
        )
        self.steps = StepInstanceService(
            session, self.clock, events=self.events, notifications=self.notifications
        )

    def deliver_documents(
        self,
        dossier_id: UUID,
        files: list[DeliveryFile],
        caller: Caller,
        step_instance_id: UUID | None = None,
        message: str | None = None,
    ) -> list[DocumentVersion]:
        if not files:
            raise InvalidArgumentError("At least one file is required for a delivery")

        dossier = self.access.dossier(dossier_id, caller, "deliver_documents")
        if DossierStatus(dossier.status) is DossierStatus.CLOSED:
            raise DossierClosedError(dossier.id, dossier.status)

        instance = None
        if step_instance_id is not None:
            instance, _ = self.access.step_instance(
                step_instance_id, caller, "deliver_documents", dossier_id=dossier.id, lock=True
            )
            actor_type = self.session.execute(
                select(StepTemplate.actor_type).where(StepTemplate.id == instance.step_id)
            ).scalar_one()
            if StepActorType(actor_type) is not StepActorType.ADMIN:
                raise NotAdminStepError(instance.id, actor_type)
            if instance.is_completed:
                raise StepAlreadyCompletedError(instance.id)

        versions = []
        for item in files:
            type_id = item.document_type_id or self._generic_type(caller).id
            versions.append(
                self.documents.upload_document(
                    dossier.id,
                    type_id,
                    item.file,
                    caller,
                    step_instance_id=instance.id if instance is not None else None,
                )
            )

        self.events.record(
            entity_type="Dossier",
            entity_id=dossier.id,
            event_type=EventType.DOCUMENT_DELIVERED,
            caller=caller,
            dossier_id=dossier.id,
            payload={
                "document_ids": [v.document_id for v in versions],
                "file_names": [item.file.file_name for item in files],
                "step_instance_id": instance.id if instance is not None else None,
                "message": message,
            },
        )

        if instance is not None:
            now = self.clock.now()
            instance.completed_at = now
            instance.force_completed = True
            if instance.started_at is None:
                instance.started_at = now
            instance.updated_by_id = caller.id
            self.session.flush()
            self.steps.record_completion(
                instance, dossier, caller, manual=True, note=message, notify=False
            )
            template = NotificationTemplate.ADMIN_STEP_COMPLETED
        else:
            template = NotificationTemplate.ADMIN_DOCUMENT_DELIVERED

        self.notifications.notify(
            dossier.client_id,
            template,
            {
                "dossier_id": dossier.id,
                "document_count": len(versions),
                "step_instance_id": instance.id if instance is not None else None,
                "message": message,
            },
        )
        logger.info(
            "documents_delivered",
            extra={
                "dossier_id": str(dossier.id),
                "document_count": len(versions),
                "step_completed": instance is not None,
            },
        )
        return versions

    def _generic_type(self, caller: Caller) -> DocumentType:
        """Get-or-create the catch-all type for untyped deliveries."""
        stmt = select(DocumentType).where(DocumentType.code == ADMIN_DELIVERED_TYPE_CODE)
        doc_type = self.session.execute(stmt).scalar_one_or_none()
        if doc_type is not None:
            return doc_type

        savepoint = self.session.begin_nested()
        try:
            doc_type = DocumentType(
                code=ADMIN_DELIVERED_TYPE_CODE,
                label="Delivered document",
                description="Document delivered by staff",
                max_file_size_mb=50,
                allowed_extensions=None,
                created_by_id=caller.id,
            )
            self.session.add(doc_type)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            doc_type = self.session.execute(stmt).scalar_one()
        return doc_type
