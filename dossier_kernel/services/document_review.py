"""
DocumentReviewTracker -- versioned documents and their review state.

Responsibility:
    Stores uploaded files through the ObjectStore port, records immutable
    DocumentVersion rows, and records staff decisions as append-only
    DocumentReview rows against the current version.

Architecture position:
    Kernel > Services -- imperative shell.  Used by client upload flows,
    staff review tooling and DocumentDeliveryService.

Invariants enforced:
    - Version numbers start at 1 and increase by one.  The document row is
      locked (``FOR UPDATE``) while the next number is allocated, and
      uq_document_version_number backs it up.
    - The current-version pointer is repointed in the same flush as the
      version insert.
    - A client upload without ``document_id`` always creates a new
      Document; earlier live documents of the same (dossier, type, step)
      become OUTDATED so the approval gate only considers the latest one.
    - Staff uploads (AGENT) are auto-APPROVED without a review row; client
      uploads start PENDING.
    - REJECT requires a reason meeting the ReviewPolicy minimum.
    - Only the object-store reference is persisted, never file bytes.
    - A stored file whose version row fails to flush is deleted again.

Failure modes:
    - DocumentTypeNotFoundError, DocumentNotFoundError, ParentMismatchError.
    - InvalidDocumentError: size or extension not allowed for the type.
    - DocumentHasNoVersionError: reviewing a document without versions.
    - StepLockedError: uploading to / reviewing for an APPROVED step,
      including a new version of a document that belongs to one.
    - ParentMismatchError: a new version names a step instance other than
      the one its document belongs to.
"""

from dataclasses import dataclass
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dossier_kernel.domain.clock import Clock
from dossier_kernel.domain.identity import Caller
from dossier_kernel.domain.ports import ObjectStore
from dossier_kernel.domain.review_policy import ReviewPolicy
from dossier_kernel.domain.workflow import (
    DocumentStatus,
    DossierStatus,
    EventType,
    ReviewDecision,
    StepStatus,
)
from dossier_kernel.exceptions import (
    DocumentHasNoVersionError,
    DocumentTypeNotFoundError,
    DossierClosedError,
    InvalidDocumentError,
    ParentMismatchError,
    StepLockedError,
)
from dossier_kernel.logging_config import get_logger
from dossier_kernel.models.document import Document, DocumentReview, DocumentVersion
from dossier_kernel.models.dossier import Dossier
from dossier_kernel.models.step_instance import StepInstance
from dossier_kernel.models.template import DocumentType
from dossier_kernel.services.access import DossierAccess
from dossier_kernel.services.base import BaseService
from dossier_kernel.services.event_log import EventLogService

logger = get_logger("services.document_review")

_MB = 1024 * 1024


@dataclass(frozen=True)
class UploadedFile:
    file_name: str
    content: bytes
    mime_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return self.file_name.rsplit(".", 1)[-1].lower() if "." in self.file_name else ""


class DocumentReviewTracker(BaseService):
    def __init__(
        self,
        session: Session,
        object_store: ObjectStore,
        clock: Clock | None = None,
        policy: ReviewPolicy | None = None,
        events: EventLogService | None = None,
    ):
        super().__init__(session, clock)
        self.object_store = object_store
        self.policy = policy or ReviewPolicy()
        self.access = DossierAccess(session)
        self.events = events or EventLogService(session, self.clock)

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload_document(
        self,
        dossier_id: UUID,
        document_type_id: UUID,
        file: UploadedFile,
        caller: Caller,
        step_instance_id: UUID | None = None,
        document_id: UUID | None = None,
    ) -> DocumentVersion:
        """
        Store a file and record it as a new document version.

        Returns:
            The new DocumentVersion (its document is ``version.document_id``).
        """
        dossier = self.access.dossier(dossier_id, caller, "upload_document")
        if DossierStatus(dossier.status) is DossierStatus.CLOSED:
            raise DossierClosedError(dossier.id, dossier.status)

        doc_type = self.session.get(DocumentType, document_type_id)
        if doc_type is None:
            raise DocumentTypeNotFoundError(document_type_id)
        self._check_file(doc_type, file)

        if document_id is not None:
            document, _ = self.access.document(
                document_id, caller, "upload_document", dossier_id=dossier.id
            )
            if step_instance_id is not None and step_instance_id != document.step_instance_id:
                raise ParentMismatchError(
                    "Document", document.id, step_instance_id, document.step_instance_id
                )
            step_instance_id = document.step_instance_id

        if step_instance_id is not None:
            instance, _ = self.access.step_instance(
                step_instance_id, caller, "upload_document", dossier_id=dossier.id, lock=True
            )
            if instance.status is StepStatus.APPROVED:
                raise StepLockedError(instance.id)

        if document_id is not None:
            document, _ = self.access.document(
                document_id, caller, "upload_document", dossier_id=dossier.id, lock=True
            )
            if document.document_type_id != doc_type.id:
                raise InvalidDocumentError(doc_type.code, "document type mismatch")
            version_number = self._next_version_number(document.id)
        else:
            document = Document(
                dossier_id=dossier.id,
                document_type_id=doc_type.id,
                step_instance_id=step_instance_id,
                status=DocumentStatus.PENDING,
                created_by_id=caller.id,
            )
            self.session.add(document)
            self.session.flush()
            if not caller.is_staff:
                self._outdate_previous(document)
            version_number = 1

        return self._add_version(dossier, document, doc_type, file, caller, version_number)

    def _check_file(self, doc_type: DocumentType, file: UploadedFile) -> None:
        if file.size <= 0:
            raise InvalidDocumentError(doc_type.code, "empty file")
        if file.size > doc_type.max_file_size_mb * _MB:
            raise InvalidDocumentError(
                doc_type.code, f"file exceeds {doc_type.max_file_size_mb} MB"
            )
        allowed = [ext.lower().lstrip(".") for ext in (doc_type.allowed_extensions or [])]
        if allowed and file.extension not in allowed:
            raise InvalidDocumentError(
                doc_type.code, f"extension .{file.extension} not in {', '.join(allowed)}"
            )

    def _next_version_number(self, document_id: UUID) -> int:
        current = self.session.execute(
            select(func.max(DocumentVersion.version_number)).where(
                DocumentVersion.document_id == document_id
            )
        ).scalar_one()
        return (current or 0) + 1

    def _outdate_previous(self, document: Document) -> None:
        """Mark earlier live documents of the same (dossier, type, step) OUTDATED."""
        stmt = (
            update(Document)
            .where(
                Document.dossier_id == document.dossier_id,
                Document.document_type_id == document.document_type_id,
                Document.id != document.id,
                Document.status != DocumentStatus.OUTDATED,
            )
            .values(status=DocumentStatus.OUTDATED)
            .execution_options(synchronize_session="fetch")
        )
        if document.step_instance_id is None:
            stmt = stmt.where(Document.step_instance_id.is_(None))
        else:
            stmt = stmt.where(Document.step_instance_id == document.step_instance_id)
        outdated = self.session.execute(stmt).rowcount
        if outdated:
            logger.info(
                "documents_outdated",
                extra={"document_id": str(document.id), "outdated_count": outdated},
            )

    def _add_version(
        self,
        dossier: Dossier,
        document: Document,
        doc_type: DocumentType,
        file: UploadedFile,
        caller: Caller,
        version_number: int,
    ) -> DocumentVersion:
        key = f"dossiers/{dossier.id}/{document.id}/v{version_number}-{uuid4().hex[:8]}.{file.extension}"
        url = self.object_store.put(key, file.content)
        now = self.clock.now()

        version = DocumentVersion(
            document_id=document.id,
            version_number=version_number,
            file_url=url,
            file_name=file.file_name,
            file_size_bytes=file.size,
            mime_type=file.mime_type,
            uploaded_by_type=caller.actor_type,
            uploaded_by_id=caller.id,
            uploaded_at=now,
        )
        self.session.add(version)
        try:
            self.session.flush()
            document.current_version_id = version.id
            document.status = DocumentStatus.APPROVED if caller.is_staff else DocumentStatus.PENDING
            document.updated_by_id = caller.id
            self.session.flush()
        except SQLAlchemyError:
            self._discard_object(url)
            raise

        self.events.record(
            entity_type="Document",
            entity_id=document.id,
            event_type=EventType.DOCUMENT_UPLOADED,
            caller=caller,
            dossier_id=dossier.id,
            payload={
                "document_type": doc_type.code,
                "version_number": version_number,
                "file_name": file.file_name,
                "step_instance_id": document.step_instance_id,
                "status": document.status,
            },
        )
        logger.info(
            "document_version_uploaded",
            extra={
                "document_id": str(document.id),
                "version_number": version_number,
                "uploaded_by_type": caller.actor_type.value,
            },
        )
        return version

    def _discard_object(self, url: str) -> None:
        """Remove a stored file whose version row could not be written."""
        try:
            self.object_store.delete(url)
        except Exception:
            logger.warning("orphaned_object_not_removed", extra={"file_url": url}, exc_info=True)
            return
        logger.info("orphaned_object_removed", extra={"file_url": url})

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def review_document(
        self,
        document_id: UUID,
        decision: ReviewDecision,
        caller: Caller,
        reason: str | None = None,
        notes: str | None = None,
        dossier_id: UUID | None = None,
    ) -> DocumentReview:
        """Approve or reject the current version of a document (staff only)."""
        decision = ReviewDecision(decision)
        document, dossier = self.access.document(
            document_id, caller, "review_document", dossier_id=dossier_id
        )
        if document.step_instance_id is not None:
            instance, _ = self.access.step_instance(
                document.step_instance_id, caller, "review_document", lock=True
            )
            if instance.status is StepStatus.APPROVED:
                raise StepLockedError(instance.id)
        document, _ = self.access.document(
            document_id, caller, "review_document", lock=True
        )
        if document.current_version_id is None:
            raise DocumentHasNoVersionError(document.id)

        cleaned_reason = (
            self.policy.validate_rejection_reason(reason)
            if decision is ReviewDecision.REJECT
            else None
        )

        now = self.clock.now()
        review = DocumentReview(
            document_version_id=document.current_version_id,
            reviewer_id=caller.id,
            status=decision.document_status,
            reason=cleaned_reason,
            notes=notes,
            reviewed_at=now,
        )
        self.session.add(review)
        document.status = decision.document_status
        document.updated_by_id = caller.id
        self.session.flush()

        self.events.record(
            entity_type="Document",
            entity_id=document.id,
            event_type=EventType.DOCUMENT_REVIEWED,
            caller=caller,
            dossier_id=dossier.id,
            payload={
                "document_version_id": document.current_version_id,
                "decision": decision.value,
                "reason": cleaned_reason,
            },
        )
        logger.info(
            "document_reviewed",
            extra={
                "document_id": str(document.id),
                "decision": decision.value,
                "reviewer_id": str(caller.id),
            },
        )
        return review

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_versions(self, document_id: UUID, caller: Caller) -> list[DocumentVersion]:
        """All versions of a document, oldest first."""
        document, _ = self.access.document(document_id, caller, "download_document")
        return list(
            self.session.execute(
                select(DocumentVersion)
                .where(DocumentVersion.document_id == document.id)
                .order_by(DocumentVersion.version_number)
            ).scalars()
        )

    def download(self, document_id: UUID, caller: Caller) -> bytes:
        """Bytes of the current version, fetched from the object store."""
        document, _ = self.access.document(document_id, caller, "download_document")
        if document.current_version_id is None:
            raise DocumentHasNoVersionError(document.id)
        version = self.session.get(DocumentVersion, document.current_version_id)
        return self.object_store.get(version.file_url)
