"""
Tests for DocumentReviewTracker -- uploads, versions and document reviews.

Covers:
- upload_document(): file checks, step linkage, new versions of an
  existing document, OUTDATED marking of earlier client uploads, staff
  uploads auto-approved, closed dossiers
- review_document(): reason policy, append-only review rows, step lock
- list_versions() / download()
"""

from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from dossier_kernel.domain.workflow import DocumentStatus, EventType, ReviewDecision
from dossier_kernel.exceptions import (
    DocumentNotFoundError,
    DocumentTypeNotFoundError,
    DossierClosedError,
    InvalidDocumentError,
    OwnershipMismatchError,
    ParentMismatchError,
    RejectionReasonError,
    RoleNotPermittedError,
    StepLockedError,
)
from dossier_kernel.models.document import Document, DocumentReview, DocumentVersion
from dossier_kernel.models.event import Event
from dossier_kernel.services.document_review import UploadedFile

PDF = UploadedFile("passport.pdf", b"%PDF-1.4 passport scan", "application/pdf")


@pytest.fixture
def passport_type(workflow):
    return workflow.doc_types["PASSPORT"]


@pytest.fixture
def uploaded(document_tracker, dossier, passport_type, client_caller):
    return document_tracker.upload_document(dossier.id, passport_type.id, PDF, client_caller)


class TestUpload:
    def test_first_upload_creates_document_and_version(
        self, session, uploaded, dossier, client_caller, object_store, deterministic_clock
    ):
        document = session.get(Document, uploaded.document_id)

        assert document.dossier_id == dossier.id
        assert document.status == DocumentStatus.PENDING
        assert document.current_version_id == uploaded.id
        assert uploaded.version_number == 1
        assert uploaded.file_size_bytes == len(PDF.content)
        assert uploaded.uploaded_by_type == "USER"
        assert uploaded.uploaded_by_id == client_caller.id
        assert uploaded.uploaded_at == deterministic_clock.now()
        assert object_store.objects[uploaded.file_url] == PDF.content

    def test_upload_records_event(self, session, uploaded, dossier):
        event = session.execute(
            select(Event).where(
                Event.entity_id == uploaded.document_id,
                Event.event_type == EventType.DOCUMENT_UPLOADED,
            )
        ).scalar_one()
        assert event.dossier_id == dossier.id
        assert event.payload["document_type"] == "PASSPORT"
        assert event.payload["version_number"] == 1

    def test_new_version_of_existing_document(
        self, session, document_tracker, uploaded, dossier, passport_type, client_caller,
        agent_caller,
    ):
        document_tracker.review_document(
            uploaded.document_id, ReviewDecision.REJECT, agent_caller, reason="Expired passport"
        )
        second = document_tracker.upload_document(
            dossier.id, passport_type.id,
            UploadedFile("passport-2024.jpg", b"\xff\xd8 jpeg"), client_caller,
            document_id=uploaded.document_id,
        )

        document = session.get(Document, uploaded.document_id)
        assert second.document_id == uploaded.document_id
        assert second.version_number == 2
        assert document.current_version_id == second.id
        assert document.status == DocumentStatus.PENDING

    def test_new_client_document_outdates_previous(
        self, session, document_tracker, uploaded, dossier, passport_type, client_caller
    ):
        replacement = document_tracker.upload_document(
            dossier.id, passport_type.id, PDF, client_caller
        )

        assert replacement.document_id != uploaded.document_id
        assert session.get(Document, uploaded.document_id).status == DocumentStatus.OUTDATED
        assert session.get(Document, replacement.document_id).status == DocumentStatus.PENDING

    def test_staff_upload_is_approved_and_does_not_outdate(
        self, session, document_tracker, uploaded, dossier, passport_type, agent_caller
    ):
        staff = document_tracker.upload_document(dossier.id, passport_type.id, PDF, agent_caller)

        assert staff.uploaded_by_type == "AGENT"
        assert session.get(Document, staff.document_id).status == DocumentStatus.APPROVED
        assert session.get(Document, uploaded.document_id).status == DocumentStatus.PENDING

    @pytest.mark.parametrize(
        "file, reason",
        [
            (UploadedFile("passport.pdf", b""), "empty file"),
            (UploadedFile("passport.png", b"png"), "extension .png not in pdf, jpg"),
            (UploadedFile("passport.pdf", b"x" * (1024 * 1024 + 1)), "file exceeds 1 MB"),
        ],
    )
    def test_file_checks(self, document_tracker, dossier, passport_type, client_caller, file, reason):
        with pytest.raises(InvalidDocumentError) as exc_info:
            document_tracker.upload_document(dossier.id, passport_type.id, file, client_caller)
        assert exc_info.value.reason == reason

    def test_unknown_document_type(self, document_tracker, dossier, client_caller):
        with pytest.raises(DocumentTypeNotFoundError):
            document_tracker.upload_document(dossier.id, uuid4(), PDF, client_caller)

    def test_other_client_refused(self, document_tracker, dossier, passport_type, other_client_caller):
        with pytest.raises(OwnershipMismatchError):
            document_tracker.upload_document(dossier.id, passport_type.id, PDF, other_client_caller)

    def test_closed_dossier_refuses_uploads(
        self, document_tracker, dossier_service, dossier, passport_type, agent_caller,
        client_caller,
    ):
        dossier_service.cancel(dossier.id, "client request", agent_caller)
        with pytest.raises(DossierClosedError):
            document_tracker.upload_document(dossier.id, passport_type.id, PDF, client_caller)

    def test_approved_step_refuses_uploads(
        self, step_service, document_tracker, dossier, instance_of, passport_type,
        agent_caller, client_caller,
    ):
        intake = instance_of(dossier, "intake")
        step_service.submit_step(
            intake.id, {"company_name": "Acme Holdings", "email": "owner@acme.test"}, client_caller
        )
        identity = instance_of(dossier, "identity")
        step_service.submit_step(identity.id, {}, client_caller)
        document_tracker.upload_document(
            dossier.id, passport_type.id, PDF, agent_caller, step_instance_id=identity.id
        )
        step_service.approve_step(identity.id, agent_caller)

        with pytest.raises(StepLockedError):
            document_tracker.upload_document(
                dossier.id, passport_type.id, PDF, client_caller, step_instance_id=identity.id
            )

    def test_new_version_of_approved_step_document_refused(
        self, session, step_service, document_tracker, dossier, instance_of, passport_type,
        agent_caller, client_caller,
    ):
        intake = instance_of(dossier, "intake")
        step_service.submit_step(
            intake.id, {"company_name": "Acme Holdings", "email": "owner@acme.test"}, client_caller
        )
        identity = instance_of(dossier, "identity")
        step_service.submit_step(identity.id, {}, client_caller)
        first = document_tracker.upload_document(
            dossier.id, passport_type.id, PDF, client_caller, step_instance_id=identity.id
        )
        document_tracker.review_document(first.document_id, ReviewDecision.APPROVE, agent_caller)
        step_service.approve_step(identity.id, agent_caller)

        with pytest.raises(StepLockedError):
            document_tracker.upload_document(
                dossier.id, passport_type.id, PDF, client_caller, document_id=first.document_id
            )

        document = session.get(Document, first.document_id)
        assert document.status == DocumentStatus.APPROVED
        assert document.current_version_id == first.id

    def test_new_version_keeps_its_document_step(
        self, document_tracker, dossier, instance_of, passport_type, client_caller
    ):
        identity = instance_of(dossier, "identity")
        first = document_tracker.upload_document(
            dossier.id, passport_type.id, PDF, client_caller, step_instance_id=identity.id
        )

        with pytest.raises(ParentMismatchError):
            document_tracker.upload_document(
                dossier.id, passport_type.id, PDF, client_caller,
                step_instance_id=instance_of(dossier, "intake").id,
                document_id=first.document_id,
            )

        second = document_tracker.upload_document(
            dossier.id, passport_type.id, PDF, client_caller, document_id=first.document_id
        )
        assert second.version_number == 2

    def test_stored_file_removed_when_version_row_fails(
        self, session, monkeypatch, document_tracker, dossier, passport_type, client_caller,
        object_store, uploaded, captured_logs,
    ):
        real_flush = session.flush

        def failing_flush(*args, **kwargs):
            if any(isinstance(obj, DocumentVersion) for obj in session.new):
                raise OperationalError("INSERT INTO document_versions", {}, Exception("disk full"))
            return real_flush(*args, **kwargs)

        monkeypatch.setattr(session, "flush", failing_flush)
        stored_before = dict(object_store.objects)

        with pytest.raises(OperationalError):
            document_tracker.upload_document(
                dossier.id, passport_type.id, PDF, client_caller, document_id=uploaded.document_id
            )

        assert object_store.objects == stored_before
        assert any(r["message"] == "orphaned_object_removed" for r in captured_logs())


class TestReview:
    def test_approve_appends_review_row(
        self, session, document_tracker, uploaded, agent_caller, deterministic_clock
    ):
        review = document_tracker.review_document(
            uploaded.document_id, ReviewDecision.APPROVE, agent_caller, notes="Matches intake"
        )

        assert review.document_version_id == uploaded.id
        assert review.reviewer_id == agent_caller.id
        assert review.status == DocumentStatus.APPROVED
        assert review.notes == "Matches intake"
        assert review.reviewed_at == deterministic_clock.now()
        assert session.get(Document, uploaded.document_id).status == DocumentStatus.APPROVED

    def test_every_review_is_kept(self, session, document_tracker, uploaded, agent_caller):
        document_tracker.review_document(
            uploaded.document_id, ReviewDecision.REJECT, agent_caller, reason="Photo is blurred"
        )
        document_tracker.review_document(uploaded.document_id, ReviewDecision.APPROVE, agent_caller)

        reviews = session.execute(
            select(DocumentReview).where(DocumentReview.document_version_id == uploaded.id)
        ).scalars().all()
        assert sorted(r.status for r in reviews) == ["APPROVED", "REJECTED"]

    def test_reject_requires_reason(self, session, document_tracker, uploaded, agent_caller):
        with pytest.raises(RejectionReasonError):
            document_tracker.review_document(
                uploaded.document_id, ReviewDecision.REJECT, agent_caller, reason="blurry"
            )
        assert session.get(Document, uploaded.document_id).status == DocumentStatus.PENDING

    def test_client_cannot_review(self, document_tracker, uploaded, client_caller):
        with pytest.raises(RoleNotPermittedError):
            document_tracker.review_document(
                uploaded.document_id, ReviewDecision.APPROVE, client_caller
            )

    def test_unknown_document(self, document_tracker, workflow, agent_caller):
        with pytest.raises(DocumentNotFoundError):
            document_tracker.review_document(uuid4(), ReviewDecision.APPROVE, agent_caller)


class TestReads:
    def test_list_versions_oldest_first(
        self, document_tracker, uploaded, dossier, passport_type, client_caller
    ):
        document_tracker.upload_document(
            dossier.id, passport_type.id, PDF, client_caller, document_id=uploaded.document_id
        )
        versions = document_tracker.list_versions(uploaded.document_id, client_caller)
        assert [v.version_number for v in versions] == [1, 2]

    def test_download_current_version(self, document_tracker, uploaded, client_caller):
        assert document_tracker.download(uploaded.document_id, client_caller) == PDF.content

    def test_other_client_cannot_download(self, document_tracker, uploaded, other_client_caller):
        with pytest.raises(OwnershipMismatchError):
            document_tracker.download(uploaded.document_id, other_client_caller)
