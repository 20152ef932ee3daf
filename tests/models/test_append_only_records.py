"""
Append-only records: events, document versions and document reviews refuse
UPDATE and DELETE at the ORM layer.
"""

import pytest
from sqlalchemy import select

from dossier_kernel.domain.workflow import ReviewDecision
from dossier_kernel.exceptions import ImmutabilityViolationError
from dossier_kernel.models.event import Event
from dossier_kernel.services.document_review import UploadedFile

PDF = UploadedFile("passport.pdf", b"%PDF-1.4 passport scan")


@pytest.fixture
def version(document_tracker, dossier, workflow, client_caller):
    return document_tracker.upload_document(
        dossier.id, workflow.doc_types["PASSPORT"].id, PDF, client_caller
    )


class TestEventImmutability:
    def test_update_refused(self, session, dossier):
        event = session.execute(select(Event).where(Event.dossier_id == dossier.id)).scalars().first()
        event.payload = {"tampered": True}
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "Event"

    def test_delete_refused(self, session, dossier):
        event = session.execute(select(Event).where(Event.dossier_id == dossier.id)).scalars().first()
        session.delete(event)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestDocumentImmutability:
    def test_version_update_refused(self, session, version):
        version.file_name = "renamed.pdf"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "DocumentVersion"

    def test_review_update_refused(self, session, document_tracker, version, agent_caller):
        review = document_tracker.review_document(
            version.document_id, ReviewDecision.APPROVE, agent_caller
        )
        review.notes = "edited afterwards"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_document_status_itself_is_mutable(self, session, document_tracker, version, agent_caller):
        document_tracker.review_document(
            version.document_id, ReviewDecision.REJECT, agent_caller, reason="Photo is blurred"
        )
        document_tracker.review_document(version.document_id, ReviewDecision.APPROVE, agent_caller)
