"""
Module: dossier_kernel.models.document
Responsibility: ORM persistence for documents, their immutable versions and
    their append-only review records.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ enums only.

Invariants enforced:
    - Version numbers of a document start at 1 and increase by exactly one
      (uq_document_version_number backs the allocation done under the
      document row lock).
    - DocumentVersion and DocumentReview rows are never updated or deleted
      (ORM listeners in db/immutability.py).
    - Document.current_version_id always points at the highest version.
    - Document.status reflects only the latest review of the current
      version; a new version resets it (PENDING, or APPROVED for staff
      uploads).
    - Only the object-store reference (file_url) is stored, never bytes.

Audit relevance:
    DocumentReview preserves every decision with reviewer, reason and the
    exact version that was reviewed.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dossier_kernel.db.base import Base, TrackedBase, UUIDString
from dossier_kernel.domain.workflow import ActorType, DocumentStatus


class Document(TrackedBase):
    __tablename__ = "documents"
    __table_args__ = (
        Index("idx_document_dossier_type", "dossier_id", "document_type_id"),
    )

    dossier_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("dossiers.id"), nullable=False
    )
    document_type_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("document_types.id"), nullable=False
    )
    # Null for ad-hoc / manual deliveries
    step_instance_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("step_instances.id"), nullable=True, index=True
    )
    status: Mapped[DocumentStatus] = mapped_column(
        String(20), nullable=False, default=DocumentStatus.PENDING
    )
    current_version_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("document_versions.id", use_alter=True, name="fk_document_current_version"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Document {self.id} ({self.status})>"


class DocumentVersion(Base):
    """Immutable file snapshot of a document."""

    __tablename__ = "document_versions"
    __table_args__ = (
        UniqueConstraint("document_id", "version_number", name="uq_document_version_number"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("documents.id"), nullable=False
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    file_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    uploaded_by_type: Mapped[ActorType] = mapped_column(String(10), nullable=False)
    uploaded_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<DocumentVersion {self.document_id} v{self.version_number}>"


class DocumentReview(Base):
    """Append-only review decision on one document version."""

    __tablename__ = "document_reviews"

    document_version_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("document_versions.id"), nullable=False, index=True
    )
    reviewer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[DocumentStatus] = mapped_column(String(20), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime] = mapped_column(nullable=False)
