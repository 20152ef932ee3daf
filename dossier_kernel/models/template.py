"""
Module: dossier_kernel.models.template
Responsibility: ORM persistence for the product workflow templates: products,
    template steps, their ordering per product, custom fields, document types
    and required document types per product step.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ enums only.

Invariants enforced:
    - A product lists each step once and each position once
      (uq_product_step, uq_product_step_position).
    - field_key is unique within a step (uq_step_field_key).
    - Template rows are external configuration.  They are written only by
      the catalog installer, never by workflow operations.

Failure modes:
    - IntegrityError on duplicate codes or positions (installer bug).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dossier_kernel.db.base import TrackedBase, UUIDString
from dossier_kernel.domain.field_rules import FieldRule
from dossier_kernel.domain.workflow import DossierStatus, DossierType, StepActorType


class Product(TrackedBase):
    """A purchasable service; defines the ordered step template of its dossiers."""

    __tablename__ = "products"
    __table_args__ = (UniqueConstraint("code", name="uq_product_code"),)

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    dossier_type: Mapped[DossierType] = mapped_column(
        String(20), nullable=False, default=DossierType.LLC
    )
    initial_status: Mapped[DossierStatus] = mapped_column(
        String(30), nullable=False, default=DossierStatus.QUALIFICATION
    )
    price_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Product {self.code}>"


class StepTemplate(TrackedBase):
    """A reusable step definition (label, actor type)."""

    __tablename__ = "steps"
    __table_args__ = (UniqueConstraint("code", name="uq_step_code"),)

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    actor_type: Mapped[StepActorType] = mapped_column(
        String(10), nullable=False, default=StepActorType.CLIENT
    )

    def __repr__(self) -> str:
        return f"<StepTemplate {self.code} ({self.actor_type})>"


class ProductStep(TrackedBase):
    """Position of a step within a product's template."""

    __tablename__ = "product_steps"
    __table_args__ = (
        UniqueConstraint("product_id", "step_id", name="uq_product_step"),
        UniqueConstraint("product_id", "position", name="uq_product_step_position"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False, index=True
    )
    step_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("steps.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class StepField(TrackedBase):
    """A custom field a client fills in for a step."""

    __tablename__ = "step_fields"
    __table_args__ = (
        UniqueConstraint("step_id", "field_key", name="uq_step_field_key"),
    )

    step_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("steps.id"), nullable=False, index=True
    )
    field_key: Mapped[str] = mapped_column(String(100), nullable=False)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    field_type: Mapped[str] = mapped_column(String(20), nullable=False, default="text")
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    min_length: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_length: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    max_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    pattern: Mapped[str | None] = mapped_column(String(500), nullable=True)
    options: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def to_rule(self) -> FieldRule:
        """Validation rule for this field (options normalized to their values)."""
        options: list[str] = []
        for opt in self.options or []:
            options.append(str(opt["value"]) if isinstance(opt, dict) else str(opt))
        return FieldRule(
            field_key=self.field_key,
            field_type=self.field_type,
            is_required=self.is_required,
            min_length=self.min_length,
            max_length=self.max_length,
            min_value=self.min_value,
            max_value=self.max_value,
            pattern=self.pattern,
            options=tuple(options),
        )


class DocumentType(TrackedBase):
    """A kind of document (passport, articles of organization, ...)."""

    __tablename__ = "document_types"
    __table_args__ = (UniqueConstraint("code", name="uq_document_type_code"),)

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    max_file_size_mb: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    allowed_extensions: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<DocumentType {self.code}>"


class StepDocumentType(TrackedBase):
    """A document type required by a product step."""

    __tablename__ = "step_document_types"
    __table_args__ = (
        UniqueConstraint(
            "product_step_id", "document_type_id", name="uq_step_document_type"
        ),
    )

    product_step_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("product_steps.id"), nullable=False, index=True
    )
    document_type_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("document_types.id"), nullable=False
    )
