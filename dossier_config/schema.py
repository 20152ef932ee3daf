"""
WorkflowCatalog schema.

Defines the human-authored, reviewable source artifact for product workflow
templates.  YAML files are parsed into these types by the loader and
written to the template tables by the installer.

Steps and document types are shared across products and referenced by
code; each product lists its steps in order, with the document types each
step requires for that product.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class FieldDef:
    """A custom field of a step."""

    key: str
    label: str
    field_type: str = "text"
    required: bool = False
    min_length: int | None = None
    max_length: int | None = None
    min_value: Decimal | None = None
    max_value: Decimal | None = None
    pattern: str | None = None
    options: tuple[dict[str, Any], ...] = ()  # {"value": ..., "label": ...}


@dataclass(frozen=True)
class DocumentTypeDef:
    code: str
    label: str
    description: str | None = None
    max_file_size_mb: int = 10
    allowed_extensions: tuple[str, ...] = ()


@dataclass(frozen=True)
class StepDef:
    code: str
    label: str
    description: str | None = None
    actor_type: str = "CLIENT"  # CLIENT or ADMIN
    fields: tuple[FieldDef, ...] = ()


@dataclass(frozen=True)
class ProductStepDef:
    """A step's place in a product, with the document types it requires there."""

    step: str
    required: bool = True
    document_types: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProductDef:
    code: str
    name: str
    dossier_type: str = "LLC"
    initial_status: str = "QUALIFICATION"
    price_amount: Decimal = Decimal("0")
    currency: str = "USD"
    active: bool = True
    steps: tuple[ProductStepDef, ...] = ()


@dataclass(frozen=True)
class ReviewPolicyDef:
    rejection_reason_min_length: int = 10


@dataclass(frozen=True)
class WorkflowCatalog:
    """A complete, versioned set of workflow templates."""

    catalog_id: str
    version: str
    document_types: tuple[DocumentTypeDef, ...] = ()
    steps: tuple[StepDef, ...] = ()
    products: tuple[ProductDef, ...] = ()
    review_policy: ReviewPolicyDef = field(default_factory=ReviewPolicyDef)
    checksum: str = ""

    def step(self, code: str) -> StepDef:
        for s in self.steps:
            if s.code == code:
                return s
        raise KeyError(code)

    def product(self, code: str) -> ProductDef:
        for p in self.products:
            if p.code == code:
                return p
        raise KeyError(code)
