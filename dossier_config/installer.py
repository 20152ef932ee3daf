"""
Catalog installer (``dossier_config.installer``).

Writes a WorkflowCatalog into the template tables (products, steps,
step fields, document types, product steps and their required document
types), matching rows by code.  Running it twice with the same catalog
changes nothing.  Flush-only: the caller commits.

Rows referenced by dossier data are never deleted: a field that already
has submitted values is kept even if the catalog no longer lists it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from dossier_config.schema import DocumentTypeDef, FieldDef, ProductDef, StepDef, WorkflowCatalog
from dossier_kernel.logging_config import get_logger
from dossier_kernel.models.step_instance import StepFieldValue
from dossier_kernel.models.template import (
    DocumentType,
    Product,
    ProductStep,
    StepDocumentType,
    StepField,
    StepTemplate,
)

logger = get_logger("config.installer")


@dataclass
class InstallSummary:
    catalog_id: str
    checksum: str
    created: dict[str, int] = field(default_factory=dict)
    updated: dict[str, int] = field(default_factory=dict)
    removed: dict[str, int] = field(default_factory=dict)

    def bump(self, bucket: dict[str, int], kind: str) -> None:
        bucket[kind] = bucket.get(kind, 0) + 1

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.removed)


def _apply(row, values: dict) -> bool:
    """Set attributes that differ; True if anything changed."""
    changed = False
    for key, value in values.items():
        if getattr(row, key) != value:
            setattr(row, key, value)
            changed = True
    return changed


def install_catalog(session: Session, catalog: WorkflowCatalog, actor_id: UUID) -> InstallSummary:
    """Upsert every template row of ``catalog``."""
    summary = InstallSummary(catalog_id=catalog.catalog_id, checksum=catalog.checksum)

    doc_types = {d.code: _upsert_document_type(session, d, actor_id, summary) for d in catalog.document_types}
    steps = {s.code: _upsert_step(session, s, actor_id, summary) for s in catalog.steps}
    for product_def in catalog.products:
        _upsert_product(session, product_def, steps, doc_types, actor_id, summary)

    session.flush()
    logger.info(
        "catalog_installed",
        extra={
            "catalog_id": catalog.catalog_id,
            "version": catalog.version,
            "checksum": catalog.checksum,
            "created_count": summary.created,
            "updated_count": summary.updated,
            "removed_count": summary.removed,
        },
    )
    return summary


def _upsert(session: Session, model, lookup: dict, values: dict, actor_id: UUID,
            summary: InstallSummary, kind: str):
    row = session.execute(select(model).filter_by(**lookup)).scalar_one_or_none()
    if row is None:
        row = model(**lookup, **values, created_by_id=actor_id)
        session.add(row)
        session.flush()
        summary.bump(summary.created, kind)
    elif _apply(row, values):
        row.updated_by_id = actor_id
        summary.bump(summary.updated, kind)
    return row


def _upsert_document_type(session: Session, d: DocumentTypeDef, actor_id: UUID,
                          summary: InstallSummary) -> DocumentType:
    return _upsert(
        session,
        DocumentType,
        {"code": d.code},
        {
            "label": d.label,
            "description": d.description,
            "max_file_size_mb": d.max_file_size_mb,
            "allowed_extensions": list(d.allowed_extensions) or None,
        },
        actor_id,
        summary,
        "document_types",
    )


def _field_values(f: FieldDef, position: int) -> dict:
    return {
        "label": f.label,
        "field_type": f.field_type,
        "is_required": f.required,
        "min_length": f.min_length,
        "max_length": f.max_length,
        "min_value": f.min_value,
        "max_value": f.max_value,
        "pattern": f.pattern,
        "options": [dict(o) for o in f.options] or None,
        "position": position,
    }


def _upsert_step(session: Session, s: StepDef, actor_id: UUID,
                 summary: InstallSummary) -> StepTemplate:
    step = _upsert(
        session,
        StepTemplate,
        {"code": s.code},
        {"label": s.label, "description": s.description, "actor_type": s.actor_type},
        actor_id,
        summary,
        "steps",
    )
    keys = set()
    for position, f in enumerate(s.fields):
        keys.add(f.key)
        _upsert(
            session,
            StepField,
            {"step_id": step.id, "field_key": f.key},
            _field_values(f, position),
            actor_id,
            summary,
            "step_fields",
        )

    stale = session.execute(
        select(StepField).where(StepField.step_id == step.id, StepField.field_key.not_in(keys))
    ).scalars().all()
    for f in stale:
        in_use = session.execute(
            select(StepFieldValue.id).where(StepFieldValue.step_field_id == f.id).limit(1)
        ).first()
        if in_use:
            logger.warning(
                "catalog_field_kept_in_use",
                extra={"step_code": s.code, "field_key": f.field_key},
            )
            continue
        session.delete(f)
        summary.bump(summary.removed, "step_fields")
    return step


def _upsert_product(
    session: Session,
    p: ProductDef,
    steps: dict[str, StepTemplate],
    doc_types: dict[str, DocumentType],
    actor_id: UUID,
    summary: InstallSummary,
) -> Product:
    product = _upsert(
        session,
        Product,
        {"code": p.code},
        {
            "name": p.name,
            "dossier_type": p.dossier_type,
            "initial_status": p.initial_status,
            "price_amount": p.price_amount,
            "currency": p.currency,
            "active": p.active,
        },
        actor_id,
        summary,
        "products",
    )

    existing = {
        ps.step_id: ps
        for ps in session.execute(
            select(ProductStep).where(ProductStep.product_id == product.id)
        ).scalars()
    }
    wanted_step_ids = {steps[ps.step].id for ps in p.steps}

    for ps in list(existing.values()):
        if ps.step_id not in wanted_step_ids:
            session.execute(
                delete(StepDocumentType).where(StepDocumentType.product_step_id == ps.id)
            )
            session.delete(ps)
            del existing[ps.step_id]
            summary.bump(summary.removed, "product_steps")
    session.flush()

    # Positions are unique per product; park moved rows before renumbering.
    moved = [
        existing[steps[ps.step].id]
        for position, ps in enumerate(p.steps, start=1)
        if steps[ps.step].id in existing and existing[steps[ps.step].id].position != position
    ]
    for offset, row in enumerate(moved, start=1):
        row.position = -offset
    session.flush()

    for position, ps_def in enumerate(p.steps, start=1):
        step = steps[ps_def.step]
        row = existing.get(step.id)
        if row is None:
            row = ProductStep(
                product_id=product.id,
                step_id=step.id,
                position=position,
                is_required=ps_def.required,
                created_by_id=actor_id,
            )
            session.add(row)
            session.flush()
            summary.bump(summary.created, "product_steps")
        elif _apply(row, {"position": position, "is_required": ps_def.required}):
            row.updated_by_id = actor_id
            summary.bump(summary.updated, "product_steps")
        _sync_required_documents(session, row, ps_def.document_types, doc_types, actor_id, summary)

    session.flush()
    return product


def _sync_required_documents(
    session: Session,
    product_step: ProductStep,
    codes: tuple[str, ...],
    doc_types: dict[str, DocumentType],
    actor_id: UUID,
    summary: InstallSummary,
) -> None:
    wanted = {doc_types[c].id for c in codes}
    current = {
        link.document_type_id: link
        for link in session.execute(
            select(StepDocumentType).where(StepDocumentType.product_step_id == product_step.id)
        ).scalars()
    }
    for type_id, link in current.items():
        if type_id not in wanted:
            session.delete(link)
            summary.bump(summary.removed, "step_document_types")
    for type_id in wanted - current.keys():
        session.add(
            StepDocumentType(
                product_step_id=product_step.id,
                document_type_id=type_id,
                created_by_id=actor_id,
            )
        )
        summary.bump(summary.created, "step_document_types")
