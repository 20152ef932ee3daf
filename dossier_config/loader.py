"""
Catalog Loader (``dossier_config.loader``).

Responsibility
--------------
Loads workflow catalog YAML files and parses them into the frozen
``dossier_config.schema`` dataclasses, then checks cross-references
(product steps point at known steps, required document types exist,
field types and actor types are known).

Architecture position
---------------------
**Config layer** -- build/installation tooling.  Depends on the kernel
domain vocabularies only; services never read YAML.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Missing required keys raise ``KeyError``; invalid references raise
  ``ValueError`` listing every problem found.
* ``compute_checksum`` is the SHA-256 of the canonical JSON of the raw
  document, so identical YAML content always yields the same checksum.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from dossier_config.schema import (
    DocumentTypeDef,
    FieldDef,
    ProductDef,
    ProductStepDef,
    ReviewPolicyDef,
    StepDef,
    WorkflowCatalog,
)
from dossier_kernel.domain.field_rules import FIELD_TYPES
from dossier_kernel.domain.workflow import DossierStatus, DossierType, StepActorType
from dossier_kernel.utils.hashing import hash_payload

CATALOG_DIR = Path(__file__).parent / "catalogs"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))


def _option(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return {"value": str(value["value"]), "label": str(value.get("label", value["value"]))}
    return {"value": str(value), "label": str(value)}


def parse_field(data: dict[str, Any]) -> FieldDef:
    return FieldDef(
        key=data["key"],
        label=data["label"],
        field_type=data.get("type", "text"),
        required=bool(data.get("required", False)),
        min_length=data.get("min_length"),
        max_length=data.get("max_length"),
        min_value=_decimal(data.get("min_value")),
        max_value=_decimal(data.get("max_value")),
        pattern=data.get("pattern"),
        options=tuple(_option(o) for o in data.get("options", [])),
    )


def parse_document_type(data: dict[str, Any]) -> DocumentTypeDef:
    return DocumentTypeDef(
        code=data["code"],
        label=data["label"],
        description=data.get("description"),
        max_file_size_mb=int(data.get("max_file_size_mb", 10)),
        allowed_extensions=tuple(
            str(ext).lower().lstrip(".") for ext in data.get("allowed_extensions", [])
        ),
    )


def parse_step(data: dict[str, Any]) -> StepDef:
    return StepDef(
        code=data["code"],
        label=data["label"],
        description=data.get("description"),
        actor_type=data.get("actor_type", StepActorType.CLIENT.value),
        fields=tuple(parse_field(f) for f in data.get("fields", [])),
    )


def parse_product_step(data: Any) -> ProductStepDef:
    """A product step is either a bare step code or a mapping."""
    if isinstance(data, str):
        return ProductStepDef(step=data)
    return ProductStepDef(
        step=data["step"],
        required=bool(data.get("required", True)),
        document_types=tuple(data.get("document_types", [])),
    )


def parse_product(data: dict[str, Any]) -> ProductDef:
    return ProductDef(
        code=data["code"],
        name=data["name"],
        dossier_type=data.get("dossier_type", DossierType.LLC.value),
        initial_status=data.get("initial_status", DossierStatus.QUALIFICATION.value),
        price_amount=_decimal(data.get("price_amount", "0")),
        currency=data.get("currency", "USD"),
        active=bool(data.get("active", True)),
        steps=tuple(parse_product_step(s) for s in data.get("steps", [])),
    )


def parse_catalog(data: dict[str, Any]) -> WorkflowCatalog:
    """
    Parse a complete catalog document.

    Raises:
        KeyError: if required keys are missing.
        ValueError: if cross-references are invalid.
    """
    policy_data = data.get("review_policy") or {}
    catalog = WorkflowCatalog(
        catalog_id=data["catalog_id"],
        version=str(data["version"]),
        document_types=tuple(parse_document_type(d) for d in data.get("document_types", [])),
        steps=tuple(parse_step(s) for s in data.get("steps", [])),
        products=tuple(parse_product(p) for p in data.get("products", [])),
        review_policy=ReviewPolicyDef(
            rejection_reason_min_length=int(policy_data.get("rejection_reason_min_length", 10)),
        ),
        checksum=compute_checksum(data),
    )
    errors = validate_catalog(catalog)
    if errors:
        raise ValueError(
            f"Invalid workflow catalog {catalog.catalog_id!r}: " + "; ".join(errors)
        )
    return catalog


def validate_catalog(catalog: WorkflowCatalog) -> list[str]:
    """Return every structural problem found; empty means valid."""
    errors: list[str] = []

    for kind, codes in (
        ("document type", [d.code for d in catalog.document_types]),
        ("step", [s.code for s in catalog.steps]),
        ("product", [p.code for p in catalog.products]),
    ):
        seen: set[str] = set()
        for code in codes:
            if code in seen:
                errors.append(f"duplicate {kind} code {code}")
            seen.add(code)

    actor_types = {a.value for a in StepActorType}
    for step in catalog.steps:
        if step.actor_type not in actor_types:
            errors.append(f"step {step.code}: unknown actor_type {step.actor_type}")
        keys: set[str] = set()
        for f in step.fields:
            if f.key in keys:
                errors.append(f"step {step.code}: duplicate field {f.key}")
            keys.add(f.key)
            if f.field_type not in FIELD_TYPES:
                errors.append(f"step {step.code}: field {f.key} has unknown type {f.field_type}")
            if f.field_type in ("select", "radio") and not f.options:
                errors.append(f"step {step.code}: field {f.key} needs options")

    step_codes = {s.code for s in catalog.steps}
    doc_codes = {d.code for d in catalog.document_types}
    dossier_types = {t.value for t in DossierType}
    statuses = {s.value for s in DossierStatus}
    for product in catalog.products:
        if product.dossier_type not in dossier_types:
            errors.append(f"product {product.code}: unknown dossier_type {product.dossier_type}")
        if product.initial_status not in statuses:
            errors.append(
                f"product {product.code}: unknown initial_status {product.initial_status}"
            )
        seen_steps: set[str] = set()
        for ps in product.steps:
            if ps.step not in step_codes:
                errors.append(f"product {product.code}: unknown step {ps.step}")
            if ps.step in seen_steps:
                errors.append(f"product {product.code}: step {ps.step} listed twice")
            seen_steps.add(ps.step)
            for code in ps.document_types:
                if code not in doc_codes:
                    errors.append(
                        f"product {product.code}: step {ps.step} requires unknown "
                        f"document type {code}"
                    )
    return errors


def load_catalog(path: Path) -> WorkflowCatalog:
    return parse_catalog(load_yaml_file(path))


def load_bundled_catalog(name: str) -> WorkflowCatalog:
    """Load one of the catalogs shipped in ``dossier_config/catalogs``."""
    return load_catalog(CATALOG_DIR / f"{name}.yaml")


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of the raw catalog."""
    return hash_payload(data)
