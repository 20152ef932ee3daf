"""
Read-side DTOs returned by selectors and query methods.

Frozen dataclasses; never ORM instances.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


@dataclass(frozen=True)
class FieldValueInfo:
    id: UUID
    step_field_id: UUID
    field_key: str
    label: str
    value: str | None
    value_json: Any
    status: str
    rejection_reason: str | None
    reviewed_by: UUID | None
    reviewed_at: datetime | None


@dataclass(frozen=True)
class StepInstanceInfo:
    id: UUID
    dossier_id: UUID
    step_id: UUID
    step_code: str
    label: str
    position: int
    actor_type: str
    status: str
    rejection_reason: str | None
    started_at: datetime | None
    completed_at: datetime | None
    force_completed: bool
    assigned_to: UUID | None
    validated_by: UUID | None
    validated_at: datetime | None
    fields: tuple[FieldValueInfo, ...] = field(default_factory=tuple)
    approved_fields: int = 0
    rejected_fields: int = 0
    pending_fields: int = 0
    documents: int = 0
    approved_documents: int = 0


@dataclass(frozen=True)
class DocumentVersionInfo:
    id: UUID
    document_id: UUID
    version_number: int
    file_url: str
    file_name: str
    file_size_bytes: int
    mime_type: str | None
    uploaded_by_type: str
    uploaded_by_id: UUID
    uploaded_at: datetime


@dataclass(frozen=True)
class DocumentInfo:
    id: UUID
    dossier_id: UUID
    document_type_code: str
    step_instance_id: UUID | None
    status: str
    current_version: DocumentVersionInfo | None


@dataclass(frozen=True)
class EventInfo:
    id: UUID
    seq: int
    entity_type: str
    entity_id: UUID
    dossier_id: UUID | None
    event_type: str
    actor_type: str
    actor_id: UUID | None
    payload: dict[str, Any]
    created_at: datetime


@dataclass(frozen=True)
class DossierProgress:
    dossier_id: UUID
    completed_steps: int
    total_steps: int

    @property
    def percentage(self) -> Decimal:
        if self.total_steps == 0:
            return Decimal("0")
        return (Decimal(self.completed_steps) * 100 / Decimal(self.total_steps)).quantize(
            Decimal("0.01")
        )
