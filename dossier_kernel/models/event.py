"""
Module: dossier_kernel.models.event
Responsibility: ORM persistence for the append-only event log consumed by
    the timeline and audit views.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ enums only.

Invariants enforced:
    - Events are never updated or deleted (db/immutability.py).
    - seq is unique and monotonically increasing (SequenceService); events
      are ordered by (created_at, seq).
    - payload_hash = SHA-256 of the canonical JSON payload.

Audit relevance:
    Every state transition of dossiers, step instances, field values,
    documents and orders appends one row here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from dossier_kernel.db.base import Base, UUIDString
from dossier_kernel.domain.workflow import ActorType, EventType


class Event(Base):
    """
    Audit record of one state transition.

    Contract:
        Rows are append-only.  ``dossier_id`` scopes the event to a dossier
        for timeline queries (null only for events about entities outside a
        dossier, e.g. a failed order without one).
    """

    __tablename__ = "events"

    __table_args__ = (
        Index("idx_event_entity", "entity_type", "entity_id"),
        Index("idx_event_dossier", "dossier_id", "created_at"),
        Index("idx_event_type", "event_type"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    dossier_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    event_type: Mapped[EventType] = mapped_column(String(50), nullable=False)

    actor_type: Mapped[ActorType] = mapped_column(String(10), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<Event {self.event_type} on {self.entity_type}:{self.entity_id}>"
