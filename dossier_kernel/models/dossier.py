"""
Module: dossier_kernel.models.dossier
Responsibility: ORM persistence for dossiers -- one client engagement with one
    product.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ enums only.

Invariants enforced:
    - At most one dossier per (client, product): uq_dossier_client_product.
      This constraint, not application locking, is what makes concurrent
      provisioning safe.
    - current_step_instance_id, when set, references a step instance of THIS
      dossier: the composite foreign key (current_step_instance_id, id) ->
      step_instances(id, dossier_id) rejects a pointer into another dossier.
    - Dossiers are never deleted; cancellation moves them to CLOSED.

Failure modes:
    - IntegrityError on a second (client, product) insert.  The provisioning
      pipeline catches it inside a savepoint and links the existing row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, ForeignKeyConstraint, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dossier_kernel.db.base import TrackedBase, UUIDString
from dossier_kernel.domain.workflow import TERMINAL_DOSSIER_STATUSES, DossierStatus, DossierType


class Dossier(TrackedBase):
    __tablename__ = "dossiers"
    __table_args__ = (
        UniqueConstraint("client_id", "product_id", name="uq_dossier_client_product"),
        ForeignKeyConstraint(
            ["current_step_instance_id", "id"],
            ["step_instances.id", "step_instances.dossier_id"],
            name="fk_dossier_current_step_instance",
            use_alter=True,
        ),
        Index("idx_dossier_status", "status"),
    )

    client_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("client_profiles.id"), nullable=False
    )
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    dossier_type: Mapped[DossierType] = mapped_column(
        String(20), nullable=False, default=DossierType.LLC
    )
    status: Mapped[DossierStatus] = mapped_column(
        String(30), nullable=False, default=DossierStatus.QUALIFICATION
    )
    current_step_instance_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    @property
    def is_terminal(self) -> bool:
        return DossierStatus(self.status) in TERMINAL_DOSSIER_STATUSES

    def __repr__(self) -> str:
        return f"<Dossier {self.id} ({self.status})>"
