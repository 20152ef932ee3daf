"""
Module: dossier_kernel.models.client
Responsibility: ORM persistence for client profiles.  A profile starts
    PENDING and becomes ACTIVE once a payment has been confirmed.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ enums only.
"""

from __future__ import annotations

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dossier_kernel.db.base import TrackedBase
from dossier_kernel.domain.workflow import ClientStatus


class ClientProfile(TrackedBase):
    """The client owning dossiers.  ``id`` is the identity provider's user id."""

    __tablename__ = "client_profiles"
    __table_args__ = (UniqueConstraint("email", name="uq_client_email"),)

    email: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[ClientStatus] = mapped_column(
        String(20), nullable=False, default=ClientStatus.PENDING
    )
    processor_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == ClientStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<ClientProfile {self.email} ({self.status})>"
