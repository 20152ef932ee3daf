"""
Module: dossier_kernel.models.order
Responsibility: ORM persistence for product orders and their payment state.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ enums only.

Invariants enforced:
    - checkout_session_id (the processor-assigned identifier) is unique; it
      is the lookup key for payment signals (uq_order_checkout_session).
    - The PENDING/FAILED -> PAID transition is a single conditional UPDATE
      guarded by the prior status (see ProvisioningPipeline), never a
      read-then-write on this model.

Audit relevance:
    paid_at, payment_intent_id and processor_customer_id are copied from the
    verified processor session; PAYMENT_RECEIVED is recorded in the event log.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dossier_kernel.db.base import TrackedBase, UUIDString
from dossier_kernel.domain.workflow import OrderStatus


class Order(TrackedBase):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("checkout_session_id", name="uq_order_checkout_session"),
        Index("idx_order_status", "status"),
        Index("idx_order_client", "client_id"),
    )

    client_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("client_profiles.id"), nullable=False
    )
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    status: Mapped[OrderStatus] = mapped_column(
        String(20), nullable=False, default=OrderStatus.PENDING
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    checkout_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    processor_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    dossier_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("dossiers.id"), nullable=True
    )

    @property
    def is_paid(self) -> bool:
        return self.status == OrderStatus.PAID

    def __repr__(self) -> str:
        return f"<Order {self.checkout_session_id} ({self.status})>"
