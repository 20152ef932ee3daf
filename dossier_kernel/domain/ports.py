"""
Consumed collaborator interfaces (``dossier_kernel.domain.ports``).

Responsibility
--------------
Structural protocols for the collaborators the kernel consumes but does not
implement: file storage, outbound notifications and the payment processor.
The identity provider lives in ``domain.identity``.

Architecture position
---------------------
**Kernel domain layer** -- protocol definitions only.  Implementations are
supplied by the embedding application (or by test fakes).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable
from uuid import UUID


@runtime_checkable
class ObjectStore(Protocol):
    """File storage.  The kernel keeps only the returned reference."""

    def put(self, key: str, data: bytes) -> str: ...

    def get(self, url: str) -> bytes: ...

    def delete(self, url: str) -> None: ...


@runtime_checkable
class NotificationSink(Protocol):
    """Fire-and-forget notification queue."""

    def enqueue(self, user_id: UUID, template_code: str, payload: dict[str, Any]) -> None: ...


@dataclass(frozen=True)
class PaymentSessionStatus:
    """Result of verifying a checkout session with the processor."""

    session_id: str
    paid: bool
    amount: Decimal | None = None
    currency: str | None = None
    customer_id: str | None = None
    payment_intent_id: str | None = None
    expired: bool = False


@runtime_checkable
class PaymentProcessor(Protocol):
    """Read-only view of the payment processor."""

    def verify_session(self, session_id: str) -> PaymentSessionStatus: ...
