"""
Caller identity and role checks (``dossier_kernel.domain.identity``).

Responsibility
--------------
Defines the explicit ``Caller`` value passed into every mutating operation,
the operation -> allowed-roles table, and the pure authorization checks
the services run before touching data.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* There is no ambient "current user": every service method takes a Caller.
* Staff-only operations (reviews, step approval/rejection, force-complete,
  delivery, status changes, cancellation) require AGENT or ADMIN.
* The provisioning pipeline acts as the SYSTEM role.  It goes through the
  same checks as any other caller; there is no privileged bypass.
* Agent identity is resolved once by the ``IdentityProvider`` at
  authentication time.  Services never look up or create agent records.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable
from uuid import UUID

from dossier_kernel.domain.workflow import ActorType
from dossier_kernel.exceptions import OwnershipMismatchError, RoleNotPermittedError


class Role(str, Enum):
    CLIENT = "CLIENT"
    AGENT = "AGENT"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"

    @property
    def actor_type(self) -> ActorType:
        """Actor type recorded on events and uploads for this role."""
        return _ROLE_ACTOR_TYPES[self]

    @property
    def is_staff(self) -> bool:
        return self in STAFF_ROLES


_ROLE_ACTOR_TYPES: dict[Role, ActorType] = {
    Role.CLIENT: ActorType.USER,
    Role.AGENT: ActorType.AGENT,
    Role.ADMIN: ActorType.AGENT,
    Role.SYSTEM: ActorType.SYSTEM,
}

STAFF_ROLES: frozenset[Role] = frozenset({Role.AGENT, Role.ADMIN})

# Well-known id for the SYSTEM caller (provisioning, reconciliation).
SYSTEM_CALLER_ID = UUID("00000000-0000-0000-0000-000000000001")


@dataclass(frozen=True)
class Caller:
    """An authenticated caller as resolved by the identity provider."""

    id: UUID
    role: Role

    @property
    def actor_type(self) -> ActorType:
        return self.role.actor_type

    @property
    def is_staff(self) -> bool:
        return self.role.is_staff

    def acting_as(self, role: Role) -> Caller:
        """Same principal, different role (e.g. an ADMIN running a SYSTEM task)."""
        return Caller(id=self.id, role=role)

    @classmethod
    def system(cls) -> Caller:
        return cls(id=SYSTEM_CALLER_ID, role=Role.SYSTEM)


@runtime_checkable
class IdentityProvider(Protocol):
    """Consumed collaborator: resolves the authenticated caller."""

    def current_caller(self) -> Caller: ...


_STAFF = (Role.AGENT, Role.ADMIN)
_ANYONE = (Role.CLIENT, Role.AGENT, Role.ADMIN)

# operation -> roles allowed to invoke it
OPERATION_ROLES: dict[str, tuple[Role, ...]] = {
    "start_step": _ANYONE,
    "submit_step": _ANYONE,
    "submit_field_value": _ANYONE,
    "upload_document": _ANYONE,
    "download_document": _ANYONE,
    "read_dossier": _ANYONE,
    "review_field": _STAFF,
    "review_document": _STAFF,
    "approve_step": _STAFF,
    "reject_step": _STAFF,
    "force_complete_step": _STAFF,
    "mark_under_review": _STAFF,
    "assign_reviewer": _STAFF,
    "deliver_documents": _STAFF,
    "change_dossier_status": _STAFF + (Role.SYSTEM,),
    "cancel_dossier": _STAFF,
    "provision_dossier": (Role.SYSTEM,),
}


def require_role(caller: Caller, operation: str) -> None:
    """
    Raise RoleNotPermittedError unless ``caller.role`` may run ``operation``.

    Unknown operations are denied.
    """
    allowed = OPERATION_ROLES.get(operation, ())
    if caller.role not in allowed:
        raise RoleNotPermittedError(
            caller_id=caller.id,
            role=caller.role.value,
            operation=operation,
            allowed=tuple(r.value for r in allowed),
        )


def require_owner(caller: Caller, owner_id: UUID, entity_type: str, entity_id: UUID) -> None:
    """Clients may only touch their own dossiers; staff and SYSTEM may touch any."""
    if caller.role == Role.CLIENT and caller.id != owner_id:
        raise OwnershipMismatchError(caller.id, entity_type, entity_id)
